#!/usr/bin/env python3
"""
Sprint Bot Rewards

XP formulas and atomic balance mutations. Balances are never read-modify-
written from Python: awards are an upsert increment and spends are a
conditional decrement, so concurrent writers cannot lose updates or drive
a balance negative.

award_xp and spend_xp run on the caller's connection without opening a
transaction of their own, so they can join the transaction of the
transition that earned the XP. Use them inside write_transaction().
"""

import sqlite3

from .models import User

TASK_XP_FLOOR = 10
TASK_XP_PER_POINT = 10
BUG_XP_FLOOR = 20
BUG_XP_PER_POINT = 5


def task_completion_xp(points: int) -> int:
    return max(TASK_XP_FLOOR, points * TASK_XP_PER_POINT)


def bug_fix_xp(points: int) -> int:
    return max(BUG_XP_FLOOR, points * BUG_XP_PER_POINT)


class SpendResult:
    """Outcome of spend_xp. balance is the balance after the attempt."""

    def __init__(self, success: bool, balance: int, cost: int):
        self.success = success
        self.balance = balance
        self.cost = cost

    def __str__(self) -> str:
        if self.success:
            return f"Spent {self.cost} XP, {self.balance} left"
        return f"Insufficient XP: need {self.cost}, have {self.balance}"

    def to_dict(self) -> dict:
        return {"success": self.success, "balance": self.balance, "cost": self.cost}


def award_xp(conn: sqlite3.Connection, user_id: str, amount: int) -> int:
    """Add amount to user_id's balance, creating the user if needed. Returns new balance."""
    if amount < 0:
        raise ValueError(f"XP award must be non-negative, got {amount}")
    row = conn.execute(
        """
        INSERT INTO users (user_id, xp) VALUES (:user_id, :amount)
        ON CONFLICT(user_id) DO UPDATE SET xp = xp + excluded.xp
        RETURNING xp
        """,
        {"user_id": user_id, "amount": amount},
    ).fetchone()
    return row["xp"]


def spend_xp(conn: sqlite3.Connection, user_id: str, cost: int) -> SpendResult:
    """
    Deduct cost from user_id's balance only if the balance covers it.

    The user row is created at zero first, so a zero-cost spend by a new
    user succeeds.
    """
    if cost < 0:
        raise ValueError(f"XP cost must be non-negative, got {cost}")
    conn.execute(
        "INSERT INTO users (user_id, xp) VALUES (?, 0) ON CONFLICT(user_id) DO NOTHING",
        (user_id,),
    )
    row = conn.execute(
        "UPDATE users SET xp = xp - :cost WHERE user_id = :user_id AND xp >= :cost RETURNING xp",
        {"user_id": user_id, "cost": cost},
    ).fetchone()
    if row is not None:
        return SpendResult(True, row["xp"], cost)
    return SpendResult(False, get_balance(conn, user_id), cost)


def get_balance(conn: sqlite3.Connection, user_id: str) -> int:
    """Return user_id's balance; unknown users have 0."""
    row = conn.execute("SELECT xp FROM users WHERE user_id = ?", (user_id,)).fetchone()
    return row["xp"] if row else 0


def get_user(conn: sqlite3.Connection, user_id: str) -> User | None:
    row = conn.execute("SELECT * FROM users WHERE user_id = ?", (user_id,)).fetchone()
    return User.from_row(row) if row else None


def leaderboard(conn: sqlite3.Connection, limit: int = 10) -> list[User]:
    """Top users by XP, ties broken by user_id."""
    rows = conn.execute(
        "SELECT * FROM users ORDER BY xp DESC, user_id ASC LIMIT ?", (limit,)
    ).fetchall()
    return [User.from_row(r) for r in rows]
