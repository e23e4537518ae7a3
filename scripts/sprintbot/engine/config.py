#!/usr/bin/env python3
"""
Sprint Bot Configuration Reader

Reads deployment configuration from the project's .sprintbot/config.yaml.
The file is optional and every key has a default:

    database:
      path: data/sprintbot.db          # relative to the project root
    studio:
      timezone: Asia/Bangkok
    automation:
      tick_seconds: 60
      standup_time: "09:00"
      standup_grace_minutes: 60
      overdue_after_hours: 24
      overdue_sweep_minutes: 30
      overdue_batch_limit: 100
    sprints:
      backlog_offer_limit: 25
      draft_ttl_minutes: 20
    tasks:
      min_points: 1
      max_points: 100
    logging:
      level: INFO
      file: null
"""

from pathlib import Path
from typing import Any

import yaml

from .models import BotConfig

CONFIG_DIR = ".sprintbot"
CONFIG_FILE = "config.yaml"


def _section(doc: dict[str, Any], name: str) -> dict[str, Any]:
    section = doc.get(name) or {}
    if not isinstance(section, dict):
        raise ValueError(f"Config section '{name}' must be a mapping, got {type(section).__name__}")
    return section


def load_bot_config(
    project_root: str | Path,
    config_yaml_path: str | Path | None = None,
) -> BotConfig:
    """
    Load BotConfig from .sprintbot/config.yaml.

    Args:
        project_root: Root of the deployment (relative paths resolve against it).
        config_yaml_path: Override path for config.yaml.

    Returns:
        BotConfig with defaults applied where keys are missing.
    """
    project_root = Path(project_root)
    config_path = Path(config_yaml_path) if config_yaml_path else project_root / CONFIG_DIR / CONFIG_FILE

    doc: dict[str, Any] = {}
    if config_path.exists():
        doc = yaml.safe_load(config_path.read_text(encoding="utf-8")) or {}
    defaults = BotConfig()

    # Database
    db_section = _section(doc, "database")
    db_path = str(db_section.get("path", defaults.db_path))
    if not Path(db_path).is_absolute():
        db_path = str(project_root / db_path)

    studio = _section(doc, "studio")
    automation = _section(doc, "automation")
    sprints = _section(doc, "sprints")
    tasks = _section(doc, "tasks")
    logging_section = _section(doc, "logging")

    min_points = int(tasks.get("min_points", defaults.min_points))
    max_points = int(tasks.get("max_points", defaults.max_points))
    if min_points < 1 or max_points < min_points:
        raise ValueError(f"Invalid point bounds: min={min_points} max={max_points}")

    log_file = logging_section.get("file")
    if log_file and not Path(log_file).is_absolute():
        log_file = str(project_root / log_file)

    return BotConfig(
        db_path=db_path,
        timezone=str(studio.get("timezone", defaults.timezone)),
        tick_seconds=int(automation.get("tick_seconds", defaults.tick_seconds)),
        standup_time=str(automation.get("standup_time", defaults.standup_time)),
        standup_grace_minutes=int(automation.get("standup_grace_minutes", defaults.standup_grace_minutes)),
        overdue_after_hours=int(automation.get("overdue_after_hours", defaults.overdue_after_hours)),
        overdue_sweep_minutes=int(automation.get("overdue_sweep_minutes", defaults.overdue_sweep_minutes)),
        overdue_batch_limit=int(automation.get("overdue_batch_limit", defaults.overdue_batch_limit)),
        backlog_offer_limit=int(sprints.get("backlog_offer_limit", defaults.backlog_offer_limit)),
        draft_ttl_minutes=int(sprints.get("draft_ttl_minutes", defaults.draft_ttl_minutes)),
        min_points=min_points,
        max_points=max_points,
        log_level=str(logging_section.get("level", defaults.log_level)).upper(),
        log_file=log_file,
    )
