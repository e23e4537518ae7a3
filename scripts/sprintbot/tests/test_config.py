"""
Tests for engine/config.py and engine/log.py

Validates:
- load_bot_config reads .sprintbot/config.yaml
- Sensible defaults when the file is absent
- Relative paths resolve against the project root
- Malformed sections and point bounds are rejected
- setup_logging installs console and JSON file handlers
"""

import json
import logging
import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent.parent))

from sprintbot.engine.config import load_bot_config
from sprintbot.engine.log import ROOT_LOGGER, JsonFormatter, setup_logging


@pytest.fixture
def project_root(tmp_path):
    """Create a minimal project root with .sprintbot/ directory."""
    (tmp_path / ".sprintbot").mkdir()
    return tmp_path


def write_yaml(path: Path, content: str) -> None:
    path.write_text(content, encoding="utf-8")


# ---------------------------------------------------------------------------
# Config
# ---------------------------------------------------------------------------


def test_defaults_when_no_file(project_root):
    config = load_bot_config(project_root)

    assert config.timezone == "Asia/Bangkok"
    assert config.standup_time == "09:00"
    assert config.standup_grace_minutes == 60
    assert config.overdue_after_hours == 24
    assert config.draft_ttl_minutes == 20
    assert (config.min_points, config.max_points) == (1, 100)
    assert config.db_path == str(project_root / "data/sprintbot.db")
    assert config.log_file is None


def test_reads_yaml(project_root):
    write_yaml(
        project_root / ".sprintbot" / "config.yaml",
        """
database:
  path: state/bot.db
studio:
  timezone: Europe/Berlin
automation:
  tick_seconds: 15
  standup_time: "10:30"
  overdue_after_hours: 48
tasks:
  max_points: 13
logging:
  level: debug
  file: logs/bot.jsonl
""",
    )

    config = load_bot_config(project_root)

    assert config.db_path == str(project_root / "state/bot.db")
    assert config.timezone == "Europe/Berlin"
    assert config.tick_seconds == 15
    assert config.standup_time == "10:30"
    assert config.overdue_after_hours == 48
    assert config.max_points == 13
    assert config.log_level == "DEBUG"
    assert config.log_file == str(project_root / "logs/bot.jsonl")
    # untouched keys keep defaults
    assert config.overdue_sweep_minutes == 30


def test_absolute_db_path_kept(project_root, tmp_path):
    absolute = tmp_path / "elsewhere.db"
    write_yaml(project_root / ".sprintbot" / "config.yaml", f"database:\n  path: {absolute}\n")
    assert load_bot_config(project_root).db_path == str(absolute)


def test_explicit_config_path(tmp_path):
    custom = tmp_path / "custom.yaml"
    write_yaml(custom, "sprints:\n  backlog_offer_limit: 5\n")
    assert load_bot_config(tmp_path, custom).backlog_offer_limit == 5


def test_empty_file_gives_defaults(project_root):
    write_yaml(project_root / ".sprintbot" / "config.yaml", "")
    assert load_bot_config(project_root).tick_seconds == 60


def test_non_mapping_section_rejected(project_root):
    write_yaml(project_root / ".sprintbot" / "config.yaml", "automation: [1, 2]\n")
    with pytest.raises(ValueError, match="automation"):
        load_bot_config(project_root)


def test_bad_point_bounds_rejected(project_root):
    write_yaml(project_root / ".sprintbot" / "config.yaml", "tasks:\n  min_points: 10\n  max_points: 5\n")
    with pytest.raises(ValueError, match="point bounds"):
        load_bot_config(project_root)


# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------


def test_setup_logging_console_only():
    logger = setup_logging("WARNING")
    assert logger.name == ROOT_LOGGER
    assert logger.level == logging.WARNING
    assert len(logger.handlers) == 1
    assert not logger.propagate


def test_setup_logging_writes_json_file(tmp_path):
    log_file = tmp_path / "logs" / "bot.jsonl"
    setup_logging(logging.INFO, log_file)

    logging.getLogger("sprintbot.engine.sprints").info("sprint %s closed", 7)
    for handler in logging.getLogger(ROOT_LOGGER).handlers:
        handler.flush()

    entry = json.loads(log_file.read_text(encoding="utf-8").strip().splitlines()[-1])
    assert entry["message"] == "sprint 7 closed"
    assert entry["logger"] == "sprintbot.engine.sprints"
    assert entry["level"] == "INFO"


def test_json_formatter_includes_exception():
    try:
        raise RuntimeError("boom")
    except RuntimeError:
        record = logging.LogRecord("sprintbot", logging.ERROR, __file__, 1, "failed", None, sys.exc_info())
    entry = json.loads(JsonFormatter().format(record))
    assert "RuntimeError: boom" in entry["exception"]
