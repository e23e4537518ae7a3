"""
pytest configuration for sprint bot tests.

Adds the scripts/ directory to sys.path so that
'from sprintbot.engine.xxx import ...' works without installing.
"""

import logging
import sys
from pathlib import Path

import pytest

# Ensure scripts/ is on the path (sprintbot package lives at scripts/sprintbot/)
scripts_dir = Path(__file__).parent.parent.parent
if str(scripts_dir) not in sys.path:
    sys.path.insert(0, str(scripts_dir))


@pytest.fixture(autouse=True)
def _restore_sprintbot_logger():
    """setup_logging() detaches the sprintbot logger from root; undo it so caplog keeps working."""
    yield
    logger = logging.getLogger("sprintbot")
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()
    logger.propagate = True
    logger.setLevel(logging.NOTSET)
