"""
Tests for structured logging
"""
import json
import logging
import uuid

import pytest

from core.config import Settings
from core.logging import JSONFormatter, log_fields, setup_logging


@pytest.fixture(autouse=True)
def restore_root_logger():
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)


def make_record(**extra):
    record = logging.LogRecord(
        name="services.plan_service",
        level=logging.INFO,
        pathname=__file__,
        lineno=10,
        msg="Generated plan %s",
        args=("p1",),
        exc_info=None,
    )
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestJSONFormatter:
    """Test JSON log output"""

    def test_basic_fields(self):
        data = json.loads(JSONFormatter().format(make_record()))
        assert data["level"] == "INFO"
        assert data["logger"] == "services.plan_service"
        assert data["message"] == "Generated plan p1"
        assert "timestamp" in data

    def test_extra_fields(self):
        athlete_id = uuid.uuid4()
        record = make_record(**log_fields(athlete_id=athlete_id, plan_id=None, goal="run_10k"))
        data = json.loads(JSONFormatter().format(record))
        assert data["athlete_id"] == str(athlete_id)
        assert data["goal"] == "run_10k"
        assert "plan_id" not in data


class TestSetupLogging:
    """Test root logger configuration"""

    def test_json_in_production(self):
        root = setup_logging(Settings(ENVIRONMENT="production", LOG_LEVEL="warning"))
        assert root.level == logging.WARNING
        assert len(root.handlers) == 1
        assert isinstance(root.handlers[0].formatter, JSONFormatter)

    def test_text_locally(self):
        root = setup_logging(Settings(ENVIRONMENT="development", LOG_FORMAT="text", LOG_LEVEL="DEBUG"))
        assert root.level == logging.DEBUG
        assert not isinstance(root.handlers[0].formatter, JSONFormatter)
        assert logging.getLogger("sqlalchemy.engine").level == logging.WARNING
