"""
Tests for structured logging: JSON lines carry the sync context fields.
"""
import json
import logging

import pytest

from core.exceptions import UpstreamAuthError
from core.logging import JSONFormatter
from services.intervals_sync import connect_athlete
from fixtures.intervals_fixtures import make_athlete


class TestJSONFormatter:
    def test_extra_fields_merged(self):
        record = logging.LogRecord("services.intervals_sync", logging.ERROR, __file__, 10, "sync failed", None, None)
        record.extra_fields = {"user_id": "user-1", "sync_log_id": 7, "operation": "incremental sync"}

        line = json.loads(JSONFormatter().format(record))

        assert line["message"] == "sync failed"
        assert line["level"] == "ERROR"
        assert line["user_id"] == "user-1"
        assert line["sync_log_id"] == 7
        assert line["operation"] == "incremental sync"

    def test_plain_record(self):
        record = logging.LogRecord("x", logging.INFO, __file__, 1, "hello %s", ("world",), None)

        line = json.loads(JSONFormatter().format(record))

        assert line["message"] == "hello world"
        assert "user_id" not in line


class TestSyncAttemptLogContext:
    """Sync attempts log their user, athlete, log row and operation."""

    def test_failed_attempt_carries_context(self, gateway, repository, caplog):
        gateway.athletes["i1"] = make_athlete("i1")
        gateway.errors["fetch_athlete_profile"] = UpstreamAuthError()

        with caplog.at_level(logging.INFO, logger="services.intervals_sync"):
            with pytest.raises(UpstreamAuthError):
                connect_athlete(user_id="user-1", athlete_id="i1", gateway=gateway, repository=repository)

        started, failed = [r for r in caplog.records if hasattr(r, "extra_fields")]
        assert started.levelno == logging.INFO
        assert failed.levelno == logging.ERROR
        assert failed.extra_fields["user_id"] == "user-1"
        assert failed.extra_fields["athlete_id"] == "i1"
        assert failed.extra_fields["operation"] == "connect"
        assert isinstance(failed.extra_fields["sync_log_id"], int)
