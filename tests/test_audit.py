"""
Tests for the audit ledger and its sinks.
"""

import csv
import io
import json
import logging
import pytest
from datetime import datetime, timedelta

from contextgate.audit import (
    AuditLogEntry,
    AuditLogger,
    AuditResult,
    AuditSink,
    FileAuditSink,
    LoggingAuditSink,
    MemoryAuditSink,
    create_audit_logger,
)


def entry(user_id="u1", action="check_permission_read", resource_type="contact",
          result=AuditResult.GRANTED, **kwargs):
    return AuditLogEntry(user_id=user_id, action=action, resource_type=resource_type,
                         result=result, reason=kwargs.pop("reason", "test"), **kwargs)


class FailingSink(AuditSink):
    async def record(self, entry):
        raise IOError("disk full")


@pytest.fixture
def sink():
    return MemoryAuditSink()


@pytest.fixture
def audit_logger(sink):
    return AuditLogger([sink])


class TestAuditLogger:

    @pytest.mark.asyncio
    async def test_entries_reach_sinks(self, audit_logger, sink):
        logged = await audit_logger.log(entry())

        assert sink.entries == [logged]
        assert audit_logger.size == 1
        assert logged.id.startswith("audit_")

    @pytest.mark.asyncio
    async def test_failing_sink_does_not_break_logging(self, sink):
        audit_logger = AuditLogger([FailingSink(), sink])

        await audit_logger.log(entry())

        assert len(sink.entries) == 1
        assert audit_logger.size == 1

    @pytest.mark.asyncio
    async def test_queries(self, audit_logger):
        old = datetime.now() - timedelta(days=2)
        await audit_logger.log(entry(timestamp=old))
        await audit_logger.log(entry(user_id="u2", result=AuditResult.DENIED))
        await audit_logger.log(entry(action="revoke_permission_read", result=AuditResult.REVOKED,
                                     resource_id="c-1"))
        await audit_logger.log(entry(resource_type="calendar", result=AuditResult.DENIED))

        assert len(audit_logger.get_user_audit_log("u1")) == 3
        assert len(audit_logger.get_user_audit_log("u1", limit=1)) == 1
        assert audit_logger.get_user_audit_log("u1")[-1].timestamp == old
        assert len(audit_logger.get_resource_audit_log("contact")) == 3
        assert len(audit_logger.get_resource_audit_log("contact", "c-1")) == 1
        assert len(audit_logger.get_audit_log_by_action("revoke_permission")) == 1
        assert len(audit_logger.get_failed_attempts()) == 2
        assert len(audit_logger.get_failed_attempts("u2")) == 1

        recent = audit_logger.get_audit_log_by_time_range(datetime.now() - timedelta(days=1), datetime.now())
        assert len(recent) == 3

    @pytest.mark.asyncio
    async def test_stats(self, audit_logger):
        await audit_logger.log(entry())
        await audit_logger.log(entry(result=AuditResult.DENIED))
        await audit_logger.log(entry(timestamp=datetime.now() - timedelta(days=3)))

        stats = audit_logger.get_audit_stats()

        assert stats["total_entries"] == 3
        assert stats["entries_by_result"] == {"granted": 2, "denied": 1}
        assert stats["entries_by_resource_type"] == {"contact": 3}
        assert stats["recent_activity"] == 2

    @pytest.mark.asyncio
    async def test_export(self, audit_logger):
        await audit_logger.log(entry(reason="first, with comma"))

        exported = json.loads(audit_logger.export_audit_log("json"))
        assert exported[0]["reason"] == "first, with comma"

        rows = list(csv.reader(io.StringIO(audit_logger.export_audit_log("csv"))))
        assert rows[0][:3] == ["id", "timestamp", "user_id"]
        assert rows[1][7] == "first, with comma"

        with pytest.raises(ValueError):
            audit_logger.export_audit_log("xml")


class TestSinks:

    @pytest.mark.asyncio
    async def test_file_sink_appends_json_lines(self, tmp_path):
        path = tmp_path / "audit.jsonl"
        audit_logger = AuditLogger([FileAuditSink(str(path))])

        await audit_logger.log(entry())
        await audit_logger.log(entry(result=AuditResult.DENIED))

        lines = path.read_text(encoding="utf-8").splitlines()
        assert [json.loads(line)["result"] for line in lines] == ["granted", "denied"]

    @pytest.mark.asyncio
    async def test_logging_sink(self, caplog):
        audit_logger = AuditLogger([LoggingAuditSink()])

        with caplog.at_level(logging.INFO, logger="contextgate.audit.trail"):
            await audit_logger.log(entry(result=AuditResult.DENIED))

        assert "denied check_permission_read user=u1" in caplog.text

    def test_factory(self, tmp_path):
        assert isinstance(create_audit_logger("memory"), AuditLogger)
        assert isinstance(create_audit_logger("logging"), AuditLogger)
        assert isinstance(create_audit_logger("file", file_path=str(tmp_path / "a.log")), AuditLogger)
        with pytest.raises(ValueError):
            create_audit_logger("syslog")
