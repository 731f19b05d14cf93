"""
Tests for the lifecycle audit log.

Tests cover entry checksums, the append-only storage, query filters and
integrity verification.
"""

import logging
from datetime import datetime, timedelta

import pytest
from pydantic import ValidationError
from sqlalchemy import text

from retention_toolkit.audit_trail import (
    AuditAction,
    AuditEntry,
    AuditLogDB,
    AuditLogger,
    AuditQuery,
)
from retention_toolkit.config import ChecksumAlgorithm, RetentionConfig


@pytest.fixture
def sample_entry():
    return AuditEntry(
        id="entry-1",
        created_at=datetime(2024, 3, 1, 12, 0),
        actor_id="admin-1",
        action=AuditAction.SOFT_DELETE,
        target_table="post",
        target_id="42",
        reason="policy violation",
    )


class TestAuditModels:
    """Test AuditEntry and AuditQuery."""

    def test_checksum(self, sample_entry):
        """Checksums are deterministic and verify."""
        checksum = sample_entry.calculate_checksum()
        assert len(checksum) == 64
        assert checksum == sample_entry.calculate_checksum()

        signed = sample_entry.model_copy(update={"checksum": checksum})
        assert signed.verify_checksum() is True

    def test_tampering_detected(self, sample_entry):
        """Changing any field invalidates the checksum."""
        signed = sample_entry.model_copy(
            update={"checksum": sample_entry.calculate_checksum()}
        )
        tampered = signed.model_copy(update={"actor_id": "someone-else"})
        assert tampered.verify_checksum() is False

    def test_sha512(self, sample_entry):
        """The algorithm is inferred from the digest length."""
        signed = sample_entry.model_copy(
            update={"checksum": sample_entry.calculate_checksum("sha512")}
        )
        assert len(signed.checksum) == 128
        assert signed.verify_checksum() is True

    def test_unsupported_algorithm(self, sample_entry):
        with pytest.raises(ValueError):
            sample_entry.calculate_checksum("md5")

    def test_missing_checksum(self, sample_entry):
        assert sample_entry.verify_checksum() is False

    def test_entries_are_frozen(self, sample_entry):
        with pytest.raises(ValidationError):
            sample_entry.reason = "changed"

    def test_log_format(self, sample_entry):
        line = sample_entry.to_log_format()
        assert "ACTOR=admin-1" in line
        assert "ACTION=soft_delete" in line
        assert "TARGET=post:42" in line
        assert "REASON='policy violation'" in line

    def test_system_log_format(self):
        entry = AuditEntry(
            id="entry-2",
            action=AuditAction.SWEEP_START,
            target_table="system",
        )
        assert entry.is_system is True
        assert "ACTOR=system" in entry.to_log_format()
        assert "TARGET=system" in entry.to_log_format()

    def test_query_date_range(self):
        """End dates before start dates are rejected."""
        with pytest.raises(ValidationError):
            AuditQuery(
                start_date=datetime(2024, 3, 2),
                end_date=datetime(2024, 3, 1),
            )

    def test_query_limit(self):
        with pytest.raises(ValidationError):
            AuditQuery(limit=1001)
        with pytest.raises(ValidationError):
            AuditQuery(limit=0)


class TestAuditLogger:
    """Test AuditLogger against SQL storage."""

    @pytest.mark.asyncio
    async def test_log_action(self, audit_logger, clock, config):
        """Entries are stored with a checksum and the configured application."""
        entry = await audit_logger.log_action(
            AuditAction.SOFT_DELETE,
            target_table="post",
            target_id=42,
            actor_id="admin-1",
            reason="spam",
        )

        assert entry.created_at == clock.now
        assert entry.target_id == "42"
        assert entry.application == config.application_name
        assert entry.verify_checksum() is True

        stored = audit_logger.storage.get_by_id(entry.id)
        assert stored == entry

    @pytest.mark.asyncio
    async def test_log_action_emits_log_line(self, audit_logger, caplog):
        caplog.set_level(logging.INFO, logger="retention_toolkit.audit_trail.logger")

        await audit_logger.log_action(
            "restore", target_table="post", target_id=42, actor_id="admin-2"
        )

        assert "ACTION=restore" in caplog.text
        assert "TARGET=post:42" in caplog.text

    @pytest.mark.asyncio
    async def test_sha512_config(self, session_factory, clock):
        config = RetentionConfig(
            environment="test",
            audit_checksum_algorithm=ChecksumAlgorithm.SHA512,
        )
        audit = AuditLogger(session_factory, config=config, clock=clock)

        entry = await audit.log_action(AuditAction.SWEEP_START, target_table="system")
        assert len(entry.checksum) == 128

        results = await audit.verify_integrity()
        assert results["valid"] == 1

    @pytest.mark.asyncio
    async def test_joins_caller_transaction(self, audit_logger, session_factory):
        """Entries written in a rolled back transaction disappear with it."""
        with pytest.raises(RuntimeError):
            with session_factory.begin() as session:
                await audit_logger.log_action(
                    AuditAction.PERMANENT_DELETE,
                    target_table="post",
                    target_id=42,
                    session=session,
                )
                raise RuntimeError("cascade failed")

        assert await audit_logger.count(AuditQuery()) == 0

    @pytest.mark.asyncio
    async def test_rows_are_immutable(self, audit_logger, session_factory):
        """ORM updates and deletes of stored entries are rejected."""
        entry = await audit_logger.log_action(
            AuditAction.SOFT_DELETE, target_table="post", target_id=42, actor_id="a"
        )

        with pytest.raises(RuntimeError):
            with session_factory.begin() as session:
                row = session.get(AuditLogDB, entry.id)
                row.reason = "rewritten"

        with pytest.raises(RuntimeError):
            with session_factory.begin() as session:
                session.delete(session.get(AuditLogDB, entry.id))

        assert audit_logger.storage.get_by_id(entry.id) == entry

    @pytest.mark.asyncio
    async def test_query_filters(self, audit_logger, clock):
        """Queries filter by action, actor, table, record and system origin."""
        await audit_logger.log_action(
            AuditAction.SOFT_DELETE, target_table="post", target_id=1, actor_id="a1"
        )
        clock.advance(minutes=1)
        await audit_logger.log_action(
            AuditAction.RESTORE, target_table="post", target_id=1, actor_id="a2"
        )
        clock.advance(minutes=1)
        await audit_logger.log_action(
            AuditAction.SOFT_DELETE, target_table="listing", target_id=7, actor_id="a1"
        )
        clock.advance(minutes=1)
        await audit_logger.log_action(AuditAction.SWEEP_START, target_table="system")

        deletes = await audit_logger.query(
            AuditQuery(actions=[AuditAction.SOFT_DELETE])
        )
        assert [e.target_table for e in deletes] == ["listing", "post"]

        by_actor = await audit_logger.query(AuditQuery(actor_ids=["a2"]))
        assert [e.action for e in by_actor] == ["restore"]

        by_record = await audit_logger.query(
            AuditQuery(target_tables=["post"], target_ids=["1"], sort_desc=False)
        )
        assert [e.action for e in by_record] == ["soft_delete", "restore"]

        system = await audit_logger.query(AuditQuery(system_only=True))
        assert [e.action for e in system] == ["sweep_start"]

        assert await audit_logger.count(AuditQuery(actor_ids=["a1"])) == 2

    @pytest.mark.asyncio
    async def test_query_pagination(self, audit_logger, clock):
        for record_id in range(5):
            await audit_logger.log_action(
                AuditAction.SOFT_DELETE,
                target_table="post",
                target_id=record_id,
                actor_id="a1",
            )
            clock.advance(seconds=1)

        page = await audit_logger.query(AuditQuery(limit=2, offset=2))
        assert [e.target_id for e in page] == ["2", "1"]
        assert await audit_logger.count(AuditQuery(limit=2, offset=2)) == 5

    @pytest.mark.asyncio
    async def test_date_range(self, audit_logger, clock):
        start = clock.now
        await audit_logger.log_action(AuditAction.SWEEP_START, target_table="system")
        clock.advance(days=2)
        await audit_logger.log_action(AuditAction.SWEEP_START, target_table="system")

        entries = await audit_logger.query(
            AuditQuery(start_date=start + timedelta(days=1))
        )
        assert len(entries) == 1
        assert entries[0].created_at == clock.now

    @pytest.mark.asyncio
    async def test_latest(self, audit_logger, clock):
        assert await audit_logger.latest(AuditAction.SWEEP_COMPLETE) is None

        await audit_logger.log_action(AuditAction.SWEEP_COMPLETE, target_table="system")
        clock.advance(days=1)
        newest = await audit_logger.log_action(
            AuditAction.SWEEP_COMPLETE, target_table="system"
        )

        latest = await audit_logger.latest(AuditAction.SWEEP_COMPLETE)
        assert latest.id == newest.id

    @pytest.mark.asyncio
    async def test_purge_older_than(self, audit_logger, clock):
        old = await audit_logger.log_action(
            AuditAction.SOFT_DELETE, target_table="post", target_id=1, actor_id="a"
        )
        clock.advance(days=400)
        recent = await audit_logger.log_action(
            AuditAction.RESTORE, target_table="post", target_id=1, actor_id="a"
        )

        purged = await audit_logger.purge_older_than(clock.now - timedelta(days=365))

        assert purged == 1
        assert audit_logger.storage.get_by_id(old.id) is None
        assert audit_logger.storage.get_by_id(recent.id) == recent

    @pytest.mark.asyncio
    async def test_entity_history(self, audit_logger, clock):
        """History is oldest first and limited to one record."""
        await audit_logger.log_action(
            AuditAction.SOFT_DELETE, target_table="post", target_id=42, actor_id="a"
        )
        clock.advance(days=1)
        await audit_logger.log_action(
            AuditAction.SOFT_DELETE, target_table="post", target_id=43, actor_id="a"
        )
        clock.advance(days=1)
        await audit_logger.log_action(
            AuditAction.RESTORE, target_table="post", target_id=42, actor_id="b"
        )

        history = await audit_logger.get_entity_history("post", 42)
        assert [e.action for e in history] == ["soft_delete", "restore"]


class TestIntegrity:
    """Test checksum verification of stored entries."""

    @pytest.mark.asyncio
    async def test_all_valid(self, audit_logger):
        for record_id in range(3):
            await audit_logger.log_action(
                AuditAction.SOFT_DELETE,
                target_table="post",
                target_id=record_id,
                actor_id="a",
                metadata={"snapshot": {"id": record_id, "content": "x"}},
            )

        results = await audit_logger.verify_integrity()
        assert results["total_checked"] == 3
        assert results["valid"] == 3
        assert results["invalid"] == 0

    @pytest.mark.asyncio
    async def test_tampered_row(self, audit_logger, session_factory):
        """Rows changed behind the ORM's back fail verification."""
        entry = await audit_logger.log_action(
            AuditAction.SOFT_DELETE, target_table="post", target_id=42, actor_id="a"
        )
        await audit_logger.log_action(
            AuditAction.RESTORE, target_table="post", target_id=42, actor_id="a"
        )

        with session_factory.begin() as session:
            session.execute(
                text("UPDATE audit_log SET actor_id = 'intruder' WHERE id = :id"),
                {"id": entry.id},
            )

        results = await audit_logger.verify_integrity()
        assert results["total_checked"] == 2
        assert results["invalid"] == 1
        assert results["invalid_entries"] == [entry.id]
