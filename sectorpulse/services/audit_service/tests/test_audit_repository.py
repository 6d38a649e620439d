"""Tests for audit log storage."""
from datetime import datetime

import pytest

from sectorpulse.services.audit_service import (
    GENESIS_HASH,
    AuditAction,
    AuditLogger,
    AuditRepository,
)


@pytest.fixture
def repository(db):
    return AuditRepository(db)


@pytest.fixture
def audit(repository):
    return AuditLogger(repository)


class TestAuditRepository:
    """Tests for append, query and chain checks."""

    def test_empty_log_starts_at_genesis(self, repository):
        assert repository.latest_hash() == GENESIS_HASH
        assert repository.query() == []

    def test_entries_round_trip(self, repository, audit):
        written = audit.log(AuditAction.DATABASE_RESET, "admin-1", details={"deleted": {"answers": 4}})

        stored, = repository.query()

        assert stored == written
        assert repository.latest_hash() == written.entry_hash

    def test_query_filters(self, repository, audit):
        audit.log(AuditAction.DATABASE_RESET, "admin-1")
        audit.log(AuditAction.CACHE_REBUILT, "system")
        audit.log(AuditAction.CACHE_REBUILT, "admin-1")

        assert len(repository.query(action=AuditAction.CACHE_REBUILT)) == 2
        assert len(repository.query(actor_id="admin-1")) == 2
        assert len(repository.query(limit=1)) == 1
        assert repository.query(start_date=datetime(2100, 1, 1)) == []

    def test_stored_chain_verifies(self, repository, audit):
        for _ in range(3):
            audit.log(AuditAction.CACHE_REBUILT, "system")

        assert repository.verify_chain() is True

    def test_tampered_row_detected(self, db, repository, audit):
        entry = audit.log(AuditAction.CACHE_REBUILT, "system")
        audit.log(AuditAction.CACHE_REBUILT, "system")

        with db.transaction() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    "UPDATE admin_audit_log SET actor_id = %s WHERE entry_id = %s",
                    ("intruder", entry.entry_id)
                )

        assert repository.verify_chain() is False

    def test_entry_rolls_back_with_transaction(self, db, repository, audit):
        with pytest.raises(RuntimeError):
            with db.transaction() as conn:
                with conn.cursor() as cur:
                    audit.log(AuditAction.DATABASE_RESET, "admin-1", cursor=cur)
                    raise RuntimeError("reset failed")

        assert repository.query() == []
