"""Tests for the audit edit buffer."""

import pytest
from datetime import date
from decimal import Decimal

from stockledger.core.exceptions import ValidationError, VersionConflictError
from stockledger.models.audit import StockAuditItem
from stockledger.services.audit_manager import AuditManager
from stockledger.services.edit_buffer import AuditEditBuffer


class RecordingCommitter:
    """Collects batches instead of writing them."""

    def __init__(self, fail_with=None):
        self.calls = []
        self.fail_with = fail_with

    def commit_batch(self, audit_id, updates):
        self.calls.append((audit_id, updates))
        if self.fail_with is not None:
            raise self.fail_with
        return {"updated_count": len(updates)}


class TestStaging:
    def test_stage_and_overwrite(self):
        buffer = AuditEditBuffer(audit_id=7)
        buffer.stage(1, "actual_quantity", 10)
        buffer.stage(1, "actual_quantity", "12.5")
        buffer.stage(1, "notes", "recounted")

        assert buffer.get(1) == {"actual_quantity": Decimal("12.5"), "notes": "recounted"}
        assert len(buffer) == 1
        assert 1 in buffer
        assert buffer.is_dirty

    def test_get_returns_copy(self):
        buffer = AuditEditBuffer(audit_id=7)
        buffer.stage(1, "notes", "a")
        buffer.get(1)["notes"] = "b"
        assert buffer.get(1) == {"notes": "a"}
        assert buffer.get(2) is None

    def test_unknown_field_rejected(self):
        buffer = AuditEditBuffer(audit_id=7)
        with pytest.raises(ValidationError):
            buffer.stage(1, "book_quantity", 5)
        assert not buffer.is_dirty

    def test_unstage_single_field_and_whole_item(self):
        buffer = AuditEditBuffer(audit_id=7)
        buffer.stage(1, "actual_quantity", 3, base_version=2)
        buffer.stage(1, "notes", "x")
        buffer.stage(2, "notes", "y")

        buffer.unstage(1, "notes")
        assert buffer.get(1) == {"actual_quantity": Decimal("3")}

        buffer.unstage(1, "actual_quantity")
        assert 1 not in buffer
        assert buffer.to_updates() == {2: {"notes": "y"}}

        buffer.unstage(2)
        buffer.unstage(99)
        assert len(buffer) == 0

    def test_to_updates_carries_versions(self):
        buffer = AuditEditBuffer(audit_id=7)
        buffer.stage(1, "actual_quantity", 4, base_version=3)
        buffer.stage(2, "actual_quantity", None)

        assert buffer.to_updates() == {
            1: {"actual_quantity": Decimal("4"), "version": 3},
            2: {"actual_quantity": None},
        }


class TestCommit:
    def test_empty_buffer_skips_committer(self):
        committer = RecordingCommitter()
        result = AuditEditBuffer(audit_id=7).commit(committer)
        assert result == {"updated_count": 0}
        assert committer.calls == []

    def test_success_clears_buffer(self):
        committer = RecordingCommitter()
        buffer = AuditEditBuffer(audit_id=7)
        buffer.stage(1, "actual_quantity", 4)
        buffer.stage(2, "notes", "ok")

        result = buffer.commit(committer)

        assert result == {"updated_count": 2}
        assert committer.calls == [(7, {1: {"actual_quantity": Decimal("4")}, 2: {"notes": "ok"}})]
        assert not buffer.is_dirty

    def test_failure_keeps_entries(self):
        committer = RecordingCommitter(fail_with=ValidationError("nope"))
        buffer = AuditEditBuffer(audit_id=7)
        buffer.stage(1, "actual_quantity", 4)

        with pytest.raises(ValidationError):
            buffer.commit(committer)

        assert buffer.get(1) == {"actual_quantity": Decimal("4")}

    def test_discard(self):
        buffer = AuditEditBuffer(audit_id=7)
        buffer.stage(1, "notes", "x", base_version=1)
        buffer.discard()
        assert buffer.to_updates() == {}


class TestBufferWithAuditManager:
    def _audit(self, db_session, receive, warehouses, items):
        receive(items["flour"], warehouses["main"], 100)
        audit, _ = AuditManager(db_session).create_audit(name="Count", audit_date=date(2024, 3, 31))
        rows = {row.item_name: row for row in audit.items}
        return audit, rows

    def test_commit_through_manager(self, db_session, warehouses, items, receive):
        audit, rows = self._audit(db_session, receive, warehouses, items)
        manager = AuditManager(db_session)
        buffer = AuditEditBuffer(audit.id)
        buffer.stage(rows["Flour"].id, "actual_quantity", 98, base_version=rows["Flour"].version)
        buffer.stage(rows["Sugar"].id, "notes", "not counted yet")

        assert buffer.commit(manager) == {"updated_count": 2}

        flour = db_session.get(StockAuditItem, rows["Flour"].id)
        assert flour.actual_quantity == Decimal("98")
        assert not buffer.is_dirty

    def test_stale_buffer_kept_after_conflict(self, db_session, warehouses, items, receive):
        audit, rows = self._audit(db_session, receive, warehouses, items)
        manager = AuditManager(db_session)
        flour_id = rows["Flour"].id

        first = AuditEditBuffer(audit.id)
        second = AuditEditBuffer(audit.id)
        first.stage(flour_id, "actual_quantity", 98, base_version=1)
        second.stage(flour_id, "actual_quantity", 97, base_version=1)

        first.commit(manager)
        with pytest.raises(VersionConflictError):
            second.commit(manager)

        assert second.get(flour_id) == {"actual_quantity": Decimal("97")}
        assert db_session.get(StockAuditItem, flour_id).actual_quantity == Decimal("98")
