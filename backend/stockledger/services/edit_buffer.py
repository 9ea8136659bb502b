"""Client-side staging of audit count edits.

Operators type counts for many audit items before saving. The buffer keeps
those pending changes and hands them to a committer in one batch, so the
audit either takes all of them or none.
"""

import logging
from decimal import Decimal
from typing import Any, Dict, Mapping, Optional, Protocol

from stockledger.core.exceptions import ValidationError

logger = logging.getLogger(__name__)

STAGEABLE_FIELDS = ("actual_quantity", "notes")


class BatchCommitter(Protocol):
    """Anything that can apply a batch of audit item updates."""

    def commit_batch(self, audit_id: int, updates: Mapping[int, Mapping[str, Any]]) -> Any:
        ...


class AuditEditBuffer:
    """Pending changes for one audit, keyed by audit item id.

    Staging the same field twice keeps the last value. ``base_version`` is
    the item version the operator was looking at; it travels with the
    batch so the server can reject edits made against stale rows.
    """

    def __init__(self, audit_id: int):
        self.audit_id = audit_id
        self._entries: Dict[int, Dict[str, Any]] = {}
        self._versions: Dict[int, int] = {}

    def stage(self, audit_item_id: int, field: str, value: Any, base_version: Optional[int] = None) -> None:
        if field not in STAGEABLE_FIELDS:
            raise ValidationError(
                f"Field '{field}' cannot be edited", field=field, allowed=list(STAGEABLE_FIELDS)
            )
        if field == "actual_quantity" and value is not None:
            value = Decimal(str(value))
        self._entries.setdefault(audit_item_id, {})[field] = value
        if base_version is not None:
            self._versions[audit_item_id] = base_version

    def unstage(self, audit_item_id: int, field: Optional[str] = None) -> None:
        """Drop one staged field, or every staged field of the item."""
        entry = self._entries.get(audit_item_id)
        if entry is None:
            return
        if field is not None:
            entry.pop(field, None)
        if field is None or not entry:
            self._entries.pop(audit_item_id, None)
            self._versions.pop(audit_item_id, None)

    def get(self, audit_item_id: int) -> Optional[Dict[str, Any]]:
        entry = self._entries.get(audit_item_id)
        return dict(entry) if entry is not None else None

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, audit_item_id: int) -> bool:
        return audit_item_id in self._entries

    @property
    def is_dirty(self) -> bool:
        return bool(self._entries)

    def to_updates(self) -> Dict[int, Dict[str, Any]]:
        """Batch payload: ``{audit_item_id: {field: value, ..., version?}}``."""
        updates = {}
        for audit_item_id, entry in self._entries.items():
            update = dict(entry)
            if audit_item_id in self._versions:
                update["version"] = self._versions[audit_item_id]
            updates[audit_item_id] = update
        return updates

    def commit(self, committer: BatchCommitter) -> Any:
        """Send every staged change in one call.

        Cleared only when the committer succeeds; on failure the entries
        stay so the operator can fix them and retry.
        """
        if not self._entries:
            return {"updated_count": 0}
        updates = self.to_updates()
        result = committer.commit_batch(self.audit_id, updates)
        logger.debug("Committed %d staged change(s) for audit %s", len(updates), self.audit_id)
        self.discard()
        return result

    def discard(self) -> None:
        self._entries.clear()
        self._versions.clear()
