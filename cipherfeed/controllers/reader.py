"""Public view of records.

Loads every record the store knows about, derives its category from the
id, and keeps the last loaded set as the current view. A record that fails
to load is skipped, not fatal to the list.
"""

from __future__ import annotations

import bittensor as bt

from cipherfeed.models import DEFAULT_READ_TIME_MINUTES, ConfidentialRecord, derive_category
from cipherfeed.store.interface import RecordStore, StoredRecord


def to_record(record_id: str, stored: StoredRecord) -> ConfidentialRecord:
    """Build the public view from raw store fields."""
    return ConfidentialRecord(
        id=record_id,
        title=stored.title,
        category=derive_category(record_id),
        read_time_minutes=int(stored.read_time or 0) or DEFAULT_READ_TIME_MINUTES,
        public_view_count=int(stored.public_views or 0),
        created_at=stored.created_at,
        creator_address=stored.creator,
        verified=bool(stored.verified),
        revealed_score=int(stored.decrypted_value or 0) if stored.verified else None,
    )


class RecordReader:
    """Reads records from a RecordStore and caches the current view."""

    def __init__(self, store: RecordStore):
        self.store = store
        self._view: dict[str, ConfidentialRecord] = {}

    @property
    def records(self) -> list[ConfidentialRecord]:
        return list(self._view.values())

    def known_ids(self) -> set[str]:
        return set(self._view.keys())

    def cached(self, record_id: str) -> ConfidentialRecord | None:
        return self._view.get(record_id)

    async def list_records(self) -> list[ConfidentialRecord]:
        """Fetch all records. Per-record failures are logged and skipped."""
        ids = await self.store.list_ids()
        loaded: dict[str, ConfidentialRecord] = {}
        skipped = 0

        for record_id in ids:
            try:
                stored = await self.store.get(record_id)
                loaded[record_id] = to_record(record_id, stored)
            except Exception as e:
                skipped += 1
                bt.logging.warning({"record_reader": {"record_id": record_id, "skipped": str(e)}})

        self._view = loaded
        bt.logging.debug({"record_reader": {"loaded": len(loaded), "skipped": skipped}})
        return list(loaded.values())

    async def get_record(self, record_id: str) -> ConfidentialRecord:
        """Fetch one record fresh and update the view. Raises if it cannot be read."""
        stored = await self.store.get(record_id)
        record = to_record(record_id, stored)
        self._view[record_id] = record
        return record


__all__ = ["RecordReader", "to_record"]
