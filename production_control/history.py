"""Append-only audit trail of status changes."""

from __future__ import annotations

import logging
from typing import Any, List, Optional
from uuid import uuid4

from .domain import EntityType, HistoryEntry

logger = logging.getLogger(__name__)

SYSTEM_USER = "system"


def _as_text(value: Any) -> Optional[str]:
    if value is None:
        return None
    return getattr(value, "value", None) or str(value)


class HistoryLedger:
    """Records who changed what and when. Entries are never updated."""

    def __init__(self, store) -> None:
        self._store = store

    def record(
        self,
        entity_type: EntityType,
        entity_id: str,
        action: str,
        old_value: Any = None,
        new_value: Any = None,
        *,
        acting_user: str = SYSTEM_USER,
    ) -> HistoryEntry:
        entry = HistoryEntry(
            id=str(uuid4()),
            sequence=len(self._store.history) + 1,
            entity_type=entity_type,
            entity_id=entity_id,
            action=action,
            old_value=_as_text(old_value),
            new_value=_as_text(new_value),
            acting_user=acting_user or SYSTEM_USER,
        )
        self._store.history.add(entry.id, entry)
        logger.debug(
            "%s %s: %s %s -> %s by %s",
            entity_type.value,
            entity_id,
            action,
            entry.old_value,
            entry.new_value,
            entry.acting_user,
        )
        return entry

    def entries_for(self, entity_id: str) -> List[HistoryEntry]:
        entries = self._store.history.filter(lambda entry: entry.entity_id == entity_id)
        entries.sort(key=lambda entry: entry.sequence)
        return entries


__all__ = ["HistoryLedger", "SYSTEM_USER"]
