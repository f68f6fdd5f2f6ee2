"""Run history storage.

This module provides an abstract interface for persisting canonicalization
run records, with an in-memory implementation used by default and in tests.
Durable backends implement the same interface.
"""

import asyncio
import logging
from abc import ABC, abstractmethod

from mythcanon.core.config import settings
from mythcanon.schemas.canonicalization import CanonicalizationRunRecord

logger = logging.getLogger(__name__)


class RunHistoryStore(ABC):
    """Abstract interface for run record persistence."""

    @abstractmethod
    async def save(self, record: CanonicalizationRunRecord) -> None:
        """Persist a run record.

        Args:
            record: Completed or failed run record
        """
        ...

    @abstractmethod
    async def list(
        self,
        myth_id: str,
        limit: int | None = None,
    ) -> list[CanonicalizationRunRecord]:
        """List runs of a myth, newest first.

        Args:
            myth_id: Myth to list runs for
            limit: Maximum number of records (default from settings)

        Returns:
            Records sorted by timestamp descending
        """
        ...


class InMemoryRunHistoryStore(RunHistoryStore):
    """Process-local history store.

    Records are immutable, so the stored instances are returned as-is.
    """

    def __init__(self):
        self._records: list[CanonicalizationRunRecord] = []
        self._lock = asyncio.Lock()

    async def save(self, record: CanonicalizationRunRecord) -> None:
        async with self._lock:
            self._records.append(record)
        logger.debug(f"Saved run {record.id} ({record.mode.value}) for myth {record.myth_id}")

    async def list(
        self,
        myth_id: str,
        limit: int | None = None,
    ) -> list[CanonicalizationRunRecord]:
        limit = settings.history_list_limit if limit is None else limit
        async with self._lock:
            matching = [r for r in self._records if r.myth_id == myth_id]
        matching.sort(key=lambda r: r.timestamp, reverse=True)
        return matching[:limit]


_default_store: InMemoryRunHistoryStore | None = None


def get_run_history_store() -> RunHistoryStore:
    """Get or create the process-wide history store."""
    global _default_store
    if _default_store is None:
        _default_store = InMemoryRunHistoryStore()
    return _default_store
