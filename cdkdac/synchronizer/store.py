"""Helpers that read and write synchronizer state through the database."""

from __future__ import annotations

import enum
import logging
from typing import Iterable, Protocol

from cdkdac.datatypes import BatchKey, OffChainData

log = logging.getLogger(__name__)

MAX_UNPROCESSED_BATCH = 100


class SyncTask(str, enum.Enum):
    """Name of a synchronization task."""

    L1 = "L1"


class _Database(Protocol):
    def get_last_processed_block(self, task: str) -> int: ...

    def store_last_processed_block(self, block: int, task: str) -> None: ...

    def store_unresolved_batch_keys(self, keys: list[BatchKey]) -> None: ...

    def get_unresolved_batch_keys(self, limit: int) -> list[BatchKey]: ...

    def delete_unresolved_batch_keys(self, keys: list[BatchKey]) -> None: ...

    def list_offchain_data(self, keys: list[bytes]) -> list[OffChainData]: ...

    def store_offchain_data(self, data: list[OffChainData]) -> None: ...

    def detect_offchain_data_gaps(self) -> dict[int, int]: ...


def get_start_block(db: _Database, sync_task: SyncTask) -> int:
    """Return the block to resume from: one before the last processed block."""
    try:
        start = db.get_last_processed_block(sync_task.value)
    except Exception as exc:
        log.error("error retrieving last processed block for %s task: %s", sync_task.value, exc)
        raise
    # the last block may have been only partially processed
    return start - 1 if start > 0 else start


def set_start_block(db: _Database, block: int, sync_task: SyncTask) -> None:
    """Record ``block`` as the last processed block of the task."""
    db.store_last_processed_block(block, sync_task.value)


def store_unresolved_batch_keys(db: _Database, keys: Iterable[BatchKey]) -> None:
    """Store batch keys whose data still has to be fetched."""
    db.store_unresolved_batch_keys(list(keys))


def get_unresolved_batch_keys(db: _Database) -> list[BatchKey]:
    """Return up to MAX_UNPROCESSED_BATCH unresolved batch keys."""
    return db.get_unresolved_batch_keys(MAX_UNPROCESSED_BATCH)


def delete_unresolved_batch_keys(db: _Database, keys: Iterable[BatchKey]) -> None:
    """Remove batch keys that have been resolved."""
    db.delete_unresolved_batch_keys(list(keys))


def list_offchain_data(db: _Database, keys: Iterable[bytes]) -> list[OffChainData]:
    """Return the stored off-chain data for the given keys."""
    return db.list_offchain_data(list(keys))


def store_offchain_data(db: _Database, data: Iterable[OffChainData]) -> None:
    """Store off-chain data."""
    db.store_offchain_data(list(data))


def detect_offchain_data_gaps(db: _Database) -> dict[int, int]:
    """Return gaps in stored batch numbers: current number to expected number."""
    return db.detect_offchain_data_gaps()