"""The "status" RPC endpoints: health and progress of the node."""

from __future__ import annotations

import datetime
import logging
import time
from typing import Any, Protocol

from cdkdac.datatypes import DACStatus
from cdkdac.synchronizer.store import SyncTask
from cdkdac.version import VERSION

log = logging.getLogger(__name__)

APISTATUS = "status"


class _GapsDetector(Protocol):
    def gaps(self) -> dict[int, int]: ...


class StatusEndpoints:
    """Reports uptime, version, stored key count and synchronization progress."""

    def __init__(self, db: Any, gaps_detector: _GapsDetector) -> None:
        self._db = db
        self._gaps_detector = gaps_detector
        self._start = time.monotonic()

    def get_status(self) -> DACStatus:
        """Return the current status of the service."""
        uptime = str(datetime.timedelta(seconds=time.monotonic() - self._start))

        try:
            key_count = self._db.count_offchain_data()
        except Exception as exc:
            log.error("failed to get the key count from the offchain_data table: %s", exc)
            key_count = 0

        try:
            backfill_progress = self._db.get_last_processed_block(SyncTask.L1.value)
        except Exception as exc:
            log.error("failed to get last block processed by the synchronizer: %s", exc)
            backfill_progress = 0

        return DACStatus(
            uptime=uptime,
            version=VERSION,
            key_count=key_count,
            backfill_progress=backfill_progress,
            offchain_data_gaps_exist=len(self._gaps_detector.gaps()) > 0,
        )