"""Synchronizer that tracks sequenced batches on L1 and fetches their data."""

from __future__ import annotations

import dataclasses
import logging
import queue
import random
import threading
from dataclasses import dataclass
from typing import Any, Optional

from cdkdac.datatypes import ADDRESS_LENGTH, BatchKey, OffChainData, RPCError, keccak256
from cdkdac.synchronizer import store
from cdkdac.synchronizer.committee import CommitteeMapSafe, DataCommitteeMember
from cdkdac.synchronizer.store import SyncTask
from cdkdac.synchronizer.txdata import unpack_tx_data

log = logging.getLogger(__name__)

DEFAULT_BLOCK_BATCH_SIZE = 32
GAPS_DETECTION_PERIOD = 60.0
_REORG_POLL_PERIOD = 0.1
_ZERO_ADDRESS = bytes(ADDRESS_LENGTH)


class BatchNotFoundError(RPCError):
    """Raised when neither the sequencer nor any committee member has a batch."""

    def __init__(self, message: str) -> None:
        super().__init__(RPCError.NOT_FOUND, message)


@dataclass
class SynchronizerConfig:
    """Settings of the batch synchronizer; periods are in seconds."""

    retry_period: float = 1.0
    block_batch_size: int = 0


@dataclass(frozen=True)
class SequenceBatchesEvent:
    """A SequenceBatches event emitted by the validium contract."""

    block_number: int
    tx_hash: bytes
    num_batch: int


class BatchSynchronizer:
    """Watches sequencing events, records unresolved batches and fetches their data."""

    def __init__(
        self,
        config: SynchronizerConfig,
        self_addr: bytes,
        db: Any,
        reorgs: Optional["queue.Queue[Any]"],
        eth_client: Any,
        sequencer: Any,
        rpc_client_factory: Any,
    ) -> None:
        block_batch_size = config.block_batch_size
        if block_batch_size == 0:
            log.info("block number size is not set, setting to default %d", DEFAULT_BLOCK_BATCH_SIZE)
            block_batch_size = DEFAULT_BLOCK_BATCH_SIZE
        self._client = eth_client
        self._retry = config.retry_period
        self._block_batch_size = block_batch_size
        self._self = bytes(self_addr)
        self._db = db
        self._reorgs = reorgs
        self._sequencer = sequencer
        self._rpc_client_factory = rpc_client_factory
        self._stop = threading.Event()
        self._sync_lock = threading.Lock()
        self._gaps: dict[int, int] = {}
        self._gaps_lock = threading.Lock()
        self._threads: list[threading.Thread] = []
        self.committee = CommitteeMapSafe()
        self.resolve_committee()

    def resolve_committee(self) -> None:
        """Reload the committee from L1, leaving out this node itself."""
        current = self._client.get_current_data_committee()
        committee = CommitteeMapSafe()
        committee.store_batch(m for m in current.members if m.addr != self._self)
        self.committee = committee

    def start(self) -> None:
        """Start the background workers."""
        log.info("starting batch synchronizer, DAC addr: 0x%s", self._self.hex())
        workers = [
            (self._periodic, (self._retry, self.handle_unresolved_batches)),
            (self._periodic, (self._retry, self.filter_events)),
            (self._periodic, (GAPS_DETECTION_PERIOD, self.detect_offchain_data_gaps)),
        ]
        if self._reorgs is not None:
            workers.append((self._watch_reorgs, ()))
        for target, args in workers:
            thread = threading.Thread(target=target, args=args, daemon=True)
            thread.start()
            self._threads.append(thread)

    def stop(self) -> None:
        """Signal the background workers to stop."""
        self._stop.set()

    def gaps(self) -> dict[int, int]:
        """Return a copy of the detected off-chain data gaps."""
        with self._gaps_lock:
            return dict(self._gaps)

    def _periodic(self, period: float, action: Any) -> None:
        while not self._stop.wait(period):
            try:
                action()
            except Exception as exc:
                log.error("%s", exc)

    def _watch_reorgs(self) -> None:
        log.info("starting reorgs handler")
        assert self._reorgs is not None
        while not self._stop.is_set():
            try:
                reorg = self._reorgs.get(timeout=_REORG_POLL_PERIOD)
            except queue.Empty:
                continue
            self.handle_reorg(reorg)

    def handle_reorg(self, reorg: Any) -> None:
        """Rewind the start block to the reorg point if sync has gone past it."""
        with self._sync_lock:
            try:
                latest = store.get_start_block(self._db, SyncTask.L1)
            except Exception as exc:
                log.error("could not determine latest processed block: %s", exc)
                return
            if latest < reorg.number:
                return
            try:
                store.set_start_block(self._db, reorg.number, SyncTask.L1)
            except Exception as exc:
                log.error("failed to store new start block to %d: %s", reorg.number, exc)

    def filter_events(self) -> None:
        """Scan the next range of blocks for SequenceBatches events and handle them."""
        with self._sync_lock:
            start = store.get_start_block(self._db, SyncTask.L1)
            end = start + self._block_batch_size

            try:
                header = self._client.header_by_number(None)
            except Exception as exc:
                log.error("failed to determine latest block number: %s", exc)
                raise
            end = min(end, header.number)

            try:
                events = list(self._client.filter_sequence_batches(start, end))
            except Exception as exc:
                log.error("failed to create SequenceBatches event iterator: %s", exc)
                raise

            events.sort(key=lambda event: event.block_number)
            for event in events:
                try:
                    self.handle_event(event)
                except Exception as exc:
                    log.error("failed to handleEvent: %s", exc)
                    store.set_start_block(self._db, event.block_number - 1, SyncTask.L1)
                    return

            store.set_start_block(self._db, end, SyncTask.L1)

    def handle_event(self, event: SequenceBatchesEvent) -> None:
        """Store the batch keys carried by the transaction behind ``event``."""
        tx = self._client.get_tx(event.tx_hash)
        keys = unpack_tx_data(tx.data)
        # The event carries the last batch number; hashes are in batch order.
        batch_keys = [
            BatchKey(number=event.num_batch - offset, hash=key)
            for offset, key in enumerate(reversed(keys))
        ]
        store.store_unresolved_batch_keys(self._db, batch_keys)

    def handle_unresolved_batches(self) -> None:
        """Fetch and store the data of batches that are not resolved yet."""
        try:
            batch_keys = store.get_unresolved_batch_keys(self._db)
        except Exception as exc:
            raise RuntimeError(f"failed to get unresolved batch keys: {exc}") from exc
        if not batch_keys:
            return

        pending = {key.hash: key for key in batch_keys}
        try:
            existing = store.list_offchain_data(self._db, [key.hash for key in batch_keys])
        except Exception as exc:
            raise RuntimeError(f"failed to list offchain data: {exc}") from exc

        data: list[OffChainData] = []
        resolved: list[BatchKey] = []

        for ext in existing or []:
            batch_key = pending.pop(ext.key, None)
            if batch_key is None:
                log.error("unexpected key 0x%s in the offchain data", bytes(ext.key).hex())
                continue
            if ext.batch_num == 0:
                data.append(dataclasses.replace(ext, batch_num=batch_key.number))
            resolved.append(batch_key)

        for batch_key in pending.values():
            try:
                value = self.resolve(batch_key)
            except Exception as exc:
                log.error("failed to resolve batch 0x%s: %s", batch_key.hash.hex(), exc)
                continue
            resolved.append(batch_key)
            data.append(value)

        if data:
            try:
                store.store_offchain_data(self._db, data)
            except Exception as exc:
                raise RuntimeError(f"failed to store offchain data: {exc}") from exc

        if resolved:
            try:
                store.delete_unresolved_batch_keys(self._db, resolved)
            except Exception as exc:
                raise RuntimeError(
                    f"failed to delete successfully resolved batch keys: {exc}"
                ) from exc

    def resolve(self, batch: BatchKey) -> OffChainData:
        """Get a batch's data from the sequencer or, failing that, from committee members."""
        data = self._try_sequencer(batch)
        if data is not None:
            return data

        if len(self.committee) == 0:
            # members are evicted for missing data or bad config; reload once all are gone
            self.resolve_committee()

        members = self.committee.as_list()
        random.shuffle(members)
        for member in members:
            if not member.url or member.addr == _ZERO_ADDRESS or member.addr == self._self:
                self.committee.delete(member.addr)
                continue
            try:
                return self._resolve_with_member(batch, member)
            except Exception as exc:
                log.warning("error resolving, continuing: %s", exc)
                self.committee.delete(member.addr)

        raise BatchNotFoundError(
            f"no data found for number {batch.number}, key 0x{batch.hash.hex()}"
        )

    def _try_sequencer(self, batch: BatchKey) -> Optional[OffChainData]:
        try:
            seq_batch = self._sequencer.get_sequence_batch(batch.number)
        except Exception as exc:
            log.warning("failed to get data from sequencer: %s", exc)
            return None
        value = bytes(seq_batch.batch_l2_data)
        if keccak256(value) != batch.hash:
            log.warning(
                "number %d: sequencer gave wrong data for key: 0x%s", batch.number, batch.hash.hex()
            )
            return None
        return OffChainData(key=batch.hash, value=value, batch_num=batch.number)

    def _resolve_with_member(self, batch: BatchKey, member: DataCommitteeMember) -> OffChainData:
        client = self._rpc_client_factory.new(member.url)
        log.debug(
            "trying member 0x%s at %s for key 0x%s", member.addr.hex(), member.url, batch.hash.hex()
        )
        value = bytes(client.get_off_chain_data(batch.hash))
        expected = keccak256(value)
        if expected != batch.hash:
            raise ValueError(
                f"unexpected key gotten from member: 0x{member.addr.hex()}. Key: 0x{expected.hex()}"
            )
        return OffChainData(key=batch.hash, value=value, batch_num=batch.number)

    def detect_offchain_data_gaps(self) -> None:
        """Look for gaps in stored batch numbers and keep them for reporting."""
        try:
            gaps = store.detect_offchain_data_gaps(self._db)
        except Exception as exc:
            raise RuntimeError(f"failed to detect offchain data gaps: {exc}") from exc
        if not gaps:
            return
        with self._gaps_lock:
            self._gaps = dict(gaps)
        report = "".join(f"{current}=>{expected}\n" for current, expected in gaps.items())
        log.warning(
            "detected offchain data gaps (current batch number => expected batch number): %s",
            report,
        )