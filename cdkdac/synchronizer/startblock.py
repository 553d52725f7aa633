"""Locating the block from which L1 synchronization starts."""

from __future__ import annotations

import logging
from typing import Any, Optional, Protocol

from cdkdac.synchronizer.store import SyncTask, get_start_block, set_start_block

log = logging.getLogger(__name__)

MIN_CODE_LEN = 2


class _ChainClient(Protocol):
    def header_by_number(self, number: Optional[int]) -> Any: ...

    def code_at(self, address: bytes, block_number: int) -> bytes: ...


def init_start_block(db: Any, em: _ChainClient, genesis_block: int, validium_addr: bytes) -> None:
    """Record the block where the validium contract was deployed, unless one is already known.

    A non-zero ``genesis_block`` is used as is; otherwise the deployment block is
    found by searching the chain for the contract's code.
    """
    current = get_start_block(db, SyncTask.L1)
    if current > 0:
        return

    log.info("starting search for start block of contract 0x%s", bytes(validium_addr).hex())

    if genesis_block:
        start_block = genesis_block
    else:
        latest = em.header_by_number(None)
        start_block = find_code(em, validium_addr, 0, latest.number)

    set_start_block(db, start_block, SyncTask.L1)


def find_code(em: _ChainClient, address: bytes, start_block: int, end_block: int) -> int:
    """Binary-search the first block in ``[start_block, end_block]`` holding code at ``address``."""
    while start_block < end_block:
        mid_block = (start_block + end_block) // 2
        if _code_len(em, address, mid_block) > MIN_CODE_LEN:
            end_block = mid_block
        else:
            start_block = mid_block + 1
    return start_block


def _code_len(em: _ChainClient, address: bytes, block_number: int) -> int:
    try:
        code = em.code_at(address, block_number)
    except Exception:
        return 0
    return len(code or b"")