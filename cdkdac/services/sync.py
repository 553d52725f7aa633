"""The "sync" RPC endpoints: serving stored off-chain data to other nodes."""

from __future__ import annotations

import logging
from typing import Any, Sequence

from cdkdac.datatypes import ArgBytes, ArgHash, RPCError

log = logging.getLogger(__name__)

APISYNC = "sync"
MAX_LIST_HASHES = 100


class SyncEndpoints:
    """Looks up off-chain data by hash."""

    def __init__(self, db: Any) -> None:
        self._db = db

    def get_off_chain_data(self, hash: ArgHash) -> ArgBytes:
        """Return the data whose hash is ``hash``."""
        try:
            data = self._db.get_offchain_data(ArgHash(hash).hash())
        except Exception as exc:
            log.error("failed to get the offchain requested data from the DB: %s", exc)
            raise RPCError(RPCError.DEFAULT, "failed to get the requested data") from exc
        return ArgBytes(data.value)

    def list_off_chain_data(self, hashes: Sequence[ArgHash]) -> dict[bytes, ArgBytes]:
        """Return the stored data for each of ``hashes``, keyed by hash."""
        if len(hashes) > MAX_LIST_HASHES:
            log.error("too many hashes requested in ListOffChainData: %d", len(hashes))
            raise RPCError(RPCError.INVALID_REQUEST, "too many hashes requested")

        keys = [ArgHash(h).hash() for h in hashes]
        try:
            found = self._db.list_offchain_data(keys)
        except Exception as exc:
            log.error("failed to list the requested data from the DB: %s", exc)
            raise RPCError(RPCError.DEFAULT, "failed to list the requested data") from exc

        return {bytes(item.key): ArgBytes(item.value) for item in found}