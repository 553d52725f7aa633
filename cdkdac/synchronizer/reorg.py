"""Detection of L1 block reorganizations, broadcast to subscribers."""

from __future__ import annotations

import json
import logging
import queue
import threading
import urllib.request
from dataclasses import dataclass
from typing import Callable, Optional

from cdkdac.datatypes import hex_to_hash

log = logging.getLogger(__name__)

_RPC_TIMEOUT = 10.0


@dataclass(frozen=True)
class BlockReorg:
    """Sent to subscribers on a reorg; ``number`` is the block the chain rewound to."""

    number: int
    hash: bytes


@dataclass(frozen=True)
class Block:
    """The number and hash of an L1 block."""

    number: int
    hash: bytes


def fetch_latest_block(rpc_url: str) -> Block:
    """Ask a JSON-RPC node for its latest block."""
    payload = json.dumps(
        {
            "jsonrpc": "2.0",
            "id": 1,
            "method": "eth_getBlockByNumber",
            "params": ["latest", False],
        }
    ).encode()
    request = urllib.request.Request(
        rpc_url, data=payload, headers={"Content-Type": "application/json"}, method="POST"
    )
    with urllib.request.urlopen(request, timeout=_RPC_TIMEOUT) as response:
        reply = json.loads(response.read().decode())
    if reply.get("error"):
        error = reply["error"]
        message = error.get("message", str(error)) if isinstance(error, dict) else str(error)
        raise RuntimeError(f"eth_getBlockByNumber failed: {message}")
    result = reply.get("result")
    if not result:
        raise RuntimeError("latest block not found")
    return Block(number=int(result["number"], 16), hash=hex_to_hash(result["hash"]))


class ReorgDetector:
    """Polls the chain head and tells subscribers when a reorg is seen."""

    def __init__(
        self,
        rpc_url: str,
        polling_period: float,
        fetch_block: Optional[Callable[[str], Block]] = None,
    ) -> None:
        self.rpc_url = rpc_url
        self.polling_period = polling_period
        self._fetch_block = fetch_block if fetch_block is not None else fetch_latest_block
        self._subscribers: list["queue.Queue[BlockReorg]"] = []
        self._lock = threading.Lock()
        self._last_block: Optional[Block] = None
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def subscribe(self) -> "queue.Queue[BlockReorg]":
        """Return a queue on which reorg messages will arrive."""
        channel: "queue.Queue[BlockReorg]" = queue.Queue()
        with self._lock:
            self._subscribers.append(channel)
        return channel

    def process_block(self, block: Block) -> None:
        """Handle a newly seen chain head, notifying subscribers of a reorg."""
        with self._lock:
            last = self._last_block
            if last is not None and last.number + 1 >= block.number:
                reorg = BlockReorg(number=block.number, hash=block.hash)
                for channel in self._subscribers:
                    channel.put(reorg)
            self._last_block = block

    def start(self) -> None:
        """Start polling for new blocks in the background."""
        log.info("starting block reorganization detector")
        self._stop = threading.Event()
        self._thread = threading.Thread(target=self._track, args=(self._stop,), daemon=True)
        self._thread.start()

    def stop(self) -> None:
        """Stop polling and detach all subscribers."""
        self._stop.set()
        with self._lock:
            self._subscribers = []

    def _track(self, stop: threading.Event) -> None:
        seen: Optional[Block] = None
        while not stop.is_set():
            try:
                block = self._fetch_block(self.rpc_url)
            except Exception as exc:
                log.warning("failed to fetch latest block: %s", exc)
            else:
                if seen is None or block.hash != seen.hash:
                    seen = block
                    self.process_block(block)
            if stop.wait(self.polling_period):
                break