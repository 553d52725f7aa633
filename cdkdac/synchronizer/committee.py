"""Thread-safe map of data availability committee members."""

from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import Iterable, Optional


@dataclass(frozen=True)
class DataCommitteeMember:
    """A committee member: its address and the URL of its RPC endpoint."""

    addr: bytes
    url: str


class CommitteeMapSafe:
    """Committee members keyed by address, safe to share between threads."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._members: dict[bytes, DataCommitteeMember] = {}

    def store(self, member: DataCommitteeMember) -> None:
        """Add a member, replacing any member with the same address."""
        with self._lock:
            self._members[member.addr] = member

    def store_batch(self, members: Iterable[DataCommitteeMember]) -> None:
        """Add several members."""
        for member in members:
            self.store(member)

    def load(self, addr: bytes) -> Optional[DataCommitteeMember]:
        """Return the member with ``addr``, or None if there is none."""
        with self._lock:
            return self._members.get(addr)

    def delete(self, addr: bytes) -> None:
        """Remove the member with ``addr`` if present."""
        with self._lock:
            self._members.pop(addr, None)

    def as_list(self) -> list[DataCommitteeMember]:
        """Return a snapshot of all members."""
        with self._lock:
            return list(self._members.values())

    def __len__(self) -> int:
        with self._lock:
            return len(self._members)