"""The "datacom" RPC endpoints: signing sequences sent by the trusted sequencer."""

from __future__ import annotations

import logging
from typing import Any, Protocol, Union

from cdkdac.datatypes import ArgBytes, RPCError
from cdkdac.sequence import SignedSequence, SignedSequenceBanana
from cdkdac.signing import PrivateKey

log = logging.getLogger(__name__)

APIDATACOM = "datacom"


class _SequencerTracker(Protocol):
    def get_addr(self) -> bytes: ...


class DatacomEndpoints:
    """Signs sequences from the trusted sequencer after storing their data."""

    def __init__(self, db: Any, private_key: PrivateKey, sequencer_tracker: _SequencerTracker) -> None:
        self._db = db
        self._private_key = private_key
        self._sequencer_tracker = sequencer_tracker

    def sign_sequence(self, signed_sequence: SignedSequence) -> ArgBytes:
        """Store a sequence's batch data and return this node's signature of it."""
        return self._sign_sequence(signed_sequence)

    def sign_sequence_banana(self, signed_sequence: SignedSequenceBanana) -> ArgBytes:
        """Store a banana sequence's batch data and return this node's signature of it."""
        log.debug("signing sequence, hash to sign: 0x%s", signed_sequence.hash_to_sign().hex())
        return self._sign_sequence(signed_sequence)

    def _sign_sequence(self, signed_sequence: Union[SignedSequence, SignedSequenceBanana]) -> ArgBytes:
        try:
            sender = signed_sequence.signer()
        except Exception as exc:
            raise RPCError(RPCError.DEFAULT, "failed to verify sender") from exc

        if sender != bytes(self._sequencer_tracker.get_addr()):
            raise RPCError(RPCError.DEFAULT, "unauthorized")

        try:
            self._db.store_offchain_data(signed_sequence.off_chain_data())
        except Exception as exc:
            raise RPCError(RPCError.DEFAULT, f"failed to store offchain data. Error: {exc}") from exc

        try:
            return signed_sequence.sign(self._private_key)
        except Exception as exc:
            raise RPCError(RPCError.DEFAULT, f"failed to sign. Error: {exc}") from exc