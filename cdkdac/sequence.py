"""Sequences of batches sent to L1, their signing hashes and signatures."""

from __future__ import annotations

from dataclasses import dataclass, field

from cdkdac.datatypes import (
    ADDRESS_LENGTH,
    HASH_LENGTH,
    ArgBytes,
    OffChainData,
    bytes_to_hash,
    keccak256,
)
from cdkdac.signing import PrivateKey, recover_address
from cdkdac.signing import sign as _sign

SIGNATURE_LENGTH = 65
_ZERO_HASH = bytes(HASH_LENGTH)
_ZERO_ADDRESS = bytes(ADDRESS_LENGTH)
_TIMESTAMP_LENGTH = 8


class InvalidSignatureError(ValueError):
    """Raised when a signature has the wrong shape."""

    def __init__(self, message: str = "invalid signature") -> None:
        super().__init__(message)


def _recover_signer(digest: bytes, signature: bytes) -> bytes:
    if len(signature) != SIGNATURE_LENGTH:
        raise InvalidSignatureError()
    raw = bytearray(signature)
    raw[64] = (raw[64] - 27) % 256
    return recover_address(digest, bytes(raw))


def calculate_acc_input_hash(
    old_acc_input_hash: bytes,
    batch_data: bytes,
    l1_info_root: bytes,
    timestamp: int,
    coinbase: bytes,
    forced_block_hash: bytes,
) -> bytes:
    """Return the accumulated input hash after appending one batch."""
    return keccak256(
        bytes_to_hash(old_acc_input_hash),
        keccak256(batch_data),
        bytes_to_hash(l1_info_root),
        int(timestamp).to_bytes(_TIMESTAMP_LENGTH, "big"),
        bytes(coinbase)[-ADDRESS_LENGTH:].rjust(ADDRESS_LENGTH, b"\x00"),
        bytes_to_hash(forced_block_hash),
    )


class Sequence(list):
    """Ordered batch payloads that the sequencer sends to L1."""

    def hash_to_sign(self) -> bytes:
        """Return the accumulated input hash, as computed by the contract."""
        current = _ZERO_HASH
        for batch_data in self:
            current = keccak256(current, keccak256(batch_data))
        return current

    def sign(self, private_key: PrivateKey) -> bytes:
        """Sign the accumulated input hash."""
        return _sign(private_key, self.hash_to_sign())

    def off_chain_data(self) -> list[OffChainData]:
        """Return the data to store off chain, keyed by hash."""
        return [OffChainData(key=keccak256(data), value=bytes(data)) for data in self]


@dataclass
class SignedSequence:
    """A sequence together with its signature."""

    sequence: Sequence = field(default_factory=Sequence)
    signature: bytes = b""

    def hash_to_sign(self) -> bytes:
        """Return the hash the signature covers."""
        return self.sequence.hash_to_sign()

    def signer(self) -> bytes:
        """Return the address that produced the signature."""
        return _recover_signer(self.hash_to_sign(), self.signature)

    def off_chain_data(self) -> list[OffChainData]:
        """Return the data to store off chain."""
        return self.sequence.off_chain_data()

    def sign(self, private_key: PrivateKey) -> ArgBytes:
        """Sign the sequence with ``private_key``."""
        return ArgBytes(self.sequence.sign(private_key))


@dataclass
class Batch:
    """Batch data that the sequencer sends to L1."""

    l2_data: bytes = b""
    forced_ger: bytes = _ZERO_HASH
    forced_timestamp: int = 0
    coinbase: bytes = _ZERO_ADDRESS
    forced_block_hash_l1: bytes = _ZERO_HASH


@dataclass
class SequenceBanana:
    """A sequence with the metadata needed for the accumulated input hash."""

    batches: list[Batch] = field(default_factory=list)
    old_acc_input_hash: bytes = _ZERO_HASH
    l1_info_root: bytes = _ZERO_HASH
    max_sequence_timestamp: int = 0

    def hash_to_sign(self) -> bytes:
        """Return the accumulated input hash, as computed by the contract."""
        acc_input_hash = bytes_to_hash(self.old_acc_input_hash)
        for batch in self.batches:
            acc_input_hash = calculate_acc_input_hash(
                acc_input_hash,
                batch.l2_data,
                self.l1_info_root,
                self.max_sequence_timestamp,
                batch.coinbase,
                batch.forced_block_hash_l1,
            )
        return acc_input_hash

    def sign(self, private_key: PrivateKey) -> bytes:
        """Sign the accumulated input hash."""
        return _sign(private_key, self.hash_to_sign())

    def off_chain_data(self) -> list[OffChainData]:
        """Return the data to store off chain, keyed by hash."""
        return [
            OffChainData(key=keccak256(batch.l2_data), value=bytes(batch.l2_data))
            for batch in self.batches
        ]


@dataclass
class SignedSequenceBanana:
    """A banana sequence together with its signature."""

    sequence: SequenceBanana = field(default_factory=SequenceBanana)
    signature: bytes = b""

    def hash_to_sign(self) -> bytes:
        """Return the hash the signature covers."""
        return self.sequence.hash_to_sign()

    def signer(self) -> bytes:
        """Return the address that produced the signature."""
        return _recover_signer(self.hash_to_sign(), self.signature)

    def off_chain_data(self) -> list[OffChainData]:
        """Return the data to store off chain."""
        return self.sequence.off_chain_data()

    def sign(self, private_key: PrivateKey) -> ArgBytes:
        """Sign the sequence with ``private_key``."""
        return ArgBytes(self.sequence.sign(private_key))