"""Core value types: hashes, hex-encoded RPC arguments and off-chain data."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable

from Crypto.Hash import keccak as _keccak

HASH_LENGTH = 32
ADDRESS_LENGTH = 20

_HEX_DIGITS = frozenset("0123456789abcdefABCDEF")
_MAX_UINT64 = 2**64 - 1


class RPCError(Exception):
    """An error reported to an RPC caller, carrying a JSON-RPC error code."""

    DEFAULT = -32000
    REVERTED = 3
    INVALID_REQUEST = -32600
    NOT_FOUND = -32601
    INVALID_PARAMS = -32602
    PARSER = -32700

    def __init__(self, code: int, message: str) -> None:
        super().__init__(message)
        self.code = code
        self.message = message

    def __str__(self) -> str:
        return self.message


@dataclass
class DACStatus:
    """Status information of the data availability committee node."""

    uptime: str
    version: str
    key_count: int
    backfill_progress: int
    offchain_data_gaps_exist: bool

    def to_dict(self) -> dict:
        """Return the status keyed by its wire names."""
        return {
            "uptime": self.uptime,
            "version": self.version,
            "key_count": self.key_count,
            "backfill_progress": self.backfill_progress,
            "offchain_data_gaps_exist": self.offchain_data_gaps_exist,
        }


@dataclass(frozen=True)
class BatchKey:
    """A batch number paired with the hash of the batch data."""

    number: int
    hash: bytes


@dataclass
class OffChainData:
    """Data kept off chain, keyed by its hash."""

    key: bytes
    value: bytes = b""
    batch_num: int = 0


def keccak256(*args: bytes) -> bytes:
    """Return the Keccak-256 digest of the concatenated arguments."""
    digest = _keccak.new(digest_bits=256)
    for chunk in args:
        digest.update(bytes(chunk))
    return digest.digest()


def _fit(data: bytes, size: int) -> bytes:
    """Keep the last ``size`` bytes of ``data``, left-padding with zeros."""
    return bytes(data)[-size:].rjust(size, b"\x00")


def _lenient_hex(text: str) -> bytes:
    """Decode hex leniently: stops at the first invalid pair."""
    if text[:2] in ("0x", "0X"):
        text = text[2:]
    if len(text) % 2:
        text = "0" + text
    out = bytearray()
    chars = iter(text)
    for high, low in zip(chars, chars):
        if high not in _HEX_DIGITS or low not in _HEX_DIGITS:
            break
        out.append(int(high + low, 16))
    return bytes(out)


def _strict_hex(text: str) -> bytes:
    """Decode hex with an optional ``0x`` prefix, raising on invalid input."""
    if text.startswith("0x"):
        text = text[2:]
    if len(text) % 2:
        text = "0" + text
    if not set(text) <= _HEX_DIGITS:
        raise ValueError(f"invalid hex string: {text!r}")
    return bytes.fromhex(text)


def hex_to_hash(text: str) -> bytes:
    """Convert a hex string into a 32-byte hash."""
    return _fit(_lenient_hex(text), HASH_LENGTH)


def hex_to_address(text: str) -> bytes:
    """Convert a hex string into a 20-byte address."""
    return _fit(_lenient_hex(text), ADDRESS_LENGTH)


def bytes_to_hash(data: bytes) -> bytes:
    """Convert arbitrary bytes into a 32-byte hash."""
    return _fit(data, HASH_LENGTH)


def remove_duplicate_off_chain_data(ods: Iterable[OffChainData]) -> list[OffChainData]:
    """Drop entries whose key was already seen, keeping the first occurrence."""
    seen: set[bytes] = set()
    result = []
    for od in ods:
        if od.key not in seen:
            seen.add(od.key)
            result.append(od)
    return result


def is_hex_valid(s: str) -> bool:
    """Tell whether ``s`` is hexadecimal, allowing a ``0x`` prefix."""
    if s.startswith("0x"):
        s = s[2:]
    return set(s) <= _HEX_DIGITS


def hex_encode_big(value: int) -> str:
    """Encode an integer as a ``0x``-prefixed hex string."""
    if value == 0:
        return "0x0"
    return hex(value)


class ArgUint64(int):
    """Unsigned 64-bit integer carried as hex text in RPC requests."""

    def __new__(cls, value: int = 0) -> "ArgUint64":
        if not 0 <= int(value) <= _MAX_UINT64:
            raise ValueError(f"value out of range for uint64: {value}")
        return super().__new__(cls, value)

    @classmethod
    def from_text(cls, text: str) -> "ArgUint64":
        """Parse hex text, with or without a ``0x`` prefix."""
        digits = text[2:] if text.startswith("0x") else text
        if not digits or not set(digits) <= _HEX_DIGITS:
            raise ValueError(f"invalid uint64 hex value: {text!r}")
        number = int(digits, 16)
        if number > _MAX_UINT64:
            raise ValueError(f"value out of range for uint64: {text!r}")
        return cls(number)

    def to_hex(self) -> str:
        """Return the ``0x``-prefixed hex form."""
        return f"0x{int(self):x}"


class ArgBytes(bytes):
    """Byte string carried as hex text in RPC requests."""

    @classmethod
    def from_text(cls, text: str) -> "ArgBytes":
        """Parse hex text; text that is not valid hex yields empty bytes."""
        try:
            return cls(_strict_hex(text))
        except ValueError:
            return cls(b"")

    def to_hex(self) -> str:
        """Return the ``0x``-prefixed hex form."""
        return "0x" + self.hex()


class ArgHash(bytes):
    """A 32-byte hash that accepts short hex strings such as ``0x00``."""

    def __new__(cls, value: bytes = b"") -> "ArgHash":
        return super().__new__(cls, _fit(bytes(value), HASH_LENGTH))

    @classmethod
    def from_text(cls, text: str) -> "ArgHash":
        """Parse hex text into a hash."""
        if not is_hex_valid(text):
            raise ValueError("invalid hash, it needs to be a hexadecimal value")
        digits = text[2:] if text.startswith("0x") else text
        return cls(hex_to_hash(digits))

    def hash(self) -> bytes:
        """Return the plain 32-byte hash."""
        return bytes(self)


class ArgBig(int):
    """Arbitrary-size integer carried as hex text in RPC requests."""

    @classmethod
    def from_text(cls, text: str) -> "ArgBig":
        """Parse hex text as a big-endian unsigned integer."""
        return cls(int.from_bytes(_strict_hex(text), "big"))

    def to_hex(self) -> str:
        """Return the ``0x``-prefixed hex form."""
        return "0x" + format(int(self), "x")