"""Recoverable secp256k1 signatures in the Ethereum style."""

from __future__ import annotations

import hashlib
import hmac
import secrets
from dataclasses import dataclass, field
from typing import Iterator, Optional, Tuple

from cdkdac.datatypes import keccak256

_P = 0xFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFEFFFFFC2F
_N = 0xFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFEBAAEDCE6AF48A03BBFD25E8CD0364141
_G = (
    0x79BE667EF9DCBBAC55A06295CE870B07029BFCDB2DCE28D959F2815B16F81798,
    0x483ADA7726A3C4655DA4FBFC0E1108A8FD17B448A68554199C47D08FFB10D4B8,
)
_MAX_CANONICAL_S = 0x7FFFFFFFFFFFFFFFFFFFFFFFFFFFFFFF5D576E7357A4501DDFE92F46681B20A0
_DIGEST_LENGTH = 32
_SIGNATURE_LENGTH = 65

_Point = Optional[Tuple[int, int]]


class NonCanonicalSignatureError(ValueError):
    """Raised when a produced signature has a high S value."""

    def __init__(self) -> None:
        super().__init__("received non-canonical signature")


def _add(a: _Point, b: _Point) -> _Point:
    if a is None:
        return b
    if b is None:
        return a
    (x1, y1), (x2, y2) = a, b
    if x1 == x2:
        if (y1 + y2) % _P == 0:
            return None
        slope = 3 * x1 * x1 * pow(2 * y1, -1, _P) % _P
    else:
        slope = (y2 - y1) * pow(x2 - x1, -1, _P) % _P
    x3 = (slope * slope - x1 - x2) % _P
    return x3, (slope * (x1 - x3) - y1) % _P


def _multiply(k: int, point: _Point) -> _Point:
    result: _Point = None
    addend = point
    while k:
        if k & 1:
            result = _add(result, addend)
        addend = _add(addend, addend)
        k >>= 1
    return result


def _address_of(point: _Point) -> bytes:
    if point is None:
        raise ValueError("public key is the point at infinity")
    x, y = point
    return keccak256(x.to_bytes(32, "big") + y.to_bytes(32, "big"))[12:]


def _check_digest(digest: bytes) -> None:
    if len(digest) != _DIGEST_LENGTH:
        raise ValueError(f"hash is required to be exactly {_DIGEST_LENGTH} bytes ({len(digest)})")


def _nonces(secret: int, digest: bytes) -> Iterator[int]:
    """Deterministic nonces following RFC 6979 with HMAC-SHA256."""
    x = secret.to_bytes(32, "big")
    h1 = (int.from_bytes(digest, "big") % _N).to_bytes(32, "big")
    v = b"\x01" * 32
    k = b"\x00" * 32
    k = hmac.new(k, v + b"\x00" + x + h1, hashlib.sha256).digest()
    v = hmac.new(k, v, hashlib.sha256).digest()
    k = hmac.new(k, v + b"\x01" + x + h1, hashlib.sha256).digest()
    v = hmac.new(k, v, hashlib.sha256).digest()
    while True:
        v = hmac.new(k, v, hashlib.sha256).digest()
        candidate = int.from_bytes(v, "big")
        if 1 <= candidate < _N:
            yield candidate
        k = hmac.new(k, v + b"\x00", hashlib.sha256).digest()
        v = hmac.new(k, v, hashlib.sha256).digest()


@dataclass(frozen=True)
class PrivateKey:
    """A secp256k1 private key."""

    secret: int = field(repr=False)

    @classmethod
    def generate(cls) -> "PrivateKey":
        """Create a new random key."""
        return cls(secrets.randbelow(_N - 1) + 1)

    def _public_point(self) -> Tuple[int, int]:
        if not 1 <= self.secret < _N:
            raise ValueError("invalid private key")
        point = _multiply(self.secret, _G)
        assert point is not None
        return point

    def public_address(self) -> bytes:
        """Return the 20-byte address derived from the public key."""
        return _address_of(self._public_point())

    def sign_recoverable(self, digest: bytes) -> bytes:
        """Sign a 32-byte digest, returning R || S || V with V in {0, 1}."""
        _check_digest(digest)
        self._public_point()
        e = int.from_bytes(digest, "big") % _N
        for k in _nonces(self.secret, digest):
            point = _multiply(k, _G)
            assert point is not None
            rx, ry = point
            r = rx % _N
            if r == 0:
                continue
            s = pow(k, -1, _N) * (e + r * self.secret) % _N
            if s == 0:
                continue
            recovery_id = (ry & 1) | (2 if rx >= _N else 0)
            if s > _N // 2:
                s = _N - s
                recovery_id ^= 1
            return r.to_bytes(32, "big") + s.to_bytes(32, "big") + bytes([recovery_id])
        raise AssertionError("nonce generator is infinite")


def sign(private_key: PrivateKey, hash_to_sign: bytes) -> bytes:
    """Sign ``hash_to_sign``, returning a signature whose V is 27 or 28."""
    signature = bytearray(private_key.sign_recoverable(hash_to_sign))
    if int.from_bytes(signature[32:64], "big") > _MAX_CANONICAL_S:
        raise NonCanonicalSignatureError()
    signature[64] += 27
    return bytes(signature)


def recover_address(digest: bytes, signature: bytes) -> bytes:
    """Recover the signer address from a signature whose V is 0..3."""
    _check_digest(digest)
    if len(signature) != _SIGNATURE_LENGTH:
        raise ValueError("invalid signature length")
    recovery_id = signature[64]
    if recovery_id > 3:
        raise ValueError("invalid signature recovery id")
    r = int.from_bytes(signature[:32], "big")
    s = int.from_bytes(signature[32:64], "big")
    if not (1 <= r < _N and 1 <= s < _N):
        raise ValueError("invalid signature values")
    x = r + (recovery_id >> 1) * _N
    if x >= _P:
        raise ValueError("invalid signature: R is not on the curve")
    y_squared = (pow(x, 3, _P) + 7) % _P
    y = pow(y_squared, (_P + 1) // 4, _P)
    if y * y % _P != y_squared:
        raise ValueError("invalid signature: R is not on the curve")
    if y & 1 != recovery_id & 1:
        y = _P - y
    e = int.from_bytes(digest, "big") % _N
    r_inv = pow(r, -1, _N)
    public = _add(_multiply(-e * r_inv % _N, _G), _multiply(s * r_inv % _N, (x, y)))
    if public is None:
        raise ValueError("invalid signature: recovered point at infinity")
    return _address_of(public)