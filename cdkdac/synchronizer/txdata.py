"""Decoding of sequenceBatchesValidium call data into batch hashes."""

from __future__ import annotations

from cdkdac.datatypes import keccak256

METHOD_ID_LENGTH = 4
_WORD = 32
_BATCH_TUPLE_SIZE = 4 * _WORD
_MAX_UINT64 = 2**64 - 1


def method_id(signature: str) -> bytes:
    """Return the 4-byte selector of a function signature."""
    return keccak256(signature.encode())[:METHOD_ID_LENGTH]


METHOD_ID_SEQUENCE_BATCHES_VALIDIUM_ETROG = method_id(
    "sequenceBatchesValidium((bytes32,bytes32,uint64,bytes32)[],address,bytes)"
)
METHOD_ID_SEQUENCE_BATCHES_VALIDIUM_ELDERBERRY = method_id(
    "sequenceBatchesValidium((bytes32,bytes32,uint64,bytes32)[],uint64,uint64,address,bytes)"
)
METHOD_ID_SEQUENCE_BATCHES_VALIDIUM_BANANA = method_id(
    "sequenceBatchesValidium((bytes32,bytes32,uint64,bytes32)[],uint32,uint64,bytes32,address,bytes)"
)

# Number of head words each known call carries.
_HEAD_WORDS = {
    METHOD_ID_SEQUENCE_BATCHES_VALIDIUM_ETROG: 3,
    METHOD_ID_SEQUENCE_BATCHES_VALIDIUM_ELDERBERRY: 5,
    METHOD_ID_SEQUENCE_BATCHES_VALIDIUM_BANANA: 6,
}


class UnrecognizedMethodError(ValueError):
    """Raised when call data does not start with a known selector."""

    def __init__(self, selector: bytes) -> None:
        super().__init__(f"unrecognized method id: {selector.hex()}")
        self.method_id = selector


def _read_uint(data: bytes, offset: int) -> int:
    end = offset + _WORD
    if end > len(data):
        raise ValueError("abi: cannot unmarshal, data too short")
    return int.from_bytes(data[offset:end], "big")


def unpack_tx_data(tx_data: bytes) -> list[bytes]:
    """Return the transactions hashes of the batches in a sequencing call."""
    tx_data = bytes(tx_data)
    if len(tx_data) < METHOD_ID_LENGTH:
        raise ValueError("transaction data is shorter than a method id")
    selector = tx_data[:METHOD_ID_LENGTH]
    head_words = _HEAD_WORDS.get(selector)
    if head_words is None:
        raise UnrecognizedMethodError(selector)

    args = tx_data[METHOD_ID_LENGTH:]
    if len(args) < head_words * _WORD:
        raise ValueError("abi: cannot unmarshal, data too short")

    offset = _read_uint(args, 0)
    length = _read_uint(args, offset)
    start = offset + _WORD
    end = start + length * _BATCH_TUPLE_SIZE
    if end > len(args):
        raise ValueError("abi: cannot unmarshal, array exceeds data")

    body = args[start:end]
    keys = []
    for base in range(0, len(body), _BATCH_TUPLE_SIZE):
        batch = body[base : base + _BATCH_TUPLE_SIZE]
        if int.from_bytes(batch[2 * _WORD : 3 * _WORD], "big") > _MAX_UINT64:
            raise ValueError("abi: forced timestamp overflows uint64")
        keys.append(batch[:_WORD])
    return keys