import queue
import time
from types import SimpleNamespace

import pytest

from cdkdac.datatypes import BatchKey, OffChainData, bytes_to_hash, hex_to_address, hex_to_hash, keccak256
from cdkdac.synchronizer.batches import (
    BatchNotFoundError,
    BatchSynchronizer,
    SequenceBatchesEvent,
    SynchronizerConfig,
)
from cdkdac.synchronizer.committee import DataCommitteeMember
from cdkdac.synchronizer.txdata import (
    METHOD_ID_SEQUENCE_BATCHES_VALIDIUM_ELDERBERRY,
    METHOD_ID_SEQUENCE_BATCHES_VALIDIUM_ETROG,
    UnrecognizedMethodError,
)

SELF_ADDR = hex_to_address("0xdeadbeef")
BATCH_L2_DATA = bytes([1, 2, 3, 4, 5, 6])
TX_HASH = keccak256(BATCH_L2_DATA)


class FakeDB:
    def __init__(self):
        self.last_processed = 0
        self.last_error = None
        self.stored_blocks = []
        self.store_block_error = None
        self.unresolved = []
        self.unresolved_error = None
        self.unresolved_limits = []
        self.offchain = []
        self.listed = []
        self.stored_offchain = []
        self.store_offchain_error = None
        self.deleted = []
        self.stored_keys = []
        self.store_keys_error = None
        self.gaps = {}
        self.gaps_error = None

    def get_last_processed_block(self, task):
        if self.last_error:
            raise self.last_error
        return self.last_processed

    def store_last_processed_block(self, block, task):
        self.stored_blocks.append(block)
        if self.store_block_error:
            raise self.store_block_error

    def store_unresolved_batch_keys(self, keys):
        self.stored_keys.append(keys)
        if self.store_keys_error:
            raise self.store_keys_error

    def get_unresolved_batch_keys(self, limit):
        self.unresolved_limits.append(limit)
        if self.unresolved_error:
            raise self.unresolved_error
        return self.unresolved

    def delete_unresolved_batch_keys(self, keys):
        self.deleted.append(keys)

    def list_offchain_data(self, keys):
        self.listed.append(keys)
        return self.offchain

    def store_offchain_data(self, data):
        self.stored_offchain.append(data)
        if self.store_offchain_error:
            raise self.store_offchain_error

    def detect_offchain_data_gaps(self):
        if self.gaps_error:
            raise self.gaps_error
        return self.gaps


class FakeEtherman:
    def __init__(self, members=(), committee_error=None):
        self.members = list(members)
        self.committee_error = committee_error
        self.committee_calls = 0
        self.tx = None
        self.tx_error = None
        self.header_number = 0
        self.events = []

    def get_current_data_committee(self):
        self.committee_calls += 1
        if self.committee_error:
            raise self.committee_error
        return SimpleNamespace(members=self.members)

    def get_tx(self, tx_hash):
        if self.tx_error:
            raise self.tx_error
        return self.tx

    def header_by_number(self, number):
        return SimpleNamespace(number=self.header_number)

    def filter_sequence_batches(self, start, end):
        return list(self.events)


class FakeSequencer:
    def __init__(self, data=None, error=None):
        self.data = data
        self.error = error
        self.calls = []

    def get_sequence_batch(self, number):
        self.calls.append(number)
        if self.error:
            raise self.error
        return SimpleNamespace(number=number, batch_l2_data=self.data)


class FakeClient:
    def __init__(self, responses):
        self.responses = list(responses)
        self.requested = []

    def get_off_chain_data(self, key):
        self.requested.append(key)
        result = self.responses.pop(0)
        if isinstance(result, Exception):
            raise result
        return result


class FakeFactory:
    def __init__(self, client):
        self.client = client
        self.urls = []

    def new(self, url):
        self.urls.append(url)
        return self.client


def make_sync(db=None, eth=None, sequencer=None, factory=None, reorgs=None, config=None):
    return BatchSynchronizer(
        config or SynchronizerConfig(),
        SELF_ADDR,
        db or FakeDB(),
        reorgs,
        eth or FakeEtherman(),
        sequencer or FakeSequencer(error=RuntimeError("error")),
        factory or FakeFactory(FakeClient([])),
    )


def _word(value):
    return int(value).to_bytes(32, "big")


def _encode_call(selector, statics, hashes, tail):
    head_words = len(statics) + 2
    array_offset = head_words * 32
    array = _word(len(hashes)) + b"".join(h + bytes(32) + bytes(32) + bytes(32) for h in hashes)
    bytes_offset = array_offset + len(array)
    padded = tail + bytes(-len(tail) % 32)
    head = _word(array_offset) + b"".join(_word(v) for v in statics) + _word(bytes_offset)
    return selector + head + array + _word(len(tail)) + padded


ADDRESS_WORD = int.from_bytes(hex_to_address("0xABCD"), "big")
ETROG_DATA = _encode_call(
    METHOD_ID_SEQUENCE_BATCHES_VALIDIUM_ETROG, [ADDRESS_WORD], [TX_HASH], bytes([22, 23, 24])
)
ELDERBERRY_DATA = _encode_call(
    METHOD_ID_SEQUENCE_BATCHES_VALIDIUM_ELDERBERRY, [10, 20, ADDRESS_WORD], [TX_HASH], bytes([22, 23, 24])
)
EVENT = SequenceBatchesEvent(block_number=0, tx_hash=bytes_to_hash(bytes([0, 1, 2, 3])), num_batch=10)


# --- resolve_committee ---


def test_resolve_committee_error():
    eth = FakeEtherman(committee_error=RuntimeError("error"))
    with pytest.raises(RuntimeError, match="error"):
        make_sync(eth=eth)
    assert eth.committee_calls == 1


def test_resolve_committee_successful():
    members = [
        DataCommitteeMember(hex_to_address("0x123312415"), "http://url-1"),
        DataCommitteeMember(hex_to_address("0x123312416"), "http://url-2"),
        DataCommitteeMember(hex_to_address("0x123312417"), "http://url-3"),
    ]
    sync = make_sync(eth=FakeEtherman(members))
    assert len(sync.committee) == 3


def test_resolve_committee_excludes_self():
    members = [
        DataCommitteeMember(SELF_ADDR, "http://self"),
        DataCommitteeMember(hex_to_address("0x1"), "http://url-1"),
    ]
    sync = make_sync(eth=FakeEtherman(members))
    assert len(sync.committee) == 1
    assert sync.committee.load(SELF_ADDR) is None


# --- resolve ---

RESOLVE_DATA = hex_to_hash("0xFFFF")
RESOLVE_KEY = BatchKey(number=1, hash=keccak256(RESOLVE_DATA))


def test_resolve_from_sequencer():
    sequencer = FakeSequencer(data=RESOLVE_DATA)
    factory = FakeFactory(FakeClient([]))
    result = make_sync(sequencer=sequencer, factory=factory).resolve(RESOLVE_KEY)
    assert result == OffChainData(key=RESOLVE_KEY.hash, value=RESOLVE_DATA, batch_num=1)
    assert sequencer.calls == [1]
    assert factory.urls == []


def test_resolve_from_committee_member():
    members = [
        DataCommitteeMember(hex_to_address("0x4321"), "http://url-22"),
        DataCommitteeMember(hex_to_address("0x5321"), "http://url-22"),
    ]
    client = FakeClient([RESOLVE_DATA])
    factory = FakeFactory(client)
    sync = make_sync(eth=FakeEtherman(members), factory=factory)
    result = sync.resolve(RESOLVE_KEY)
    assert result.key == RESOLVE_KEY.hash
    assert result.value == RESOLVE_DATA
    assert factory.urls == ["http://url-22"]
    assert client.requested == [RESOLVE_KEY.hash]


def test_resolve_members_return_errors():
    members = [
        DataCommitteeMember(hex_to_address("0x1234"), "http://url-1"),
        DataCommitteeMember(hex_to_address("0x1235"), "http://url-2"),
    ]
    factory = FakeFactory(FakeClient([RuntimeError("error"), RuntimeError("error")]))
    sync = make_sync(eth=FakeEtherman(members), factory=factory)
    with pytest.raises(BatchNotFoundError, match="no data found for number"):
        sync.resolve(RESOLVE_KEY)
    assert sorted(factory.urls) == ["http://url-1", "http://url-2"]
    assert len(sync.committee) == 0


def test_resolve_members_return_other_hash():
    members = [
        DataCommitteeMember(hex_to_address("0x123456"), "http://url-11"),
        DataCommitteeMember(hex_to_address("0x12357"), "http://url-22"),
    ]
    factory = FakeFactory(FakeClient([bytes([0, 0, 0, 1]), bytes([0, 0, 0, 1])]))
    sync = make_sync(eth=FakeEtherman(members), factory=factory)
    with pytest.raises(BatchNotFoundError, match="no data found for number") as info:
        sync.resolve(RESOLVE_KEY)
    assert info.value.code == -32601
    assert len(factory.urls) == 2


def test_resolve_skips_malformed_members():
    members = [DataCommitteeMember(hex_to_address("0x0"), "http://url-1")]
    factory = FakeFactory(FakeClient([RESOLVE_DATA]))
    eth = FakeEtherman(members)
    sync = make_sync(eth=eth, factory=factory)
    with pytest.raises(BatchNotFoundError):
        sync.resolve(RESOLVE_KEY)
    assert factory.urls == []


# --- handle_event ---


def _tx(data):
    return SimpleNamespace(data=data)


def test_handle_event_get_tx_fails():
    eth = FakeEtherman()
    eth.tx_error = RuntimeError("error")
    db = FakeDB()
    with pytest.raises(RuntimeError):
        make_sync(db=db, eth=eth).handle_event(EVENT)
    assert db.stored_keys == []


def test_handle_event_invalid_tx_data():
    eth = FakeEtherman()
    eth.tx = _tx(bytes([0, 1, 3, 4, 5, 6, 7]))
    db = FakeDB()
    with pytest.raises(UnrecognizedMethodError):
        make_sync(db=db, eth=eth).handle_event(EVENT)
    assert db.stored_keys == []


@pytest.mark.parametrize("data", [ETROG_DATA, ELDERBERRY_DATA], ids=["etrog", "elderberry"])
def test_handle_event_stores_batch_keys(data):
    eth = FakeEtherman()
    eth.tx = _tx(data)
    db = FakeDB()
    make_sync(db=db, eth=eth).handle_event(EVENT)
    assert db.stored_keys == [[BatchKey(number=10, hash=TX_HASH)]]


def test_handle_event_numbers_batches_backwards():
    first, second = keccak256(b"a"), keccak256(b"b")
    eth = FakeEtherman()
    eth.tx = _tx(_encode_call(METHOD_ID_SEQUENCE_BATCHES_VALIDIUM_ETROG, [ADDRESS_WORD], [first, second], b""))
    db = FakeDB()
    make_sync(db=db, eth=eth).handle_event(EVENT)
    assert db.stored_keys == [[BatchKey(10, second), BatchKey(9, first)]]


def test_handle_event_store_fails():
    eth = FakeEtherman()
    eth.tx = _tx(ETROG_DATA)
    db = FakeDB()
    db.store_keys_error = RuntimeError("error")
    with pytest.raises(RuntimeError):
        make_sync(db=db, eth=eth).handle_event(EVENT)
    assert db.stored_keys == [[BatchKey(number=10, hash=TX_HASH)]]


# --- handle_unresolved_batches ---


def test_unresolved_keys_error():
    db = FakeDB()
    db.unresolved_error = RuntimeError("error")
    with pytest.raises(RuntimeError, match="failed to get unresolved batch keys"):
        make_sync(db=db).handle_unresolved_batches()
    assert db.unresolved_limits == [100]


def test_no_unresolved_keys():
    db = FakeDB()
    make_sync(db=db).handle_unresolved_batches()
    assert db.unresolved_limits == [100]
    assert db.listed == []
    assert db.deleted == []


def test_unresolved_key_already_resolved():
    db = FakeDB()
    db.unresolved = [BatchKey(10, TX_HASH)]
    db.offchain = [OffChainData(TX_HASH, BATCH_L2_DATA, 10)]
    make_sync(db=db).handle_unresolved_batches()
    assert db.listed == [[TX_HASH]]
    assert db.stored_offchain == []
    assert db.deleted == [[BatchKey(10, TX_HASH)]]


def test_unresolved_key_already_resolved_without_batch_number():
    db = FakeDB()
    db.unresolved = [BatchKey(10, TX_HASH)]
    db.offchain = [OffChainData(TX_HASH, BATCH_L2_DATA, 0)]
    make_sync(db=db).handle_unresolved_batches()
    assert db.stored_offchain == [[OffChainData(TX_HASH, BATCH_L2_DATA, 10)]]
    assert db.deleted == [[BatchKey(10, TX_HASH)]]


def test_unresolved_key_found_from_sequencer():
    db = FakeDB()
    db.unresolved = [BatchKey(10, TX_HASH)]
    sequencer = FakeSequencer(data=BATCH_L2_DATA)
    make_sync(db=db, sequencer=sequencer).handle_unresolved_batches()
    assert sequencer.calls == [10]
    assert db.stored_offchain == [[OffChainData(TX_HASH, BATCH_L2_DATA, 10)]]
    assert db.deleted == [[BatchKey(10, TX_HASH)]]


def test_unresolved_key_not_resolvable_is_kept():
    db = FakeDB()
    db.unresolved = [BatchKey(10, TX_HASH)]
    make_sync(db=db).handle_unresolved_batches()
    assert db.stored_offchain == []
    assert db.deleted == []


def test_unresolved_store_fails():
    db = FakeDB()
    db.unresolved = [BatchKey(10, TX_HASH)]
    db.store_offchain_error = RuntimeError("error")
    with pytest.raises(RuntimeError, match="failed to store offchain data"):
        make_sync(db=db, sequencer=FakeSequencer(data=BATCH_L2_DATA)).handle_unresolved_batches()
    assert db.deleted == []


# --- handle_reorg ---


def test_reorg_last_processed_block_fails():
    db = FakeDB()
    db.last_error = RuntimeError("error")
    make_sync(db=db).handle_reorg(SimpleNamespace(number=10))
    assert db.stored_blocks == []


def test_reorg_higher_than_db():
    db = FakeDB()
    db.last_processed = 5
    make_sync(db=db).handle_reorg(SimpleNamespace(number=10))
    assert db.stored_blocks == []


def test_reorg_lower_than_db_store_error():
    db = FakeDB()
    db.last_processed = 15
    db.store_block_error = RuntimeError("error")
    make_sync(db=db).handle_reorg(SimpleNamespace(number=10))
    assert db.stored_blocks == [10]


def test_reorg_lower_than_db_stored():
    db = FakeDB()
    db.last_processed = 25
    make_sync(db=db).handle_reorg(SimpleNamespace(number=15))
    assert db.stored_blocks == [15]


def test_reorgs_processed_by_background_worker():
    db = FakeDB()
    db.last_processed = 25
    reorgs = queue.Queue()
    sync = make_sync(db=db, reorgs=reorgs, config=SynchronizerConfig(retry_period=3600))
    sync.start()
    try:
        reorgs.put(SimpleNamespace(number=15))
        deadline = time.monotonic() + 5
        while not db.stored_blocks and time.monotonic() < deadline:
            time.sleep(0.01)
    finally:
        sync.stop()
    assert db.stored_blocks == [15]


# --- filter_events ---


def test_filter_events_uses_default_batch_size():
    db = FakeDB()
    db.last_processed = 5
    eth = FakeEtherman()
    eth.header_number = 100
    make_sync(db=db, eth=eth).filter_events()
    assert db.stored_blocks == [36]


def test_filter_events_capped_at_latest_block():
    db = FakeDB()
    db.last_processed = 5
    eth = FakeEtherman()
    eth.header_number = 20
    make_sync(db=db, eth=eth, config=SynchronizerConfig(block_batch_size=10)).filter_events()
    assert db.stored_blocks == [14]


def test_filter_events_handles_sorted_events():
    db = FakeDB()
    eth = FakeEtherman()
    eth.header_number = 50
    eth.tx = _tx(ETROG_DATA)
    eth.events = [
        SequenceBatchesEvent(block_number=7, tx_hash=TX_HASH, num_batch=12),
        SequenceBatchesEvent(block_number=3, tx_hash=TX_HASH, num_batch=11),
    ]
    make_sync(db=db, eth=eth).filter_events()
    assert db.stored_keys == [[BatchKey(11, TX_HASH)], [BatchKey(12, TX_HASH)]]
    assert db.stored_blocks == [32]


def test_filter_events_failed_event_rewinds():
    db = FakeDB()
    eth = FakeEtherman()
    eth.header_number = 50
    eth.tx_error = RuntimeError("error")
    eth.events = [SequenceBatchesEvent(block_number=9, tx_hash=TX_HASH, num_batch=1)]
    make_sync(db=db, eth=eth).filter_events()
    assert db.stored_blocks == [8]


# --- detect_offchain_data_gaps ---


def test_no_gaps_detected():
    sync = make_sync()
    sync.detect_offchain_data_gaps()
    assert sync.gaps() == {}


def test_one_gap_detected():
    db = FakeDB()
    db.gaps = {1: 3}
    sync = make_sync(db=db)
    sync.detect_offchain_data_gaps()
    assert sync.gaps() == {1: 3}


def test_failed_to_detect_gaps():
    db = FakeDB()
    db.gaps_error = RuntimeError("test error")
    sync = make_sync(db=db)
    with pytest.raises(RuntimeError, match="failed to detect offchain data gaps"):
        sync.detect_offchain_data_gaps()
    assert sync.gaps() == {}


def test_gaps_returns_copy():
    db = FakeDB()
    db.gaps = {4: 6}
    sync = make_sync(db=db)
    sync.detect_offchain_data_gaps()
    snapshot = sync.gaps()
    snapshot[9] = 10
    assert sync.gaps() == {4: 6}