# cdkdac

The core logic of a data availability committee (DAC) node for a validium rollup. It
covers three jobs:

- **Signing sequences.** It checks that a sequence was signed by the trusted sequencer,
  stores the batch data off chain and signs the accumulated input hash.
- **Serving data.** It returns stored batch data looked up by its Keccak-256 hash.
- **Synchronizing with L1.** It follows `SequenceBatches` events and fetches batch data
  it does not hold yet. It asks the trusted sequencer first and then the other committee
  members.

## Installation

```
pip install cdkdac
```

Running the tests:

```
pip install "cdkdac[test]"
pytest
```

## What the package does not include

The package holds the node's logic only. Everything it talks to is passed in as a plain
object with the methods listed below. The package does not provide:

- a database;
- an L1 chain client;
- a sequencer tracker;
- an RPC client for other committee members;
- a JSON-RPC server that exposes the endpoints;
- configuration loading or keystore handling;
- a command-line program.

The one network call it makes itself is `cdkdac.synchronizer.reorg.fetch_latest_block`.
It sends a plain HTTP JSON-RPC `eth_getBlockByNumber` request.

## Modules

### `cdkdac.datatypes`

**Hex argument types**

| Type | Subclass of | Parse with | Render with |
| --- | --- | --- | --- |
| `ArgUint64` | `int` | `from_text` | `to_hex` |
| `ArgBytes` | `bytes` | `from_text` | `to_hex` |
| `ArgBig` | `int` | `from_text` | `to_hex` |
| `ArgHash` | `bytes` | `from_text` | (none) |

- `ArgUint64` raises `ValueError` outside the uint64 range and for text that is not hex.
- `ArgBytes.from_text` returns empty bytes for text that is not valid hex.
- `ArgHash` is a 32-byte hash that accepts short forms such as `0x00`. Its `hash()`
  method returns plain bytes.

**Records**

- `BatchKey(number, hash)`
- `OffChainData(key, value, batch_num)`
- `DACStatus`, with a `to_dict()` method that uses the wire field names.

**Helpers**

- `keccak256(*chunks)`
- `hex_to_hash`, `hex_to_address`, `bytes_to_hash`
- `is_hex_valid`, `hex_encode_big`
- `remove_duplicate_off_chain_data`, which keeps the first entry for each key.

**Errors**

`RPCError(code, message)` is raised by the endpoints. It defines the code constants
`DEFAULT` (-32000), `INVALID_REQUEST`, `NOT_FOUND`, `INVALID_PARAMS`, `PARSER` and
`REVERTED`.

### `cdkdac.signing`

This module implements secp256k1 in pure Python, with deterministic RFC 6979 nonces.

- **`PrivateKey`**
  - `PrivateKey.generate()` makes a random key.
  - `public_address()` returns the 20-byte address.
  - `sign_recoverable(digest)` returns `R || S || V`, with `V` equal to 0 or 1 and a low
    `S`.
- **`sign(private_key, hash_to_sign)`** returns a 65-byte signature with `V` equal to 27
  or 28. It raises `NonCanonicalSignatureError` if `S` is above the canonical bound.
- **`recover_address(digest, signature)`** takes a signature with `V` from 0 to 3 and
  returns the signer's address.

### `cdkdac.sequence`

**`Sequence`** is a `list` of batch payloads.

- `hash_to_sign()` chains `keccak256(previous || keccak256(batch))`.
- `sign(key)` signs that hash.
- `off_chain_data()` lists the payloads keyed by their hashes.

**`SequenceBanana`** holds `Batch` entries together with:

- `old_acc_input_hash`
- `l1_info_root`
- `max_sequence_timestamp`

Its `hash_to_sign()` folds `calculate_acc_input_hash` over the batches.

**`SignedSequence` and `SignedSequenceBanana`** pair a sequence with a signature.

- `signer()` recovers the address. It raises `InvalidSignatureError` when the signature
  is not 65 bytes long.
- `sign(key)` returns an `ArgBytes` signature.

Example:

```python
from cdkdac.datatypes import ArgBytes
from cdkdac.sequence import Sequence, SignedSequence
from cdkdac.signing import PrivateKey

key = PrivateKey.generate()
seq = Sequence([ArgBytes(b"\x00\x01"), ArgBytes(b"\x02\x03")])
signed = SignedSequence(sequence=seq, signature=seq.sign(key))
assert signed.signer() == key.public_address()
```

### `cdkdac.synchronizer`

**`committee`**

`DataCommitteeMember(addr, url)` describes one member. `CommitteeMapSafe` is a map of
members keyed by address, guarded by a lock. It provides:

- `store` and `store_batch`;
- `load`, which returns `None` when the address is missing;
- `delete`;
- `as_list`;
- `len()`.

**`txdata`**

`unpack_tx_data(tx_data)` decodes `sequenceBatchesValidium` call data in the Etrog,
Elderberry and Banana forms. It returns the transactions hash of each batch, in order.

- It raises `UnrecognizedMethodError` for any other selector.
- It raises `ValueError` for truncated data.
- `method_id(signature)` returns a 4-byte selector.

**`store`**

These are thin wrappers over the database for the `SyncTask.L1` task:

- `get_start_block` returns the last processed block minus one.
- `set_start_block`
- `store_unresolved_batch_keys`
- `get_unresolved_batch_keys`, which returns at most 100 keys.
- `delete_unresolved_batch_keys`
- `list_offchain_data`
- `store_offchain_data`
- `detect_offchain_data_gaps`

The database object must provide these methods:

- `get_last_processed_block(task)`
- `store_last_processed_block(block, task)`
- `store_unresolved_batch_keys(keys)`
- `get_unresolved_batch_keys(limit)`
- `delete_unresolved_batch_keys(keys)`
- `list_offchain_data(keys)`
- `store_offchain_data(data)`
- `detect_offchain_data_gaps()`

**`startblock`**

`init_start_block(db, em, genesis_block, validium_addr)` records where L1 sync starts.

- It does nothing if a start block is already stored.
- A non-zero `genesis_block` is used as it is.
- Otherwise it binary-searches for the block where the contract was deployed, using
  `find_code`.

The chain client `em` needs `header_by_number(None)`, returning an object with `.number`,
and `code_at(address, block_number)`.

**`batches`**

`BatchSynchronizer(config, self_addr, db, reorgs, eth_client, sequencer, rpc_client_factory)`
takes a `SynchronizerConfig`. The config holds `retry_period` in seconds and
`block_batch_size`; a block batch size of 0 means 32.

Its methods:

- `filter_events()` scans the next block range for `SequenceBatchesEvent`s.
- `handle_event(event)` records unresolved `BatchKey`s.
- `handle_unresolved_batches()` fetches missing data and stores it.
- `resolve(batch)` asks the sequencer and then the committee members in random order. It
  raises `BatchNotFoundError` when nobody has the data.
- `handle_reorg(reorg)` rewinds the start block when sync has passed the reorg point.
- `detect_offchain_data_gaps()` and `gaps()` find and report gaps in the stored data.
- `start()` runs the periodic work in background threads, and `stop()` ends it. If
  `reorgs` is a `queue.Queue`, its messages are handled as they arrive.

The collaborators need these methods:

| Object | Methods |
| --- | --- |
| `eth_client` | `get_current_data_committee()` (with `.members`), `header_by_number(None)`, `filter_sequence_batches(start, end)`, `get_tx(hash)` (with `.data`) |
| `sequencer` | `get_sequence_batch(number)` (with `.batch_l2_data`) |
| `rpc_client_factory` | `new(url)`, returning a client with `get_off_chain_data(hash)` |

**`reorg`**

`ReorgDetector(rpc_url, polling_period, fetch_block=None)` polls the latest block.

- `subscribe()` returns a queue.
- `process_block(block)` sends a `BlockReorg` to every subscriber when a new head does
  not move past the previous head's number plus one.
- `start()` and `stop()` control polling.
- `fetch_block` defaults to `fetch_latest_block`.

### `cdkdac.services`

**`datacom.DatacomEndpoints(db, private_key, sequencer_tracker)`** provides
`sign_sequence` and `sign_sequence_banana`.

- They verify that the signer matches `sequencer_tracker.get_addr()`.
- They store the data through `db.store_offchain_data`.
- They return this node's signature.

Each failure raises `RPCError` with code -32000 and one of these messages:

- "failed to verify sender"
- "unauthorized"
- "failed to store offchain data. Error: ..."
- "failed to sign. Error: ..."

**`status.StatusEndpoints(db, gaps_detector)`** provides `get_status()`, which returns a
`DACStatus` with uptime, version, key count and backfill progress, and says whether gaps
exist. Database errors are logged and the affected count is reported as 0. It uses these
methods:

- `db.count_offchain_data()`
- `db.get_last_processed_block(task)`
- `gaps_detector.gaps()`

**`sync.SyncEndpoints(db)`** serves stored data.

- `get_off_chain_data(hash)` uses `db.get_offchain_data`.
- `list_off_chain_data(hashes)` uses `db.list_offchain_data` and accepts at most 100
  hashes. Beyond that it raises `RPCError` with code -32600.

### `cdkdac.version`

- `get_version_info()` returns the version, git revision, branch, Python version, build
  date and OS/architecture as text.
- `print_version(stream=None)` writes that text to `stream`, or to stdout if no stream is
  given.