# siaproto

Building blocks for a renter-host storage protocol:

- **Merkle hashing** over BLAKE2b-256 with domain-separated leaf and node
  prefixes (`siaproto.merklehash`).
- **Sector Merkle roots and proofs**: roots of 4 MiB sectors, roots over sector
  roots, range proofs, append proofs and diff proofs for write actions
  (`siaproto.merkle`).
- **Protocol identifiers and write actions**: 16-byte `Specifier` values, the
  `RPCWriteAction` record, `RPCError` and the errors for invalid read/write
  requests (`siaproto.actions`).
- **Stream multiplexing** of many logical streams over one socket, with flow
  control and keep-alives (`siaproto.session`, `siaproto.frame`,
  `siaproto.config`).

It uses the standard library only and needs Python 3.10 or later.

## Installation

```
pip install .
```

## Merkle roots

```python
from siaproto.merklehash import sum_leaf, Accumulator
from siaproto.merkle import sector_root, meta_root

sector = bytes(4 * 1024 * 1024)
root = sector_root(sector)
print(root.hex())
# 50ed59cecd5ed3ca9e65cec0797202091dbba45272dafa3faa4e27064eedd52c

combined = meta_root([root, root])

acc = Accumulator()
for _ in range(4):
    acc.add_leaf(sum_leaf(bytes(64)))
print(acc.root().hex())
```

`reader_root` computes the root of a binary file-like object holding a whole
number of 64-byte leaves (it raises `ValueError` otherwise), and `read_sector`
reads exactly one sector, returning `(root, data)` or raising `EOFError` if
the stream is short.

## Range proofs

```python
from siaproto.merkle import (
    build_sector_range_proof,
    verify_sector_range_proof,
    meta_root,
)

roots = [bytes([i]) * 32 for i in range(10)]
proof = build_sector_range_proof(roots, 3, 6)
assert verify_sector_range_proof(proof, roots[3:6], 3, 6, len(roots), meta_root(roots))
```

Proofs for a range of leaves within a sector are built with `build_proof`
(optionally given a `precalc(i, j)` callable supplying known subtree roots) and
checked in a streaming fashion with `RangeProofVerifier`: `read_from` reads
the range's data from a binary file-like object, then `verify` checks the
proof against the sector root. `range_proof_size`, `proof_size` and
`convert_proof_ordering` (left-to-right into leaf-to-root order) round out the
proof helpers. Illegal ranges raise `ValueError`.

## Append and diff proofs

```python
from siaproto.actions import RPCWriteAction, RPC_WRITE_ACTION_SWAP
from siaproto.merkle import build_diff_proof, verify_diff_proof, meta_root

roots = [bytes([i]) * 32 for i in range(10)]
swap = RPCWriteAction(RPC_WRITE_ACTION_SWAP, 1, 4)
tree_hashes, leaf_hashes = build_diff_proof([swap], roots)

swapped = list(roots)
swapped[1], swapped[4] = swapped[4], swapped[1]
assert verify_diff_proof(
    [swap], len(roots), tree_hashes, leaf_hashes, meta_root(roots), meta_root(swapped), None
)
```

Append, Trim and Swap actions are supported in diff proofs; any other action
type raises `ValueError`. For Append actions the new sector roots may be
passed as `append_roots`; otherwise they are computed from each action's
`data`. `diff_proof_size` gives the number of hashes a diff proof will hold,
and `verify_append_proof` checks that appending one sector root turns an old
root into a new one.

## Multiplexing

```python
import socket
from siaproto.session import client, server

a, b = socket.socketpair()
with server(a, None) as srv, client(b, None) as cli:
    stream = cli.open_stream()
    stream.write(b"hello")
    peer = srv.accept_stream()
    print(peer.read(5))   # b'hello'
    stream.close()
```

Passing `None` as the configuration uses `default_config()`; a custom
`Config` (durations in seconds) is checked with `verify_config`, which raises
`ValueError` for unusable settings. Deadlines are given as epoch seconds
(`time.time()` values); `None` or `0` disables them. `Stream.read` returns
`b""` once the peer has closed the stream. Timeouts raise `SmuxTimeoutError`;
operations on a closed session or stream raise `SmuxError`.

The wire format is available on its own in `siaproto.frame`: `Frame.encode`
serialises a frame and `FrameHeader.parse` reads the 8-byte header.

## What is not included

The package does not perform the encrypted renter-host handshake or carry RPC
messages, and it has no encoding of protocol request and response objects,
no contract formation or renewal, and no pricing of RPCs. It offers no
command-line program.

## Running the tests

```
pip install .[test]
pytest
```