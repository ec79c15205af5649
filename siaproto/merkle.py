"""Merkle roots and proofs over sectors and sector roots.

The algorithms follow the binary numeral tree construction: a tree over n
leaves is the sequence of perfect subtrees given by the set bits of n.
"""

from __future__ import annotations

import hashlib
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from typing import BinaryIO

from .actions import (
    RPC_WRITE_ACTION_APPEND,
    RPC_WRITE_ACTION_SWAP,
    RPC_WRITE_ACTION_TRIM,
    RPC_WRITE_ACTION_UPDATE,
    RPCWriteAction,
)
from .merklehash import HASH_SIZE, ZERO_HASH, sum_pair

SECTOR_SIZE = 1 << 22
LEAF_SIZE = 64
LEAVES_PER_SECTOR = SECTOR_SIZE // LEAF_SIZE

_MASK64 = (1 << 64) - 1
_MAX_INT32 = (1 << 31) - 1
_LEAF_PREFIX = b"\x00"


def _trailing_zeros(n: int) -> int:
    n &= _MASK64
    return (n & -n).bit_length() - 1 if n else 64


def _popcount(n: int) -> int:
    return (n & _MASK64).bit_count()


def _leaf_hash(leaf) -> bytes:
    h = hashlib.blake2b(_LEAF_PREFIX, digest_size=HASH_SIZE)
    h.update(leaf)
    return h.digest()


def _read_full(r: BinaryIO, n: int) -> bytes:
    """Read up to n bytes, stopping early only at end of stream."""
    chunks = []
    remaining = n
    while remaining > 0:
        chunk = r.read(remaining)
        if not chunk:
            break
        chunks.append(chunk)
        remaining -= len(chunk)
    return b"".join(chunks)


@dataclass
class ProofAccumulator:
    """An accumulator of subtree roots for building and verifying proofs."""

    trees: list[bytes] = field(default_factory=lambda: [ZERO_HASH] * 64)
    num_leaves: int = 0

    def _has_node_at_height(self, height: int) -> bool:
        return bool(self.num_leaves & (1 << height))

    def insert_node(self, h: bytes, height: int) -> None:
        """Insert the root of a perfect subtree of the given height."""
        h = bytes(h)
        i = height
        while self._has_node_at_height(i):
            h = sum_pair(self.trees[i], h)
            i += 1
        self.trees[i] = h
        self.num_leaves += 1 << height

    def root(self) -> bytes:
        """Return the Merkle root of everything inserted so far."""
        start = _trailing_zeros(self.num_leaves)
        if start >= 64:
            return ZERO_HASH
        root = self.trees[start]
        for height in range(start + 1, len(self.trees)):
            if self._has_node_at_height(height):
                root = sum_pair(self.trees[height], root)
        return root

    def _append_leaves(self, data) -> None:
        if len(data) % LEAF_SIZE:
            raise ValueError("append_leaves: illegal input size")
        view = memoryview(data)
        for offset in range(0, len(view), LEAF_SIZE):
            self.insert_node(_leaf_hash(view[offset:offset + LEAF_SIZE]), 0)


def _leaves_root(data) -> bytes:
    acc = ProofAccumulator()
    acc._append_leaves(data)
    return acc.root()


def sector_root(sector) -> bytes:
    """Compute the Merkle root of a full sector."""
    if len(sector) != SECTOR_SIZE:
        raise ValueError(f"sector must be {SECTOR_SIZE} bytes, got {len(sector)}")
    return _leaves_root(sector)


def reader_root(r: BinaryIO) -> bytes:
    """Return the Merkle root of a stream holding a whole number of leaves."""
    acc = ProofAccumulator()
    while True:
        batch = _read_full(r, LEAF_SIZE * 16)
        if not batch:
            break
        if len(batch) % LEAF_SIZE:
            raise ValueError("stream does not contain integer multiple of leaves")
        acc._append_leaves(batch)
    return acc.root()


def read_sector(r: BinaryIO) -> tuple[bytes, bytes]:
    """Read one sector from r, returning its root and its data."""
    data = _read_full(r, SECTOR_SIZE)
    if len(data) != SECTOR_SIZE:
        raise EOFError("unexpected EOF")
    return _leaves_root(data), data


def meta_root(roots: Sequence[bytes]) -> bytes:
    """Compute the root of a set of existing Merkle roots."""
    acc = ProofAccumulator()
    for r in roots:
        acc.insert_node(r, 0)
    return acc.root()


def proof_size(n: int, i: int) -> int:
    """Size of a proof for leaf i within a tree of n leaves."""
    return range_proof_size(n, i, i + 1)


def range_proof_size(n: int, start: int, end: int) -> int:
    """Size of a proof for the leaf range [start, end) within n leaves."""
    left_hashes = _popcount(start)
    last = (end - 1) & _MASK64
    path_mask = (1 << (last ^ ((n - 1) & _MASK64)).bit_length()) - 1
    right_hashes = _popcount(~last & path_mask)
    return left_hashes + right_hashes


def _next_subtree_size(start: int, end: int) -> int:
    ideal = _trailing_zeros(start)
    max_size = (end - start).bit_length() - 1
    return 1 << min(ideal, max_size)


def build_proof(
    sector,
    start: int,
    end: int,
    precalc: Callable[[int, int], bytes] | None = None,
) -> list[bytes]:
    """Build a proof for the leaf range [start, end) of a sector.

    precalc may supply precomputed subtree roots for [i, j); returning the
    zero hash means none is available.
    """
    if end > LEAVES_PER_SECTOR or start > end or start == end:
        raise ValueError("build_proof: illegal proof range")
    if len(sector) != SECTOR_SIZE:
        raise ValueError(f"sector must be {SECTOR_SIZE} bytes, got {len(sector)}")
    view = memoryview(sector)
    proof: list[bytes] = []

    def rec(i: int, j: int) -> None:
        if i >= start and j <= end:
            return
        if j <= start or i >= end:
            h = bytes(precalc(i, j)) if precalc is not None else ZERO_HASH
            if h == ZERO_HASH:
                h = _leaves_root(view[i * LEAF_SIZE:j * LEAF_SIZE])
            proof.append(h)
            return
        mid = (i + j) // 2
        rec(i, mid)
        rec(mid, j)

    rec(0, LEAVES_PER_SECTOR)
    return proof


def build_sector_range_proof(sector_roots: Sequence[bytes], start: int, end: int) -> list[bytes]:
    """Build a proof for the sector range [start, end)."""
    num_leaves = len(sector_roots)
    if num_leaves == 0:
        return []
    if end > num_leaves or start > end or start == end:
        raise ValueError("build_sector_range_proof: illegal proof range")
    proof: list[bytes] = []

    def build_range(i: int, j: int) -> None:
        while i < j and i < num_leaves:
            size = min(_next_subtree_size(i, j), num_leaves - i)
            proof.append(meta_root(sector_roots[i:i + size]))
            i += size

    build_range(0, start)
    build_range(end, _MAX_INT32)
    return proof


def _consume(acc: ProofAccumulator, hashes: list[bytes], i: int, j: int) -> None:
    """Insert subtree roots from the front of hashes covering [i, j)."""
    while i < j and hashes:
        size = _next_subtree_size(i, j)
        acc.insert_node(hashes.pop(0), _trailing_zeros(size))
        i += size


@dataclass
class RangeProofVerifier:
    """Verifies range proofs over a sector in streaming fashion."""

    start: int
    end: int
    roots: list[bytes] = field(default_factory=list)

    def read_from(self, r: BinaryIO) -> int:
        """Ingest the range's leaves from r, returning the bytes consumed."""
        total = 0
        i, j = self.start, self.end
        while i < j:
            size = _next_subtree_size(i, j)
            n = size * LEAF_SIZE
            self.roots.append(_leaves_root(_read_full(r, n)) if n else ZERO_HASH)
            total += n
            i += size
        return total

    def verify(self, proof: Sequence[bytes], root: bytes) -> bool:
        """Verify proof against root using the ingested data."""
        if len(proof) != range_proof_size(LEAVES_PER_SECTOR, self.start, self.end):
            return False
        acc = ProofAccumulator()
        remaining = [bytes(h) for h in proof]
        _consume(acc, remaining, 0, self.start)
        _consume(acc, list(self.roots), self.start, self.end)
        _consume(acc, remaining, self.end, LEAVES_PER_SECTOR)
        return acc.root() == bytes(root)


def verify_sector_range_proof(
    proof: Sequence[bytes],
    range_roots: Sequence[bytes],
    start: int,
    end: int,
    num_roots: int,
    root: bytes,
) -> bool:
    """Verify a proof produced by build_sector_range_proof."""
    if num_roots == 0:
        return len(proof) == 0
    if len(range_roots) != end - start:
        raise ValueError("verify_sector_range_proof: number of roots does not match range")
    if end > num_roots or start > end or start == end:
        raise ValueError("verify_sector_range_proof: illegal proof range")
    if len(proof) != range_proof_size(num_roots, start, end):
        return False
    acc = ProofAccumulator()
    remaining = [bytes(h) for h in proof]
    _consume(acc, remaining, 0, start)
    for h in range_roots:
        acc.insert_node(h, 0)
    _consume(acc, remaining, end, _MASK64)
    return acc.root() == bytes(root)


def verify_append_proof(
    num_leaves: int,
    tree_hashes: Sequence[bytes],
    sector_root: bytes,
    old_root: bytes,
    new_root: bytes,
) -> bool:
    """Verify a proof that appending sector_root turns old_root into new_root."""
    acc = ProofAccumulator(num_leaves=num_leaves)
    remaining = iter(tree_hashes)
    for height in range(len(acc.trees)):
        if acc._has_node_at_height(height):
            h = next(remaining, None)
            if h is None:
                break
            acc.trees[height] = bytes(h)
    if acc.root() != bytes(old_root):
        return False
    acc.insert_node(sector_root, 0)
    return acc.root() == bytes(new_root)


def _unsupported(action: RPCWriteAction) -> ValueError:
    return ValueError(f"unknown or unsupported action type: {action.type}")


def _sectors_changed(actions: Sequence[RPCWriteAction], num_sectors: int) -> list[int]:
    new_num = num_sectors
    changed: set[int] = set()
    for action in actions:
        if action.type == RPC_WRITE_ACTION_APPEND:
            changed.add(new_num)
            new_num += 1
        elif action.type == RPC_WRITE_ACTION_TRIM:
            for _ in range(action.a):
                new_num -= 1
                changed.add(new_num)
        elif action.type == RPC_WRITE_ACTION_SWAP:
            changed.update((action.a, action.b))
        else:
            raise _unsupported(action)
    return sorted(index for index in changed if index < num_sectors)


def _modify_proof_ranges(
    proof_indices: list[int], actions: Sequence[RPCWriteAction], num_sectors: int
) -> list[int]:
    indices = list(proof_indices)
    for action in actions:
        if action.type == RPC_WRITE_ACTION_APPEND:
            indices.append(num_sectors)
            num_sectors += 1
        elif action.type == RPC_WRITE_ACTION_TRIM:
            del indices[len(indices) - action.a:]
            num_sectors -= action.a
        elif action.type in (RPC_WRITE_ACTION_SWAP, RPC_WRITE_ACTION_UPDATE):
            pass
        else:
            raise _unsupported(action)
    return indices


def _modify_leaves(
    leaf_hashes: Sequence[bytes],
    actions: Sequence[RPCWriteAction],
    num_sectors: int,
    append_roots: Sequence[bytes] | None,
) -> list[bytes]:
    touched: set[int] = set()
    for action in actions:
        if action.type == RPC_WRITE_ACTION_APPEND:
            touched.add(num_sectors)
            num_sectors += 1
        elif action.type == RPC_WRITE_ACTION_TRIM:
            for _ in range(action.a):
                num_sectors -= 1
                touched.add(num_sectors)
        elif action.type == RPC_WRITE_ACTION_SWAP:
            touched.update((action.a, action.b))
        else:
            raise _unsupported(action)
    index_map = {index: pos for pos, index in enumerate(sorted(touched))}

    pending_roots = list(append_roots or [])
    leaves = [bytes(h) for h in leaf_hashes]
    for action in actions:
        if action.type == RPC_WRITE_ACTION_APPEND:
            leaves.append(pending_roots.pop(0) if pending_roots else sector_root(action.data))
        elif action.type == RPC_WRITE_ACTION_TRIM:
            del leaves[len(leaves) - action.a:]
        elif action.type == RPC_WRITE_ACTION_SWAP:
            i, j = index_map[action.a], index_map[action.b]
            leaves[i], leaves[j] = leaves[j], leaves[i]
        else:
            raise _unsupported(action)
    return leaves


def _subtree_ranges(indices: Sequence[int], num_leaves: int):
    """Yield the (start, size) subtrees that lie between the given indices."""
    start = 0
    for end in [*indices, None]:
        stop = num_leaves if end is None else end
        i = start
        while i < stop:
            size = _next_subtree_size(i, stop)
            yield i, size
            i += size
        if end is not None:
            start = end + 1


def build_diff_proof(
    actions: Sequence[RPCWriteAction], sector_roots: Sequence[bytes]
) -> tuple[list[bytes], list[bytes]]:
    """Build a diff proof for the actions; returns (tree_hashes, leaf_hashes)."""
    indices = _sectors_changed(actions, len(sector_roots))
    leaf_hashes = [bytes(sector_roots[j]) for j in indices]
    tree_hashes = [
        meta_root(sector_roots[i:i + size])
        for i, size in _subtree_ranges(indices, len(sector_roots))
    ]
    return tree_hashes, leaf_hashes


def _verify_multi(
    proof_indices: Sequence[int],
    tree_hashes: Sequence[bytes],
    leaf_hashes: Sequence[bytes],
    num_leaves: int,
    root: bytes,
) -> bool:
    acc = ProofAccumulator()
    remaining = [bytes(h) for h in tree_hashes]
    start = 0
    for end, leaf in zip(proof_indices, leaf_hashes):
        _consume(acc, remaining, start, end)
        start = end + 1
        acc.insert_node(leaf, 0)
    _consume(acc, remaining, start, num_leaves)
    return acc.root() == bytes(root) and not remaining


def verify_diff_proof(
    actions: Sequence[RPCWriteAction],
    num_leaves: int,
    tree_hashes: Sequence[bytes],
    leaf_hashes: Sequence[bytes],
    old_root: bytes,
    new_root: bytes,
    append_roots: Sequence[bytes] | None = None,
) -> bool:
    """Verify a diff proof produced by build_diff_proof."""
    proof_indices = _sectors_changed(actions, num_leaves)
    if len(proof_indices) != len(leaf_hashes):
        return False
    if not _verify_multi(proof_indices, tree_hashes, leaf_hashes, num_leaves, old_root):
        return False
    new_leaves = _modify_leaves(leaf_hashes, actions, num_leaves, append_roots)
    new_indices = _modify_proof_ranges(proof_indices, actions, num_leaves)
    num_leaves += len(new_leaves) - len(leaf_hashes)
    return _verify_multi(new_indices, tree_hashes, new_leaves, num_leaves, new_root)


def diff_proof_size(actions: Sequence[RPCWriteAction], num_leaves: int) -> int:
    """Number of hashes in a diff proof for the actions over num_leaves leaves."""
    indices = _sectors_changed(actions, num_leaves)
    return len(indices) + sum(1 for _ in _subtree_ranges(indices, num_leaves))


def convert_proof_ordering(proof: Sequence[bytes], index: int) -> list[bytes]:
    """Convert a left-to-right proof into leaf-to-root ordering."""
    split = _popcount(index)
    lefts = list(proof[:split])
    rights = list(proof[split:])
    reordered: list[bytes] = []
    bit = 0
    while len(reordered) < len(proof):
        if bit >= 64:
            raise ValueError("proof does not match leaf index")
        if index & (1 << bit):
            reordered.append(lefts.pop())
        elif rights:
            reordered.append(rights.pop(0))
        bit += 1
    return reordered