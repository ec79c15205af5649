"""BLAKE2b-256 helpers for hashing Merkle tree leaves and nodes."""

from __future__ import annotations

import hashlib
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field

HASH_SIZE = 32
BLOCK_SIZE = 64

# Domain-separation prefixes for leaves and interior nodes.
LEAF_HASH_PREFIX = 0
NODE_HASH_PREFIX = 1

ZERO_HASH = bytes(HASH_SIZE)


def sum256(data: bytes) -> bytes:
    """Return the BLAKE2b-256 checksum of data."""
    return hashlib.blake2b(data, digest_size=HASH_SIZE).digest()


def _check_len(value: bytes, size: int, what: str) -> bytes:
    value = bytes(value)
    if len(value) != size:
        raise ValueError(f"{what} must be {size} bytes, got {len(value)}")
    return value


def hash_block(msg: bytes, prefix: int) -> bytes:
    """Hash a single 64-byte block preceded by a one-byte prefix."""
    msg = _check_len(msg, BLOCK_SIZE, "block")
    return sum256(bytes([prefix & 0xFF]) + msg)


def hash_blocks(msgs: Iterable[bytes], prefix: int) -> list[bytes]:
    """Hash each 64-byte block with the given prefix."""
    return [hash_block(msg, prefix) for msg in msgs]


def sum_leaf(leaf: bytes) -> bytes:
    """Compute the Merkle leaf hash of a single 64-byte leaf."""
    return hash_block(leaf, LEAF_HASH_PREFIX)


def sum_pair(left: bytes, right: bytes) -> bytes:
    """Compute the Merkle root of a pair of node hashes."""
    left = _check_len(left, HASH_SIZE, "left hash")
    right = _check_len(right, HASH_SIZE, "right hash")
    return hash_block(left + right, NODE_HASH_PREFIX)


def sum_leaves(leaves: Iterable[bytes]) -> list[bytes]:
    """Compute the leaf hashes of several 64-byte leaves."""
    return hash_blocks(leaves, LEAF_HASH_PREFIX)


def sum_nodes(nodes: Sequence[bytes]) -> list[bytes]:
    """Compute the parent hashes of consecutive pairs of node hashes."""
    if len(nodes) % 2:
        raise ValueError("sum_nodes requires an even number of nodes")
    return [sum_pair(left, right) for left, right in zip(nodes[::2], nodes[1::2])]


def _trailing_zeros(n: int) -> int:
    return (n & -n).bit_length() - 1 if n else 64


@dataclass
class Accumulator:
    """A generic Merkle tree accumulator."""

    trees: list[bytes] = field(default_factory=lambda: [ZERO_HASH] * 64)
    num_leaves: int = 0

    def _has_tree_at_height(self, height: int) -> bool:
        return bool(self.num_leaves & (1 << height))

    def add_leaf(self, h: bytes) -> None:
        """Incorporate a leaf hash into the accumulator."""
        h = _check_len(h, HASH_SIZE, "leaf hash")
        height = 0
        while self._has_tree_at_height(height):
            h = sum_pair(self.trees[height], h)
            height += 1
        self.trees[height] = h
        self.num_leaves += 1

    def root(self) -> bytes:
        """Return the Merkle root of the accumulated leaves."""
        start = _trailing_zeros(self.num_leaves)
        if start >= 64:
            return ZERO_HASH
        root = self.trees[start]
        for height in range(start + 1, 64):
            if self._has_tree_at_height(height):
                root = sum_pair(self.trees[height], root)
        return root