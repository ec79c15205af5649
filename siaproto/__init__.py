"""Merkle hashing, sector proofs, protocol identifiers and stream multiplexing for storage contracts."""

__version__ = "0.9.1"