"""
Hash helpers for fingerprinting documents.
"""
import hashlib


def compute_bytes_hash(data: bytes) -> str:
    """Compute SHA-256 hash of bytes."""
    return hashlib.sha256(data).hexdigest()
