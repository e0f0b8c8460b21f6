"""
Deterministic hashing utilities.

Replicas never talk to each other, so anything they must agree on has to be
derivable from the same inputs on every host. ``compute_hash`` is the one
primitive for that: SHA-256 over ``|``-joined string forms, truncated to a
configurable number of hex characters.

Used for job ids: the ``jid`` of a job instruction is the hash of its dedup
key, so every replica that builds the instruction for the same scheduled
instant builds the same ``jid``.

Examples:
    >>> compute_hash("nightly-report", 1767225600) == compute_hash("nightly-report", 1767225600)
    True
    >>> len(compute_hash("x"))
    32

Tags:
    hashing, deduplication, idempotency, cron-spine

Doc-Types:
    - API Reference
"""

import hashlib
from typing import Any


def compute_hash(*values: Any, length: int = 32) -> str:
    """
    Compute deterministic hash from values.

    Args:
        *values: Values to hash (converted to strings, order matters)
        length: Hex digest length (default 32 = 128 bits, max 64)

    Returns:
        Hex string of specified length
    """
    if not 1 <= length <= 64:
        raise ValueError(f"length must be between 1 and 64, got {length}")
    content = "|".join(str(v) for v in values)
    return hashlib.sha256(content.encode()).hexdigest()[:length]


__all__ = ["compute_hash"]
