"""Canonical ID, hash and timestamp factories.

All modules import from here instead of defining local copies.

ID Categories
-------------
1. Internal IDs: UUID v4 strings (alert ids, correlation ids).
2. Order IDs: ``ord-`` followed by 12 hex chars of a UUID v4.  Uniqueness
   within a process is enforced by ``SequenceAllocator``.
3. Stable hashes: SHA256-based, used for partition and lane affinity so
   the same key maps to the same slot in every process.

Timestamp Rule
--------------
All timestamps are ``datetime`` with ``tzinfo=timezone.utc``, never naive.
"""

from __future__ import annotations

import hashlib
import uuid
from datetime import datetime, timezone


def new_id() -> str:
    """Generate a new UUID v4 string."""
    return str(uuid.uuid4())


def new_order_id() -> str:
    """Generate a client-visible order id, e.g. ``ord-3f2a9c01b7de``."""
    return f"ord-{uuid.uuid4().hex[:12]}"


def utc_now() -> datetime:
    """Return the current UTC time as a timezone-aware datetime."""
    return datetime.now(timezone.utc)


def stable_hash(key: str) -> int:
    """Deterministic 64-bit hash of *key*.

    Python's built-in ``hash()`` is salted per process, so it cannot be
    used for partition or lane assignment.
    """
    digest = hashlib.sha256(key.encode("utf-8")).digest()
    return int.from_bytes(digest[:8], "big")


def slot_for(key: str, slots: int) -> int:
    """Map *key* onto one of *slots* buckets (partition or lane)."""
    if slots <= 0:
        raise ValueError(f"slots must be positive, got {slots}")
    return stable_hash(key) % slots
