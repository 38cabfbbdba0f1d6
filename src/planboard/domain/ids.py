"""Time-ordered identifiers for planboard records.

Minted ids look like ``<prefix>-<ULID>``. The ULID is a 48-bit millisecond timestamp
followed by 80 random bits in Crockford base32, so ids of one kind sort by creation
time. Project and task ids supplied by callers are opaque and never parsed.
"""

from __future__ import annotations

import secrets
import time
from collections.abc import Callable
from typing import Final

CROCKFORD_BASE32_ALPHABET: Final[str] = "0123456789ABCDEFGHJKMNPQRSTVWXYZ"
ULID_LENGTH: Final[int] = 26
ULID_MAX_TIMESTAMP_MS: Final[int] = (1 << 48) - 1
_RANDOM_BYTES: Final[int] = 10

PROJECT_ID_PREFIX: Final[str] = "prj"
TASK_ID_PREFIX: Final[str] = "tsk"
DRAFT_ID_PREFIX: Final[str] = "drf"
ACTION_ID_PREFIX: Final[str] = "act"
AUDIT_ID_PREFIX: Final[str] = "aud"

RandBytes = Callable[[int], bytes]


def generate_ulid(
    *,
    timestamp_ms: int | None = None,
    randbytes: RandBytes | None = None,
) -> str:
    """Return a 26-character ULID; both sources are injectable for tests."""
    ts = time.time_ns() // 1_000_000 if timestamp_ms is None else timestamp_ms
    if not 0 <= ts <= ULID_MAX_TIMESTAMP_MS:
        raise ValueError(f"timestamp_ms out of range: {ts}")
    noise = bytes((randbytes or secrets.token_bytes)(_RANDOM_BYTES))
    if len(noise) != _RANDOM_BYTES:
        raise ValueError(f"randbytes must return exactly {_RANDOM_BYTES} bytes")

    value = (ts << 80) | int.from_bytes(noise, "big")
    chars = []
    for _ in range(ULID_LENGTH):
        chars.append(CROCKFORD_BASE32_ALPHABET[value & 0b11111])
        value >>= 5
    return "".join(reversed(chars))


def _mint(prefix: str, timestamp_ms: int | None, randbytes: RandBytes | None) -> str:
    return f"{prefix}-{generate_ulid(timestamp_ms=timestamp_ms, randbytes=randbytes)}"


def generate_project_id(
    *, timestamp_ms: int | None = None, randbytes: RandBytes | None = None
) -> str:
    return _mint(PROJECT_ID_PREFIX, timestamp_ms, randbytes)


def generate_task_id(
    *, timestamp_ms: int | None = None, randbytes: RandBytes | None = None
) -> str:
    return _mint(TASK_ID_PREFIX, timestamp_ms, randbytes)


def generate_draft_id(
    *, timestamp_ms: int | None = None, randbytes: RandBytes | None = None
) -> str:
    return _mint(DRAFT_ID_PREFIX, timestamp_ms, randbytes)


def generate_action_id(
    *, timestamp_ms: int | None = None, randbytes: RandBytes | None = None
) -> str:
    return _mint(ACTION_ID_PREFIX, timestamp_ms, randbytes)


def generate_audit_id(
    *, timestamp_ms: int | None = None, randbytes: RandBytes | None = None
) -> str:
    return _mint(AUDIT_ID_PREFIX, timestamp_ms, randbytes)


__all__ = [
    "ACTION_ID_PREFIX",
    "AUDIT_ID_PREFIX",
    "CROCKFORD_BASE32_ALPHABET",
    "DRAFT_ID_PREFIX",
    "PROJECT_ID_PREFIX",
    "TASK_ID_PREFIX",
    "ULID_LENGTH",
    "ULID_MAX_TIMESTAMP_MS",
    "generate_action_id",
    "generate_audit_id",
    "generate_draft_id",
    "generate_project_id",
    "generate_task_id",
    "generate_ulid",
]
