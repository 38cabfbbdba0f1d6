"""Unit tests for prefixed ULID identifiers."""

from __future__ import annotations

from collections.abc import Callable

import pytest

from planboard.domain import ids

T0 = 1_767_225_600_000


def _timestamp_of(ulid: str) -> int:
    value = 0
    for char in ulid[:10]:
        value = (value << 5) | ids.CROCKFORD_BASE32_ALPHABET.index(char)
    return value


def test_prefixed_ids_embed_timestamp_and_randomness() -> None:
    generated = ids.generate_task_id(timestamp_ms=T0, randbytes=lambda size: b"\xff" * size)

    prefix, ulid = generated.split("-", 1)
    assert prefix == ids.TASK_ID_PREFIX
    assert len(ulid) == ids.ULID_LENGTH
    assert set(ulid) <= set(ids.CROCKFORD_BASE32_ALPHABET)
    assert _timestamp_of(ulid) == T0
    assert ulid.endswith("Z" * 16)


def test_ids_sort_by_creation_time() -> None:
    earlier = ids.generate_audit_id(timestamp_ms=T0)
    later = ids.generate_audit_id(timestamp_ms=T0 + 1)
    assert earlier < later


@pytest.mark.parametrize(
    ("factory", "prefix"),
    [
        (ids.generate_project_id, "prj"),
        (ids.generate_draft_id, "drf"),
        (ids.generate_action_id, "act"),
        (ids.generate_audit_id, "aud"),
    ],
)
def test_each_entity_has_a_stable_prefix(factory: Callable[..., str], prefix: str) -> None:
    assert factory(timestamp_ms=T0).startswith(f"{prefix}-")


@pytest.mark.parametrize("timestamp_ms", [-1, ids.ULID_MAX_TIMESTAMP_MS + 1])
def test_out_of_range_timestamp_is_rejected(timestamp_ms: int) -> None:
    with pytest.raises(ValueError, match="timestamp_ms"):
        ids.generate_ulid(timestamp_ms=timestamp_ms)


def test_short_random_source_is_rejected() -> None:
    with pytest.raises(ValueError, match="exactly 10 bytes"):
        ids.generate_ulid(timestamp_ms=T0, randbytes=lambda size: b"\x00")
