from __future__ import annotations

import pytest

from snippet_forge.domain import ids


def test_ulid_is_time_ordered_and_fixed_width() -> None:
    first = ids.generate_ulid(timestamp_ms=1, randbytes=lambda n: b"\x00" * n)
    second = ids.generate_ulid(timestamp_ms=2, randbytes=lambda n: b"\x00" * n)

    assert len(first) == ids.ULID_LENGTH
    assert first < second
    ids.validate_ulid(first)


def test_prefixed_ids_validate_their_prefix() -> None:
    snippet_id = ids.generate_snippet_id()

    ids.validate_snippet_id(snippet_id)
    with pytest.raises(ValueError, match="expected prefix"):
        ids.validate_event_id(snippet_id)


@pytest.mark.parametrize("value", ["", "0" * 25, "I" * 26, "8" + "0" * 25])
def test_malformed_ulids_are_rejected(value: str) -> None:
    with pytest.raises(ValueError):
        ids.validate_ulid(value)


def test_generate_ulid_rejects_bad_inputs() -> None:
    with pytest.raises(ValueError):
        ids.generate_ulid(timestamp_ms=-1)
    with pytest.raises(ValueError):
        ids.generate_ulid(randbytes=lambda n: b"\x00")
    with pytest.raises(ValueError):
        ids.generate_prefixed_id("bad-prefix")
