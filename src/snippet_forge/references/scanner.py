"""Extraction of ``@name`` reference tokens from text."""

from __future__ import annotations

import re
from collections.abc import Iterator
from typing import Final

from snippet_forge.constants import REFERENCE_PATTERN

REFERENCE_RE: Final[re.Pattern[str]] = re.compile(REFERENCE_PATTERN)


def iter_references(text: str) -> Iterator[str]:
    """Yield referenced names in occurrence order, duplicates included."""
    if not text:
        return
    for match in REFERENCE_RE.finditer(text):
        yield match.group(1)


def extract_references(text: str) -> frozenset[str]:
    """Return the de-duplicated set of names referenced by ``text``."""
    return frozenset(iter_references(text))


def ordered_references(text: str) -> tuple[str, ...]:
    """Return referenced names de-duplicated in first-occurrence order."""
    return tuple(dict.fromkeys(iter_references(text)))


__all__ = ["REFERENCE_RE", "extract_references", "iter_references", "ordered_references"]
