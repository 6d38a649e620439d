"""Cache key construction for aggregate slices.

Two key schemes share the ``aggregates_cache`` table:

- identity keys, ``2026-Q3-retailers-<question_id>[-<size_band>]``, written
  by the incremental refresh and the full rebuild alike
- descriptive keys, ``desc:2026-Q3-retailers-<slug>[-<size_band>]``, built
  from the question text for debugging and written only by the rebuild

The ``desc:`` namespace keeps the two schemes from ever colliding. Every
component is escaped before joining (``%`` becomes ``%25`` and ``-`` becomes
``%2D``), so ``q1-10`` with no band and ``q1`` in band ``10`` get distinct keys.
"""
import re
from enum import Enum
from typing import Optional

KEY_DELIMITER = "-"
ESCAPE_CHAR = "%"
DESCRIPTIVE_PREFIX = "desc:"
SLUG_MAX_LENGTH = 80

_NON_ALNUM = re.compile(r"[^a-zA-Z0-9\s]")
_WHITESPACE = re.compile(r"\s+")


class KeyScheme(Enum):
    IDENTITY = "identity"
    DESCRIPTIVE = "descriptive"


def escape_component(value: str) -> str:
    """Percent-encode the escape character and the delimiter in one key part."""
    return value.replace(ESCAPE_CHAR, "%25").replace(KEY_DELIMITER, "%2D")


def _join(year: int, quarter: int, sector: str, label: str, size_band: Optional[str]) -> str:
    parts = [str(year), f"Q{quarter}", sector, label]
    if size_band:
        parts.append(size_band)
    return KEY_DELIMITER.join(escape_component(part) for part in parts)


def build_cache_key(
    year: int,
    quarter: int,
    sector: str,
    question_id: str,
    size_band: Optional[str] = None,
) -> str:
    """Identity key for a dimension tuple.

    Pure and deterministic: the same tuple always yields the same key, and
    changing any single field changes the key. Components are escaped, so
    no two distinct tuples share a key.
    """
    return _join(year, quarter, sector, question_id, size_band)


def slugify_question_text(text: str) -> str:
    """Short lower-case slug of a question's text.

    Non-alphanumerics are dropped, the text is trimmed and cut to 80
    characters, and whitespace runs become underscores.
    """
    slug = _NON_ALNUM.sub("", text or "").strip()
    slug = slug[:SLUG_MAX_LENGTH].strip()
    return _WHITESPACE.sub("_", slug).lower()


def build_descriptive_cache_key(
    year: int,
    quarter: int,
    sector: str,
    question_text: str,
    size_band: Optional[str] = None,
) -> str:
    """Human-readable key derived from the question text."""
    return DESCRIPTIVE_PREFIX + _join(
        year, quarter, sector, slugify_question_text(question_text), size_band
    )
