"""GitHub-flavoured heading slugs."""

from __future__ import annotations

import re
from typing import Final

_INLINE_LINK_RE: Final[re.Pattern[str]] = re.compile(r"!?\[([^\]]*)\]\([^)]*\)")
_STRIP_RE: Final[re.Pattern[str]] = re.compile(r"[^\w\- ]", flags=re.UNICODE)
_SLUG_RE: Final[re.Pattern[str]] = re.compile(r"^[\w-]+$", flags=re.UNICODE)


def slugify(heading: str) -> str:
    """Return the GitHub anchor for ``heading`` (without duplicate suffixes).

    Lowercase, drop punctuation other than ``-``/``_``/space, then map each
    space to a hyphen. Consecutive spaces produce consecutive hyphens, as
    GitHub does.
    """
    text = _INLINE_LINK_RE.sub(r"\1", heading.strip())
    text = _STRIP_RE.sub("", text.lower())
    return text.replace(" ", "-")


def is_valid_slug(value: str) -> bool:
    return bool(value) and value == value.lower() and _SLUG_RE.match(value) is not None


class SlugAllocator:
    """Allocate unique slugs within one document (``x``, ``x-1``, ``x-2`` ...)."""

    __slots__ = ("_counts", "_taken")

    def __init__(self) -> None:
        self._counts: dict[str, int] = {}
        self._taken: set[str] = set()

    def allocate(self, heading: str) -> str:
        base = slugify(heading) or "section"
        count = self._counts.get(base, 0)
        candidate = base if count == 0 else f"{base}-{count}"
        while candidate in self._taken:
            count += 1
            candidate = f"{base}-{count}"
        self._counts[base] = count + 1
        self._taken.add(candidate)
        return candidate


__all__ = ["SlugAllocator", "is_valid_slug", "slugify"]
