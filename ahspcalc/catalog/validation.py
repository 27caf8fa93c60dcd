"""Input normalization shared by the catalog services."""

from __future__ import annotations

import re
from typing import Any

from ahspcalc.core.errors import ValidationError

_WHITESPACE = re.compile(r"\s+")


def collapse_whitespace(value: str) -> str:
    """Trim and collapse internal whitespace runs to one space."""
    return _WHITESPACE.sub(" ", value.strip())


def required_text(value: Any, field: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"{field} must be a non-empty string")
    return collapse_whitespace(value)


def optional_text(value: Any) -> str | None:
    """Blank or non-string notes are stored as NULL."""
    if not isinstance(value, str) or not value.strip():
        return None
    return collapse_whitespace(value)


def clamp_skip(skip: int | None) -> int:
    return max(0, skip or 0)


def clamp_take(take: int | None, default: int, maximum: int) -> int:
    if take is None:
        take = default
    return max(1, min(maximum, take))


def order_direction(order_dir: str | None) -> bool:
    """True when results should be sorted descending."""
    return (order_dir or "").lower() == "desc"


def contains_ci(needle: str, *haystacks: str | None) -> bool:
    """Case-insensitive substring match over any of the given fields."""
    needle = needle.lower()
    return any(needle in (value or "").lower() for value in haystacks)
