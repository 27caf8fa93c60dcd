"""Scope resolution for the shared catalog and per-user overrides.

Every scoped row carries exactly one scope. GLOBAL rows are the shared
baseline; a user scope holds that user's private copies. Reads resolve a
natural key by preferring the user's row and falling back to GLOBAL.
"""

from __future__ import annotations

from collections.abc import Callable, Hashable, Iterable
from dataclasses import dataclass
from typing import TypeVar, Union

from sqlalchemy import Text
from sqlalchemy.types import TypeDecorator

T = TypeVar("T")

GLOBAL_TAG = "GLOBAL"
USER_TAG_PREFIX = "u:"


@dataclass(frozen=True, slots=True)
class GlobalScope:
    """The shared catalog partition."""

    @property
    def tag(self) -> str:
        return GLOBAL_TAG

    @property
    def is_global(self) -> bool:
        return True

    def __str__(self) -> str:
        return self.tag


@dataclass(frozen=True, slots=True)
class UserScope:
    """A single caller's private override partition."""

    user_id: str

    def __post_init__(self) -> None:
        if not self.user_id:
            raise ValueError("UserScope requires a non-empty user_id")

    @property
    def tag(self) -> str:
        return f"{USER_TAG_PREFIX}{self.user_id}"

    @property
    def is_global(self) -> bool:
        return False

    def __str__(self) -> str:
        return self.tag


Scope = Union[GlobalScope, UserScope]

GLOBAL = GlobalScope()


def scope_of(caller_id: str | None = None) -> Scope:
    """Map an optional caller identity to its partition.

    No identity (None or empty string) means the shared GLOBAL catalog.
    """
    if not caller_id:
        return GLOBAL
    return UserScope(caller_id)


def parse_scope(tag: str) -> Scope:
    """Inverse of ``Scope.tag``."""
    if tag == GLOBAL_TAG:
        return GLOBAL
    if tag.startswith(USER_TAG_PREFIX) and len(tag) > len(USER_TAG_PREFIX):
        return UserScope(tag[len(USER_TAG_PREFIX):])
    raise ValueError(f"Unrecognised scope tag: {tag!r}")


def merge_override(
    user_rows: Iterable[T],
    global_rows: Iterable[T],
    key_of: Callable[[T], Hashable],
) -> list[T]:
    """Merge two same-keyed row sets, the user's row winning on collision.

    The result holds each key once. Order follows the dict construction:
    GLOBAL keys first in their input order, then keys only the user has.
    Callers that need a particular order must sort afterwards.
    """
    merged: dict[Hashable, T] = {}
    for row in global_rows:
        merged[key_of(row)] = row
    for row in user_rows:
        merged[key_of(row)] = row  # overwrite global
    return list(merged.values())


class ScopeType(TypeDecorator):
    """Stores a Scope as its text tag."""

    impl = Text
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if isinstance(value, str):
            return parse_scope(value).tag
        return value.tag

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return parse_scope(value)
