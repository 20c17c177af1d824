"""Naming and batching helpers."""

from __future__ import annotations

import re
from collections.abc import Iterable
from typing import TypeVar

T = TypeVar("T")

_CAMEL_BOUNDARY = re.compile(r"(?<=[a-z0-9])(?=[A-Z])|(?<=[A-Z])(?=[A-Z][a-z])")


def chunked(iterable: Iterable[T], size: int) -> list[list[T]]:
    """Split an iterable into lists of at most ``size`` items."""
    if size < 1:
        raise ValueError("chunk size must be at least 1")
    chunk: list[T] = []
    output: list[list[T]] = []
    for item in iterable:
        chunk.append(item)
        if len(chunk) == size:
            output.append(chunk)
            chunk = []
    if chunk:
        output.append(chunk)
    return output


def snake_case(text: str) -> str:
    """``GroupMember`` / ``groupMember`` / ``group-member`` -> ``group_member``."""
    text = re.sub(r"[\s\-]+", "_", text.strip())
    return _CAMEL_BOUNDARY.sub("_", text).lower()


def camel_case(text: str, *, cap_first: bool = False) -> str:
    """``group_member`` -> ``groupMember`` (``GroupMember`` with ``cap_first``)."""
    parts = [part for part in re.split(r"[_\s\-]+", text.strip()) if part]
    if not parts:
        return ""
    head = parts[0].lower()
    if cap_first:
        head = head.capitalize()
    return head + "".join(part.capitalize() for part in parts[1:])


def pluralize(word: str) -> str:
    """Naive English plural used for table and accessor names."""
    lowered = word.lower()
    if lowered.endswith("y") and len(word) > 1 and lowered[-2] not in "aeiou":
        return word[:-1] + "ies"
    if lowered.endswith(("s", "x", "z", "ch", "sh")):
        return word + "es"
    return word + "s"


def singularize(word: str) -> str:
    """Inverse of :func:`pluralize` for the regular forms it produces."""
    lowered = word.lower()
    if lowered.endswith("ies") and len(word) > 3:
        return word[:-3] + "y"
    if lowered.endswith(("ses", "xes", "zes", "ches", "shes")):
        return word[:-2]
    if lowered.endswith("s") and not lowered.endswith("ss"):
        return word[:-1]
    return word


def class_name_for_table(table: str) -> str:
    """``user_groups`` -> ``UserGroup``."""
    return camel_case(singularize(table), cap_first=True)
