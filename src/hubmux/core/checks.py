# hubmux/core/checks.py
r"""
Field checks: predicates on the content of a message body.

A check resolves a dotted path inside ``message.body`` and matches the
value against a regular expression::

    FieldCheck("owner", "ralph")
    FieldCheck("build.release", r"\d+\.fc2[23]")
    FieldCheck("commits.0.branch", "master|main")
"""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Any

from hubmux.contracts.message import Message

logger = logging.getLogger(__name__)

_MISSING = object()


def resolve_field(body: Any, path: str) -> Any:
    """
    Walk a dotted path through nested mappings and lists.

    Numeric segments index into lists. Returns a private sentinel when any
    segment cannot be resolved; use ``has_field()`` for a boolean answer.
    """
    current = body
    for segment in path.split("."):
        if isinstance(current, dict):
            if segment not in current:
                return _MISSING
            current = current[segment]
        elif isinstance(current, list) and segment.lstrip("-").isdigit():
            index = int(segment)
            if not -len(current) <= index < len(current):
                return _MISSING
            current = current[index]
        else:
            return _MISSING
    return current


def has_field(body: Any, path: str) -> bool:
    return resolve_field(body, path) is not _MISSING


def _as_text(value: Any) -> str | None:
    if isinstance(value, bool):
        return "true" if value else "false"
    if value is None:
        return "null"
    if isinstance(value, (str, int, float)):
        return str(value)
    return None


@dataclass(frozen=True)
class FieldCheck:
    """
    Match a body field against a regular expression.

    Attributes:
        field: Dotted path into the message body.
        expected: Regular expression the whole value must match.
    """

    field: str
    expected: str

    def evaluate(self, message: Message) -> bool:
        value = resolve_field(message.body, self.field)
        if value is _MISSING:
            return False

        text = _as_text(value)
        if text is None:
            logger.debug(
                "Field '%s' on '%s' is not a scalar value", self.field, message.topic
            )
            return False

        try:
            return re.fullmatch(self.expected, text) is not None
        except re.error as exc:
            logger.warning("Invalid pattern %r for field '%s': %s", self.expected, self.field, exc)
            return False

    @classmethod
    def parse(cls, spec: str) -> "FieldCheck":
        """Build a check from ``"field=regex"``."""
        field, sep, expected = spec.partition("=")
        field = field.strip()
        if not sep or not field:
            raise ValueError(f"Invalid check '{spec}', expected 'field=regex'")
        return cls(field=field, expected=expected)
