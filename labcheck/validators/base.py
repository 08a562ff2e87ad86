"""Base validator interface and shared reporting helpers."""

import json
from abc import ABC, abstractmethod
from typing import Any, Sequence

from ..config import ERROR_SAMPLE_SIZE, MESSAGE_LIMIT
from ..errors import ValidatorError
from ..results import TestCase


class BaseValidator(ABC):
    """Base class for all validators.

    Subclasses set ``kind`` to their catalogue name. Aliases construct the
    general class, so they report the general kind.
    """

    kind: str = ""

    @abstractmethod
    async def validate(self) -> TestCase:
        """
        Run the check.

        Returns:
            TestCase: passed if the condition held, failed otherwise

        Raises:
            ValidatorError: the check could not be carried out at all
        """
        pass

    def __repr__(self) -> str:
        fields = ", ".join(f"{k}={v!r}" for k, v in vars(self).items() if not k.startswith("_"))
        return f"{type(self).__name__}({fields})"


def truncate(text: str, limit: int = MESSAGE_LIMIT) -> str:
    """Cut text to limit characters, marking the cut."""
    if len(text) <= limit:
        return text
    return text[:limit] + "... (truncated)"


def summarize_errors(errors: Sequence[str], limit: int = ERROR_SAMPLE_SIZE) -> str:
    """
    Bounded summary of fan-out errors.

    Keeps the first ``limit`` distinct messages in the order they were
    collected and counts the rest.
    """
    distinct = []
    for error in errors:
        if error not in distinct:
            distinct.append(error)

    shown = distinct[:limit]
    remaining = len(errors) - sum(errors.count(e) for e in shown)
    summary = "; ".join(shown)
    if remaining > 0:
        summary = f"{summary}; ... and {remaining} more errors"
    return summary


def fan_out_summary(successes: int, total: int, errors: Sequence[str]) -> str:
    return f"{successes}/{total} requests succeeded. {summarize_errors(errors)}".rstrip()


def parse_json(body: str) -> Any:
    """Decode a response body, raising ValidatorError when it is not JSON."""
    try:
        return json.loads(body)
    except ValueError as e:
        raise ValidatorError(f"invalid JSON response: {e}") from e


def json_value_to_string(value: Any) -> str:
    """Render a JSON value the way it is compared against expected strings."""
    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return "true" if value else "false"
    if value is None:
        return "null"
    if isinstance(value, (int, float)):
        return str(value)
    return json.dumps(value, separators=(",", ":"))


MISSING = object()


def get_field(data: Any, name: str) -> Any:
    """Top-level object field lookup; MISSING for non-objects and absent keys."""
    if isinstance(data, dict):
        return data.get(name, MISSING)
    return MISSING


def get_nested_field(data: Any, path: str) -> Any:
    """Follow a dot-separated path through nested objects."""
    current = data
    for part in path.split("."):
        current = get_field(current, part)
        if current is MISSING:
            break
    return current
