"""Identifiers for artifacts and executions.

Identifiers end up as file names under the storage root, so they are
restricted to a fixed alphabet at construction time:

- first character alphanumeric
- remaining characters alphanumeric, ``-`` or ``_``
- at most 128 characters

Anything else (empty strings, ``/``, ``\\``, ``..``) is rejected before a
path is ever built from it.
"""

from __future__ import annotations

import re
import uuid
from typing import Annotated

from pydantic import AfterValidator

from binrunner.errors import InvalidIdentifierError

IDENTIFIER_PATTERN = r"^[A-Za-z0-9][A-Za-z0-9_-]{0,127}$"
"""Fixed alphabet for identifiers used as file names."""

_IDENTIFIER_RE = re.compile(IDENTIFIER_PATTERN)


def _rejection_reason(value: str) -> str | None:
    if not value:
        return "identifier is empty"
    if "/" in value or "\\" in value:
        return "identifier contains a path separator"
    if ".." in value:
        return "identifier contains a parent-directory sequence"
    if not _IDENTIFIER_RE.match(value):
        return f"identifier must match {IDENTIFIER_PATTERN}"
    return None


def is_valid_identifier(value: str) -> bool:
    """Check whether a string is a safe identifier.

    Args:
        value: Candidate identifier.

    Returns:
        True if the identifier can safely be used as a file name.

    Example:
        >>> is_valid_identifier("0b6f1c3e-5a7d-4c52-9d1e-2f8a3b4c5d6e")
        True
        >>> is_valid_identifier("../etc")
        False
    """
    return _rejection_reason(value) is None


def validate_identifier(value: str) -> str:
    """Validate an externally supplied identifier.

    Args:
        value: Candidate identifier.

    Returns:
        The identifier, unchanged.

    Raises:
        InvalidIdentifierError: If the identifier is unsafe.
    """
    reason = _rejection_reason(value)
    if reason is not None:
        raise InvalidIdentifierError(value, reason)
    return value


def _check_identifier(value: str) -> str:
    reason = _rejection_reason(value)
    if reason is not None:
        raise ValueError(reason)
    return value


Identifier = Annotated[str, AfterValidator(_check_identifier)]
"""Pydantic field type for identifiers; invalid values fail model validation."""


def new_identifier() -> str:
    """Generate a fresh random identifier.

    Returns:
        A UUID4 string, which always satisfies the identifier alphabet.
    """
    return str(uuid.uuid4())
