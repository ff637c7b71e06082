from __future__ import annotations

import re
from enum import Enum

from .errors import InvalidNameError

_ALLOWED = re.compile(r"[A-Za-z0-9_-]+")


class NameProblem(str, Enum):
    EMPTY = "Server name cannot be empty"
    INVALID_CHARACTERS = "Server name can only contain letters, numbers, underscore and hyphen"
    MUST_START_WITH_LETTER = "Server name must start with a letter"


def check_name(name: str | None) -> NameProblem | None:
    """Return the first problem with a server name, or None if it is valid."""
    if not name:
        return NameProblem.EMPTY
    if not _ALLOWED.fullmatch(name):
        return NameProblem.INVALID_CHARACTERS
    # str.isalpha accepts non-ASCII letters, the allowed set above does not
    if not ("a" <= name[0].lower() <= "z"):
        return NameProblem.MUST_START_WITH_LETTER
    return None


def validate_name(name: str | None) -> str:
    """Raise InvalidNameError if name is not usable as a server name."""
    problem = check_name(name)
    if problem is not None:
        raise InvalidNameError(name or "", problem)
    return name


def is_valid_name(name: str | None) -> bool:
    return check_name(name) is None
