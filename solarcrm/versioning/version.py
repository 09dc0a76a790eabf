"""
SolarCRM Engine - API Version Value Type

Version identifiers travel as ``MAJOR.MINOR`` strings on the wire. They are
parsed once at the boundary into ``ApiVersion`` and compared numerically
from then on ("1.10" sorts after "1.9").
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Union

_VERSION_RE = re.compile(r"^(\d+)\.(\d+)$")


class InvalidVersionError(ValueError):
    """Raised when a string is not a MAJOR.MINOR version identifier."""


@dataclass(frozen=True, order=True)
class ApiVersion:
    """
    Immutable API version identifier.

    Ordering compares major first, then minor. ``str(version)`` gives the
    canonical wire form used in headers and registry keys.
    """

    major: int
    minor: int

    @classmethod
    def parse(cls, value: "VersionLike") -> "ApiVersion":
        """
        Parse a version identifier.

        Args:
            value: "MAJOR.MINOR" string or an existing ApiVersion

        Raises:
            InvalidVersionError: If the value is not a MAJOR.MINOR identifier
        """
        if isinstance(value, ApiVersion):
            return value
        if not isinstance(value, str):
            raise InvalidVersionError(f"Version must be a string, got {type(value).__name__}")

        match = _VERSION_RE.match(value.strip())
        if not match:
            raise InvalidVersionError(f"Invalid API version: {value!r}")
        return cls(major=int(match.group(1)), minor=int(match.group(2)))

    @classmethod
    def try_parse(cls, value: object) -> "ApiVersion | None":
        """Parse a version identifier, returning None instead of raising."""
        try:
            return cls.parse(value)  # type: ignore[arg-type]
        except InvalidVersionError:
            return None

    def __str__(self) -> str:
        return f"{self.major}.{self.minor}"


VersionLike = Union[str, ApiVersion]
