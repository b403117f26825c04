"""Release version parsing and ordering.

Release identifiers appear in several spellings: the candidate release is
configured as ``7.11.0`` plus a qualifier ``CR1``, release preparation
commits say ``Prepare release 7.11.0.CR1`` and tracker target releases read
``AMQ 7.11.0.GA``. ``ReleaseVersion`` extracts the dotted part from any of
them and orders versions by major, minor, patch and then qualifier.

Example:
    >>> ReleaseVersion.parse("AMQ 7.11.0.GA") > ReleaseVersion.parse("7.10.2.GA")
    True
    >>> ReleaseVersion.parse("7.11.0.CR1").compare_without_qualifier(
    ...     ReleaseVersion.parse("7.11.0.CR2")
    ... )
    0
"""

from __future__ import annotations

import functools
import re
from dataclasses import dataclass

_VERSION_PATTERN = re.compile(r"(\d+)\.(\d+)\.(\d+)(?:\.([0-9A-Za-z]+))?")
_QUALIFIER_PATTERN = re.compile(r"([A-Za-z]*)(\d*)")


def _qualifier_key(qualifier: str) -> tuple[str, int, str]:
    """Order qualifiers by alphabetic prefix, then numerically (CR2 < CR10)."""
    match = _QUALIFIER_PATTERN.fullmatch(qualifier)
    if match is None:
        return (qualifier, 0, qualifier)
    prefix, number = match.groups()
    return (prefix.upper(), int(number) if number else 0, qualifier)


@functools.total_ordering
@dataclass(frozen=True)
class ReleaseVersion:
    """A release identifier ``major.minor.patch.qualifier``."""

    major: int
    minor: int
    patch: int
    qualifier: str = ""

    @classmethod
    def parse(cls, value: str) -> ReleaseVersion:
        """Parse the first dotted version found in ``value``.

        Raises:
            ValueError: If ``value`` contains no ``major.minor.patch`` triple
        """
        match = _VERSION_PATTERN.search(value or "")
        if match is None:
            raise ValueError(f"Invalid release version: {value!r}")

        major, minor, patch, qualifier = match.groups()
        return cls(int(major), int(minor), int(patch), qualifier or "")

    @property
    def requires_release_issues(self) -> bool:
        """Z-stream releases need a tracking issue per release."""
        return self.patch > 0

    def _numbers(self) -> tuple[int, int, int]:
        return (self.major, self.minor, self.patch)

    def compare_without_qualifier(self, other: ReleaseVersion) -> int:
        if self._numbers() < other._numbers():
            return -1
        if self._numbers() > other._numbers():
            return 1
        return 0

    def release_name(self, prefix: str) -> str:
        """Name of the GA release as used in tracker target releases."""
        name = f"{self.major}.{self.minor}.{self.patch}.GA"
        return f"{prefix} {name}" if prefix else name

    def summary_prefix(self) -> str:
        """Summary prefix for release tracking issues, e.g. ``[7.11]``."""
        return f"[{self.major}.{self.minor}]"

    def __lt__(self, other: object) -> bool:
        if not isinstance(other, ReleaseVersion):
            return NotImplemented
        return (self._numbers(), _qualifier_key(self.qualifier)) < (
            other._numbers(),
            _qualifier_key(other.qualifier),
        )

    def __str__(self) -> str:
        version = f"{self.major}.{self.minor}.{self.patch}"
        return f"{version}.{self.qualifier}" if self.qualifier else version
