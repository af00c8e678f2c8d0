"""Immutable known-flaky test registry."""

from __future__ import annotations

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Iterator, Mapping

TestIdentifier = str


@dataclass(frozen=True, slots=True)
class FlakyEntry:
    """One known-flaky test and the reason it is tolerated."""

    identifier: TestIdentifier
    reason: str


@dataclass(frozen=True, slots=True)
class FlakyTestRegistry:
    """Read-only mapping of known-flaky test identifiers to reasons.

    Instances are safe to share between worker threads; the backing mapping is
    wrapped in a read-only proxy at construction time.
    """

    _reasons: Mapping[TestIdentifier, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "_reasons", MappingProxyType(dict(self._reasons)))

    @classmethod
    def from_mapping(cls, mapping: Mapping[TestIdentifier, str]) -> "FlakyTestRegistry":
        """Build a registry from an in-memory identifier -> reason mapping."""

        return cls(dict(mapping))

    @classmethod
    def from_entries(cls, entries: list[FlakyEntry]) -> "FlakyTestRegistry":
        """Build a registry from entries; later duplicates replace earlier ones."""

        return cls({entry.identifier: entry.reason for entry in entries})

    def is_known_flaky(self, identifier: TestIdentifier) -> bool:
        return identifier in self._reasons

    def reason_for(self, identifier: TestIdentifier) -> str | None:
        return self._reasons.get(identifier)

    def identifiers(self) -> frozenset[TestIdentifier]:
        return frozenset(self._reasons)

    def entries(self) -> list[FlakyEntry]:
        """Return entries sorted by identifier."""

        return [FlakyEntry(identifier=key, reason=self._reasons[key]) for key in sorted(self._reasons)]

    @property
    def is_empty(self) -> bool:
        return not self._reasons

    def __contains__(self, identifier: object) -> bool:
        return identifier in self._reasons

    def __len__(self) -> int:
        return len(self._reasons)

    def __iter__(self) -> Iterator[TestIdentifier]:
        return iter(sorted(self._reasons))
