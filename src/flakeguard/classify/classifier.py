"""Partition failing tests into known-flaky and genuine failures."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable

from flakeguard.errors import ClassificationAmbiguity
from flakeguard.registry.models import FlakyTestRegistry, TestIdentifier

FailureSet = tuple[TestIdentifier, ...]


@dataclass(frozen=True, slots=True)
class ClassificationResult:
    """Disjoint split of one attempt's failures."""

    known: frozenset[TestIdentifier] = frozenset()
    genuine: frozenset[TestIdentifier] = frozenset()

    @property
    def all_failures(self) -> frozenset[TestIdentifier]:
        return self.known | self.genuine

    @property
    def has_failures(self) -> bool:
        return bool(self.known or self.genuine)

    @property
    def has_genuine(self) -> bool:
        return bool(self.genuine)

    def known_reasons(self, registry: FlakyTestRegistry) -> dict[TestIdentifier, str]:
        """Return reasons for the known-flaky failures, sorted by identifier."""

        return {identifier: registry.reason_for(identifier) or "" for identifier in sorted(self.known)}

    def as_dict(self) -> dict[str, list[str]]:
        return {"known": sorted(self.known), "genuine": sorted(self.genuine)}


def to_failure_set(failures: Iterable[TestIdentifier]) -> FailureSet:
    """Freeze failures into an ordered tuple, dropping repeats but keeping first-seen order."""

    return tuple(dict.fromkeys(failures))


def classify(failures: Iterable[TestIdentifier], registry: FlakyTestRegistry) -> ClassificationResult:
    """Split failures by registry membership.

    The result depends only on the failure identifiers and the registry, so
    repeated calls with the same inputs return equal results.
    """

    failure_set = to_failure_set(failures)
    known = frozenset(identifier for identifier in failure_set if registry.is_known_flaky(identifier))
    genuine = frozenset(identifier for identifier in failure_set if not registry.is_known_flaky(identifier))

    if known & genuine or (known | genuine) != frozenset(failure_set):
        raise ClassificationAmbiguity(
            f"classification is not a disjoint cover: known={sorted(known)} genuine={sorted(genuine)}"
        )
    return ClassificationResult(known=known, genuine=genuine)
