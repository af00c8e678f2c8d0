"""Known-flaky test registry loading and lookup."""

from flakeguard.registry.loader import RegistrySource, load_registry, parse_registry_entries
from flakeguard.registry.models import FlakyEntry, FlakyTestRegistry, TestIdentifier

__all__ = [
    "FlakyEntry",
    "FlakyTestRegistry",
    "TestIdentifier",
    "RegistrySource",
    "load_registry",
    "parse_registry_entries",
]
