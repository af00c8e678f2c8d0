"""Parse fetched known-flaky documents into a registry."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Protocol, Union

import yaml

from flakeguard.errors import LoadError
from flakeguard.registry.models import FlakyEntry, FlakyTestRegistry

LOGGER = logging.getLogger(__name__)

WRAPPER_KEY = "flaky_tests"
IDENTIFIER_KEYS: tuple[str, ...] = ("identifier", "test", "id")


class SupportsRead(Protocol):
    def read(self) -> str | bytes: ...


RegistrySource = Union[str, bytes, Path, SupportsRead]


def _read_source_text(source: RegistrySource) -> str:
    """Read the whole source into text, mapping I/O and decode errors to LoadError."""

    try:
        if isinstance(source, Path):
            raw: str | bytes = source.read_bytes()
        elif isinstance(source, (str, bytes)):
            raw = source
        else:
            raw = source.read()
    except OSError as exc:
        raise LoadError(f"registry source unreadable: {exc}") from exc

    if isinstance(raw, bytes):
        try:
            return raw.decode("utf-8-sig")
        except UnicodeDecodeError as exc:
            raise LoadError(f"registry source is not valid UTF-8: {exc}") from exc
    return raw


def _scalar_reason(value: Any) -> str | None:
    """Return reason text for scalar values, or None when the value is not usable."""

    if value is None:
        return ""
    if isinstance(value, str):
        return value.strip()
    if isinstance(value, (int, float, bool)):
        return str(value)
    return None


def _clean_identifier(value: Any) -> str | None:
    if not isinstance(value, str):
        return None
    cleaned = value.strip()
    return cleaned or None


def _entries_from_mapping(document: dict[Any, Any], logger: logging.Logger) -> list[FlakyEntry]:
    entries: list[FlakyEntry] = []
    for position, (raw_identifier, raw_reason) in enumerate(document.items(), start=1):
        identifier = _clean_identifier(raw_identifier)
        reason = _scalar_reason(raw_reason)
        if identifier is None or reason is None:
            logger.warning(
                "registry.malformed_entry position=%s identifier=%r reason_type=%s",
                position,
                raw_identifier,
                type(raw_reason).__name__,
            )
            continue
        entries.append(FlakyEntry(identifier=identifier, reason=reason))
    return entries


def _entries_from_sequence(document: list[Any], logger: logging.Logger) -> list[FlakyEntry]:
    entries: list[FlakyEntry] = []
    for position, item in enumerate(document, start=1):
        if isinstance(item, str):
            identifier = _clean_identifier(item)
            if identifier is not None:
                entries.append(FlakyEntry(identifier=identifier, reason=""))
                continue
            logger.warning("registry.malformed_entry position=%s reason=blank_identifier", position)
            continue
        if not isinstance(item, dict):
            logger.warning(
                "registry.malformed_entry position=%s reason=not_a_mapping type=%s",
                position,
                type(item).__name__,
            )
            continue

        raw_identifier = next((item[key] for key in IDENTIFIER_KEYS if key in item), None)
        identifier = _clean_identifier(raw_identifier)
        reason = _scalar_reason(item.get("reason"))
        if identifier is None or reason is None:
            logger.warning(
                "registry.malformed_entry position=%s identifier=%r reason=invalid_fields",
                position,
                raw_identifier,
            )
            continue
        entries.append(FlakyEntry(identifier=identifier, reason=reason))
    return entries


def parse_registry_entries(text: str, logger: logging.Logger | None = None) -> list[FlakyEntry]:
    """Parse registry text into entries in source order.

    Raises LoadError for blank input, YAML syntax errors, a null document, or a
    top-level value that is neither a mapping nor a sequence. Individual bad
    entries are skipped with a warning.
    """

    effective_logger = logger or LOGGER
    if not text.strip():
        raise LoadError("registry source is empty")

    try:
        document = yaml.safe_load(text)
    except yaml.YAMLError as exc:
        raise LoadError(f"registry source is not a valid document: {exc}") from exc

    if isinstance(document, dict) and WRAPPER_KEY in document:
        ignored = sorted(str(key) for key in document if key != WRAPPER_KEY)
        if ignored:
            effective_logger.info("registry.ignored_top_level_keys keys=%s", ",".join(ignored))
        document = document[WRAPPER_KEY]
        if document is None:
            document = {}

    if document is None:
        raise LoadError("registry source contains no document")
    if isinstance(document, dict):
        return _entries_from_mapping(document, effective_logger)
    if isinstance(document, list):
        return _entries_from_sequence(document, effective_logger)
    raise LoadError(f"registry document must be a mapping or a list, got {type(document).__name__}")


def load_registry(source: RegistrySource, *, logger: logging.Logger | None = None) -> FlakyTestRegistry:
    """Load an immutable registry from an already-fetched source.

    `source` may be document text, raw bytes, a filesystem path, or any object
    with a `read()` method.
    """

    effective_logger = logger or LOGGER
    text = _read_source_text(source)
    entries = parse_registry_entries(text, logger=effective_logger)

    seen: set[str] = set()
    for entry in entries:
        if entry.identifier in seen:
            effective_logger.warning("registry.duplicate_identifier identifier=%s action=last_wins", entry.identifier)
        seen.add(entry.identifier)

    registry = FlakyTestRegistry.from_entries(entries)
    effective_logger.info("registry.loaded entries=%s", len(registry))
    return registry
