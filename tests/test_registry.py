from __future__ import annotations

import io
import logging
from pathlib import Path

import pytest

from flakeguard.errors import LoadError
from flakeguard.registry import FlakyTestRegistry, load_registry


def test_load_mapping_document() -> None:
    registry = load_registry("ModA::testFoo: timing issue\nModB::testBar: port clash\n")

    assert len(registry) == 2
    assert registry.is_known_flaky("ModA::testFoo")
    assert registry.reason_for("ModB::testBar") == "port clash"
    assert registry.reason_for("ModC::testBaz") is None
    assert not registry.is_known_flaky("moda::testfoo")


def test_load_entry_list_and_wrapper_key() -> None:
    text = """
flaky_tests:
  - test: org.xwiki.FooTest#testA
    reason: XWIKI-123
  - identifier: org.xwiki.BarTest#testB
  - org.xwiki.BazTest#testC
"""
    registry = load_registry(text)

    assert registry.identifiers() == frozenset(
        {"org.xwiki.FooTest#testA", "org.xwiki.BarTest#testB", "org.xwiki.BazTest#testC"}
    )
    assert registry.reason_for("org.xwiki.FooTest#testA") == "XWIKI-123"
    assert registry.reason_for("org.xwiki.BarTest#testB") == ""


def test_json_bytes_and_streams_are_accepted(tmp_path: Path) -> None:
    payload = b'{"ModA::testFoo": "timing issue"}'
    path = tmp_path / "flaky.json"
    path.write_bytes(payload)

    assert load_registry(payload).is_known_flaky("ModA::testFoo")
    assert load_registry(path).is_known_flaky("ModA::testFoo")
    assert load_registry(io.StringIO(payload.decode())).is_known_flaky("ModA::testFoo")


def test_malformed_entries_are_skipped_with_warning(caplog: pytest.LogCaptureFixture) -> None:
    text = """
- test: Good::one
  reason: slow agent
- 42
- reason: no identifier here
- test: "   "
- test: Good::two
  reason: [not, a, scalar]
- test: Good::three
  reason: 7
"""
    with caplog.at_level(logging.WARNING):
        registry = load_registry(text)

    assert registry.identifiers() == frozenset({"Good::one", "Good::three"})
    assert registry.reason_for("Good::three") == "7"
    assert sum("registry.malformed_entry" in record.message for record in caplog.records) == 4


def test_duplicate_identifiers_last_write_wins(caplog: pytest.LogCaptureFixture) -> None:
    text = "- test: ModA::testFoo\n  reason: first\n- test: ModA::testFoo\n  reason: second\n"
    with caplog.at_level(logging.WARNING):
        registry = load_registry(text)

    assert registry.reason_for("ModA::testFoo") == "second"
    assert any("duplicate_identifier" in record.message for record in caplog.records)


@pytest.mark.parametrize("text", ["", "   \n\t", "~", "null", "flaky: [unclosed", "just a string", "12"])
def test_unreadable_or_empty_sources_raise_load_error(text: str) -> None:
    with pytest.raises(LoadError):
        load_registry(text)


def test_missing_file_and_bad_bytes_raise_load_error(tmp_path: Path) -> None:
    with pytest.raises(LoadError):
        load_registry(tmp_path / "absent.yaml")
    with pytest.raises(LoadError):
        load_registry(b"\xff\xfe\xfa")


@pytest.mark.parametrize("text", ["{}", "[]", "flaky_tests: {}", "flaky_tests:"])
def test_well_formed_empty_document_is_an_empty_registry(text: str) -> None:
    registry = load_registry(text)

    assert registry.is_empty
    assert len(registry) == 0


def test_registry_is_read_only() -> None:
    source = {"ModA::testFoo": "timing issue"}
    registry = FlakyTestRegistry.from_mapping(source)
    source["ModB::testBar"] = "added later"

    assert "ModB::testBar" not in registry
    with pytest.raises(TypeError):
        registry._reasons["ModC::x"] = "nope"  # type: ignore[index]
    assert [entry.identifier for entry in registry.entries()] == ["ModA::testFoo"]


def test_wrapper_key_is_unwrapped_next_to_metadata(caplog: pytest.LogCaptureFixture) -> None:
    text = "generated_at: 2024-01-01\nsource: ci-dashboard\nflaky_tests:\n  ModA::testFoo: timing issue\n"

    with caplog.at_level(logging.INFO, logger="flakeguard"):
        registry = load_registry(text, logger=logging.getLogger("flakeguard.test"))

    assert registry.identifiers() == frozenset({"ModA::testFoo"})
    assert registry.reason_for("ModA::testFoo") == "timing issue"
    assert "registry.ignored_top_level_keys keys=generated_at,source" in caplog.text
