from __future__ import annotations

from pathlib import Path

import pytest
from pydantic import ValidationError

from flakeguard.config import AppSettings, load_settings


def _write_settings(root: Path, body: str) -> Path:
    settings_file = root / "configs" / "settings.yaml"
    settings_file.parent.mkdir(parents=True, exist_ok=True)
    settings_file.write_text(body, encoding="utf-8")
    return settings_file


def test_yaml_values_and_relative_paths(tmp_path: Path) -> None:
    settings_file = _write_settings(
        tmp_path,
        "paths:\n  artifacts_root: ./out\nregistry:\n  source_file: flaky.yaml\norchestrator:\n  parallelism: 4\n",
    )

    settings = load_settings(settings_file)

    assert settings.paths.artifacts_root == (tmp_path / "out").resolve()
    assert settings.registry.source_file == (tmp_path / "flaky.yaml").resolve()
    assert settings.orchestrator.parallelism == 4
    assert settings.orchestrator.max_attempts == 2
    assert settings.orchestrator.per_step_timeout_sec is None


def test_env_overrides_yaml(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    settings_file = _write_settings(tmp_path, "orchestrator:\n  max_attempts: 3\n")
    monkeypatch.setenv("FLAKEGUARD_ORCHESTRATOR__MAX_ATTEMPTS", "5")
    monkeypatch.setenv("FLAKEGUARD_ORCHESTRATOR__PER_STEP_TIMEOUT_SEC", "90")

    settings = load_settings(settings_file)

    assert settings.orchestrator.max_attempts == 5
    assert settings.orchestrator.per_step_timeout_sec == 90.0


def test_invalid_limits_are_rejected(tmp_path: Path) -> None:
    settings_file = _write_settings(tmp_path, "orchestrator:\n  max_attempts: 0\n")

    with pytest.raises(ValidationError):
        load_settings(settings_file)


def test_as_dict_is_json_friendly() -> None:
    payload = AppSettings(orchestrator={"max_attempts": 3}).as_dict()

    assert payload["orchestrator"]["max_attempts"] == 3
    assert isinstance(payload["paths"]["artifacts_root"], str)
