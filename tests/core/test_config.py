# tests/core/test_config.py
"""Tests for configuration schema and loading."""

from __future__ import annotations

from pathlib import Path

import pytest
from pydantic import ValidationError

FORGE_YAML = """
name: demo
artifact_store_path: .forge/artifacts.yaml
build:
  - name: app
    src: ./cmd/app
    dest: ./build/bin
    engine: alias://app-builder
test:
  - name: unit
    testenv: noop
  - name: integration
    testenv: alias://setup-integration
    runner: alias://runner
engines:
  - alias: app-builder
    type: builder
    builder:
      - engine: py://build_py
        spec:
          command: make
  - alias: setup-integration
    type: testenv
    testenv:
      - engine: py://testenv_kind
      - engine: py://testenv_lcr
        spec:
          enabled: true
  - alias: runner
    type: test-runner
    test-runner:
      - engine: py://run_pytest
"""


class TestLoadSettings:
    """Tests for load_settings()."""

    def test_loads_full_config(self, tmp_path: Path) -> None:
        from forgeflow.contracts.enums import EngineKind
        from forgeflow.core.config import load_settings

        config_file = tmp_path / "forge.yaml"
        config_file.write_text(FORGE_YAML)

        settings = load_settings(config_file)

        assert settings.name == "demo"
        assert settings.build[0].engine == "alias://app-builder"
        assert settings.get_stage("unit").testenv is None  # type: ignore[union-attr]
        alias = settings.get_alias("setup-integration")
        assert alias is not None
        assert alias.type is EngineKind.TESTENV
        assert [e.engine for e in alias.entries] == ["py://testenv_kind", "py://testenv_lcr"]
        assert alias.entries[1].spec == {"enabled": True}
        runner = settings.get_alias("runner")
        assert runner is not None
        assert [e.engine for e in runner.entries] == ["py://run_pytest"]
        assert settings.get_stage("integration").runner == "alias://runner"  # type: ignore[union-attr]

    def test_defaults(self, tmp_path: Path) -> None:
        from forgeflow.core.config import load_settings

        config_file = tmp_path / "forge.yaml"
        config_file.write_text("name: minimal\n")

        settings = load_settings(config_file)

        assert settings.engine_timeout_seconds == 360.0
        assert settings.directories.tmp_dir == ".forge/tmp"
        assert settings.report_engines == ["py://test_report"]
        assert settings.build == []

    def test_missing_file_raises(self, tmp_path: Path) -> None:
        from forgeflow.core.config import load_settings

        with pytest.raises(FileNotFoundError):
            load_settings(tmp_path / "nope.yaml")

    def test_env_var_override(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        from forgeflow.core.config import load_settings

        config_file = tmp_path / "forge.yaml"
        config_file.write_text("name: demo\nengine_timeout_seconds: 360\n")
        monkeypatch.setenv("FORGE_ENGINE_TIMEOUT_SECONDS", "30")

        settings = load_settings(config_file)

        assert settings.engine_timeout_seconds == 30

    def test_env_var_expansion(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        from forgeflow.core.config import load_settings

        config_file = tmp_path / "forge.yaml"
        config_file.write_text('name: "${PROJECT_NAME}"\nartifact_store_path: "${STORE_PATH:-.forge/store.yaml}"\n')
        monkeypatch.setenv("PROJECT_NAME", "from-env")
        monkeypatch.delenv("STORE_PATH", raising=False)

        settings = load_settings(config_file)

        assert settings.name == "from-env"
        assert settings.artifact_store_path == ".forge/store.yaml"

    def test_env_var_expansion_reaches_engine_specs(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        from forgeflow.core.config import load_settings

        config_file = tmp_path / "forge.yaml"
        config_file.write_text(
            "engines:\n"
            "  - alias: images\n"
            "    type: builder\n"
            "    builder:\n"
            "      - engine: py://container_build\n"
            "        spec:\n"
            '          args: ["--registry", "${REGISTRY_HOST}", "${UNSET_FORGE_VAR}"]\n'
        )
        monkeypatch.setenv("REGISTRY_HOST", "registry.local:5000")
        monkeypatch.delenv("UNSET_FORGE_VAR", raising=False)

        settings = load_settings(config_file)

        alias = settings.get_alias("images")
        assert alias is not None
        # Unset variables without a fallback are left as written
        assert alias.entries[0].spec["args"] == ["--registry", "registry.local:5000", "${UNSET_FORGE_VAR}"]


class TestSettingsValidation:
    """Schema validation rules."""

    def test_malformed_engine_reference_rejected(self) -> None:
        from forgeflow.core.config import BuildSpecSettings

        with pytest.raises(ValidationError, match="unsupported engine"):
            BuildSpecSettings(name="app", engine="build-go")

    def test_alias_without_engines_rejected(self) -> None:
        from forgeflow.core.config import EngineAliasSettings

        with pytest.raises(ValidationError, match="no engines configured"):
            EngineAliasSettings.model_validate({"alias": "empty", "type": "testenv"})

    def test_alias_entries_follow_type(self) -> None:
        from forgeflow.core.config import EngineAliasSettings

        # Builder entries on a testenv alias do not count
        with pytest.raises(ValidationError):
            EngineAliasSettings.model_validate(
                {"alias": "x", "type": "testenv", "builder": [{"engine": "py://build_py"}]}
            )

    def test_single_engine_alias(self) -> None:
        from forgeflow.core.config import EngineAliasSettings

        alias = EngineAliasSettings.model_validate({"alias": "x", "type": "builder", "engine": "py://build_py"})

        assert alias.engine == "py://build_py"
        assert alias.entries == []

    def test_duplicate_stage_names_rejected(self) -> None:
        from forgeflow.core.config import ForgeSettings

        with pytest.raises(ValidationError, match="Duplicate test stage"):
            ForgeSettings.model_validate({"test": [{"name": "it"}, {"name": "it"}]})

    def test_duplicate_aliases_rejected(self) -> None:
        from forgeflow.core.config import ForgeSettings

        alias = {"alias": "a", "type": "builder", "engine": "py://b"}
        with pytest.raises(ValidationError, match="Duplicate engine alias"):
            ForgeSettings.model_validate({"engines": [alias, alias]})

    @pytest.mark.parametrize("value", [None, "", "noop"])
    def test_noop_setup_means_no_engine(self, value: str | None) -> None:
        from forgeflow.core.config import TestStageSettings

        assert TestStageSettings(name="unit", testenv=value).testenv is None

    def test_settings_are_frozen(self) -> None:
        from forgeflow.core.config import ForgeSettings

        settings = ForgeSettings()
        with pytest.raises(ValidationError):
            settings.name = "changed"  # type: ignore[misc]

    def test_build_spec_params_merge_spec(self) -> None:
        from forgeflow.core.config import BuildSpecSettings

        spec = BuildSpecSettings(name="app", src="./cmd", dest="./bin", engine="py://build_py", spec={"ldflags": "-s"})

        assert spec.to_params() == {
            "name": "app",
            "src": "./cmd",
            "dest": "./bin",
            "engine": "py://build_py",
            "ldflags": "-s",
        }

    def test_is_report_engine(self) -> None:
        from forgeflow.core.config import ForgeSettings

        settings = ForgeSettings()

        assert settings.is_report_engine("py://test_report")
        assert not settings.is_report_engine("py://testenv_kind")

    def test_runner_reference_validated(self) -> None:
        from forgeflow.core.config import TestStageSettings

        assert TestStageSettings(name="unit", runner="").runner is None
        assert TestStageSettings(name="unit", runner="py://run_pytest").runner == "py://run_pytest"
        with pytest.raises(ValidationError, match="unsupported engine"):
            TestStageSettings(name="unit", runner="pytest")
