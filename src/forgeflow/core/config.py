# src/forgeflow/core/config.py
"""
Configuration schema and loading for forgeflow projects.

Uses Pydantic for validation and Dynaconf for multi-source loading.
Settings are frozen (immutable) after construction.

Example forge.yaml:
    name: my-project
    artifact_store_path: .forge/artifacts.yaml
    build:
      - name: app
        src: ./cmd/app
        dest: ./build/bin
        engine: alias://app-builder
    test:
      - name: integration
        testenv: alias://setup-integration
        runner: py://run_pytest
    engines:
      - alias: setup-integration
        type: testenv
        testenv:
          - engine: py://testenv_kind
          - engine: py://testenv_lcr
            spec:
              enabled: true
"""

import os
import re
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, field_validator, model_validator

from forgeflow.contracts.enums import EngineKind
from forgeflow.contracts.engine import parse_reference
from forgeflow.contracts.errors import ResolutionError

DEFAULT_CONFIG_PATH = Path("forge.yaml")

# Setup values meaning "no environment engine, keep the environment bare"
_NOOP_SETUP = frozenset({"", "noop"})


def _check_reference(value: str) -> str:
    """Reject malformed engine references at config time."""
    try:
        parse_reference(value)
    except ResolutionError as e:
        raise ValueError(str(e)) from e
    return value


class SubEngineSettings(BaseModel):
    """One entry of a builder/testenv/test-runner chain.

    ``spec`` is opaque: forwarded verbatim to the engine's tool call.
    """

    model_config = {"frozen": True}

    engine: str = Field(description="Engine reference (py:// or alias://)")
    spec: dict[str, Any] = Field(default_factory=dict, description="Engine-specific configuration")

    @field_validator("engine")
    @classmethod
    def validate_engine(cls, v: str) -> str:
        return _check_reference(v)


class EngineAliasSettings(BaseModel):
    """A named engine configuration referenced as ``alias://<alias>``.

    The alias is tagged with a kind. A builder or test-runner alias with one
    entry (or an ``engine`` field) resolves to a single engine; a testenv
    alias is always an ordered chain.
    """

    model_config = {"frozen": True, "populate_by_name": True}

    alias: str = Field(min_length=1, description="Name used in alias://<name>")
    type: EngineKind = Field(description="builder, testenv or test-runner")
    engine: str | None = Field(default=None, description="Single underlying engine reference")
    builder: list[SubEngineSettings] = Field(default_factory=list)
    testenv: list[SubEngineSettings] = Field(default_factory=list)
    test_runner: list[SubEngineSettings] = Field(default_factory=list, alias="test-runner")

    @field_validator("engine")
    @classmethod
    def validate_engine(cls, v: str | None) -> str | None:
        if v is None:
            return v
        return _check_reference(v)

    @model_validator(mode="after")
    def validate_entries(self) -> "EngineAliasSettings":
        """The list matching ``type`` (or ``engine``) must be present."""
        if self.engine is None and not self.entries:
            raise ValueError(f"engine alias '{self.alias}' of type {self.type} has no engines configured")
        return self

    @property
    def entries(self) -> list[SubEngineSettings]:
        """Sub-engines for this alias's kind, in declared order."""
        if self.type is EngineKind.BUILDER:
            return self.builder
        if self.type is EngineKind.TESTENV:
            return self.testenv
        return self.test_runner


class BuildSpecSettings(BaseModel):
    """One artifact to build."""

    model_config = {"frozen": True}

    name: str = Field(min_length=1)
    src: str = ""
    dest: str = ""
    engine: str
    spec: dict[str, Any] = Field(default_factory=dict, description="Extra parameters merged into the build call")

    @field_validator("engine")
    @classmethod
    def validate_engine(cls, v: str) -> str:
        return _check_reference(v)

    def to_params(self) -> dict[str, Any]:
        params: dict[str, Any] = {"name": self.name, "src": self.src, "dest": self.dest, "engine": self.engine}
        params.update(self.spec)
        return params


class TestStageSettings(BaseModel):
    """A named test stage: its environment setup and its test runner."""

    __test__ = False

    model_config = {"frozen": True}

    name: str = Field(min_length=1)
    testenv: str | None = Field(default=None, description="Engine or alias reference; empty or 'noop' for none")
    runner: str | None = Field(default=None, description="Test runner engine or test-runner alias")

    @field_validator("testenv")
    @classmethod
    def validate_testenv(cls, v: str | None) -> str | None:
        if v is None or v in _NOOP_SETUP:
            return None
        return _check_reference(v)

    @field_validator("runner")
    @classmethod
    def validate_runner(cls, v: str | None) -> str | None:
        if not v:
            return None
        return _check_reference(v)


class DirectorySettings(BaseModel):
    """Directory conventions. Relative paths are anchored at the project root."""

    model_config = {"frozen": True}

    tmp_dir: str = ".forge/tmp"
    build_dir: str = "build"
    root_dir: str = "."


class ForgeSettings(BaseModel):
    """Top-level forgeflow project configuration."""

    model_config = {"frozen": True}

    name: str = ""
    artifact_store_path: str = ".forge/artifacts.yaml"
    engine_timeout_seconds: float = Field(
        default=360.0,
        gt=0,
        description="Bound on a single engine call; long enough for cluster/registry provisioning",
    )
    engine_package: str = Field(
        default="forgeflow_engines",
        description="Package that short toolchain names (py://<name>) expand into",
    )
    report_engines: list[str] = Field(
        default_factory=lambda: ["py://test_report"],
        description="Lightweight reporting engines: called with the stage only",
    )
    directories: DirectorySettings = Field(default_factory=DirectorySettings)
    build: list[BuildSpecSettings] = Field(default_factory=list)
    test: list[TestStageSettings] = Field(default_factory=list)
    engines: list[EngineAliasSettings] = Field(default_factory=list)

    @field_validator("test")
    @classmethod
    def validate_stage_names_unique(cls, v: list[TestStageSettings]) -> list[TestStageSettings]:
        seen: set[str] = set()
        for stage in v:
            if stage.name in seen:
                raise ValueError(f"Duplicate test stage name '{stage.name}'")
            seen.add(stage.name)
        return v

    @field_validator("engines")
    @classmethod
    def validate_aliases_unique(cls, v: list[EngineAliasSettings]) -> list[EngineAliasSettings]:
        seen: set[str] = set()
        for engine in v:
            if engine.alias in seen:
                raise ValueError(f"Duplicate engine alias '{engine.alias}'")
            seen.add(engine.alias)
        return v

    def get_stage(self, name: str) -> TestStageSettings | None:
        for stage in self.test:
            if stage.name == name:
                return stage
        return None

    def get_alias(self, alias: str) -> EngineAliasSettings | None:
        for engine in self.engines:
            if engine.alias == alias:
                return engine
        return None

    def is_report_engine(self, reference: str) -> bool:
        return reference in self.report_engines


# ${NAME} or ${NAME:-fallback}; NAME is upper-case like the FORGE_* overrides
_ENV_VAR_PATTERN = re.compile(r"\$\{([A-Z_][A-Z0-9_]*)(?::-([^}]*))?\}")


def _substitute(match: re.Match[str]) -> str:
    name, fallback = match.group(1), match.group(2)
    value = os.environ.get(name)
    if value is not None:
        return value
    if fallback is not None:
        return fallback
    # Unset without a fallback: left as written so validation names the field
    return match.group(0)


def _expand_env_vars(value: Any) -> Any:
    """Substitute ``${NAME}`` placeholders in every string of a config tree.

    Engine specs are opaque mappings forwarded to engines, so placeholders
    inside them are expanded too (registry hosts, kubeconfig paths).
    """
    if isinstance(value, str):
        return _ENV_VAR_PATTERN.sub(_substitute, value)
    if isinstance(value, dict):
        return {k: _expand_env_vars(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_expand_env_vars(item) for item in value]
    return value


# Dynaconf bookkeeping keys that are not forge.yaml fields
_DYNACONF_KEYS = frozenset({"LOAD_DOTENV", "ENVIRONMENTS", "SETTINGS_FILES"})


def load_settings(config_path: Path = DEFAULT_CONFIG_PATH) -> ForgeSettings:
    """Read forge.yaml into validated, frozen settings.

    ``FORGE_``-prefixed environment variables override file values, with a
    double underscore for nesting (``FORGE_DIRECTORIES__BUILD_DIR=out``).
    ``${NAME}`` placeholders are expanded after the override is applied.

    Raises:
        FileNotFoundError: ``config_path`` does not exist
        ValidationError: The merged configuration is invalid
    """
    from dynaconf import Dynaconf

    # Dynaconf treats a missing settings file as empty
    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    loaded = Dynaconf(
        envvar_prefix="FORGE",
        settings_files=[str(config_path)],
        environments=False,
        load_dotenv=False,
        merge_enabled=True,
    )
    raw = {key.lower(): value for key, value in loaded.as_dict().items() if key not in _DYNACONF_KEYS}
    return ForgeSettings(**_expand_env_vars(raw))
