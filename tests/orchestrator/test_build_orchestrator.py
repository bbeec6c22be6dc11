# tests/orchestrator/test_build_orchestrator.py
"""Tests for builder orchestration and the project build workflow."""

from __future__ import annotations

import copy
from collections.abc import Callable
from pathlib import Path
from typing import Any

import pytest

from forgeflow.contracts.document import Document
from forgeflow.contracts.engine import EngineChain, SubEngine
from forgeflow.contracts.errors import (
    ArtifactParseError,
    EngineError,
    InvalidArgumentError,
    NotFoundError,
    ResolutionError,
    StepFailedError,
)
from forgeflow.core.config import ForgeSettings
from forgeflow.core.store import ArtifactStore
from forgeflow.engines.resolver import EngineResolver
from forgeflow.orchestrator.build import (
    BUILD_BATCH_TOOL,
    BUILD_TOOL,
    BuildOrchestrator,
    BuildService,
    parse_artifacts,
)
from forgeflow.orchestrator.types import ForgeDirectories
from forgeflow.orchestrator.workspace import TMP_DIR_PREFIX, ForgeWorkspace
from tests.fixtures.fakes import RecordingCaller

GO_BUILD = "py://go_build"
CONTAINER_BUILD = "py://container_build"


def _batch_response(kind: str) -> Callable[[dict[str, Any]], dict[str, Any]]:
    def respond(args: dict[str, Any]) -> dict[str, Any]:
        return {
            "artifacts": [
                {"name": spec["name"], "type": kind, "location": f"file://{spec['buildDir']}/{spec['name']}"}
                for spec in args["specs"]
            ]
        }

    return respond


def _single_response(kind: str) -> Callable[[dict[str, Any]], dict[str, Any]]:
    def respond(args: dict[str, Any]) -> dict[str, Any]:
        return {"name": args["name"], "type": kind, "location": f"file://{args['buildDir']}/{args['name']}"}

    return respond


@pytest.fixture
def dirs(tmp_path: Path) -> ForgeDirectories:
    return ForgeDirectories(tmp_dir=tmp_path / "tmp", build_dir=tmp_path / "build", root_dir=tmp_path)


@pytest.fixture
def orchestrator(make_settings: Callable[..., ForgeSettings], project_dir: Path, caller: RecordingCaller) -> BuildOrchestrator:
    resolver = EngineResolver(make_settings(), cwd=project_dir)
    return BuildOrchestrator(resolver=resolver, caller=caller)


class TestParseArtifacts:
    def test_single_artifact(self) -> None:
        artifacts = parse_artifacts({"name": "app", "type": "binary", "location": "file:///b/app"})

        assert [a.name for a in artifacts] == ["app"]
        assert artifacts[0].location == "file:///b/app"

    def test_wrapped_list(self) -> None:
        artifacts = parse_artifacts(Document({"artifacts": [{"name": "a"}, {"name": "b"}]}))

        assert [a.name for a in artifacts] == ["a", "b"]

    def test_bare_list(self) -> None:
        assert [a.name for a in parse_artifacts([{"name": "a"}])] == ["a"]

    def test_empty_list_is_accepted(self) -> None:
        assert parse_artifacts({"artifacts": []}) == []

    @pytest.mark.parametrize(
        "raw",
        [
            None,
            "app",
            {"status": "ok"},
            {"name": ""},
            ["app"],
            [{"type": "binary"}],
        ],
    )
    def test_rejects_other_shapes(self, raw: Any) -> None:
        with pytest.raises(ArtifactParseError):
            parse_artifacts(raw, engine=GO_BUILD)

    def test_camel_case_fields(self) -> None:
        (artifact,) = parse_artifacts({"name": "app", "timestamp": "2026-01-01T00:00:00Z", "version": "abc123"})

        assert artifact.timestamp == "2026-01-01T00:00:00Z"
        assert artifact.version == "abc123"


class TestOrchestrate:
    """Multi-builder orchestration."""

    def test_batch_across_builders_in_order(
        self, orchestrator: BuildOrchestrator, caller: RecordingCaller, dirs: ForgeDirectories
    ) -> None:
        caller.respond(GO_BUILD, BUILD_BATCH_TOOL, _batch_response("binary"))
        caller.respond(CONTAINER_BUILD, BUILD_BATCH_TOOL, _batch_response("container"))
        specs = [{"name": "api", "src": "./cmd/api"}, {"name": "worker"}, {"name": "cli"}]
        original = copy.deepcopy(specs)

        artifacts = orchestrator.orchestrate([SubEngine(GO_BUILD), SubEngine(CONTAINER_BUILD)], specs, dirs)

        assert caller.sequence == [(GO_BUILD, BUILD_BATCH_TOOL), (CONTAINER_BUILD, BUILD_BATCH_TOOL)]
        assert [(a.name, a.type) for a in artifacts] == [
            ("api", "binary"),
            ("worker", "binary"),
            ("cli", "binary"),
            ("api", "container"),
            ("worker", "container"),
            ("cli", "container"),
        ]
        assert specs == original

    def test_directories_injected(
        self, orchestrator: BuildOrchestrator, caller: RecordingCaller, dirs: ForgeDirectories
    ) -> None:
        caller.respond(GO_BUILD, BUILD_BATCH_TOOL, _batch_response("binary"))

        orchestrator.orchestrate([SubEngine(GO_BUILD)], [{"name": "a"}, {"name": "b"}], dirs)

        for spec in caller.calls[0].arguments["specs"]:
            assert spec["tmpDir"] == str(dirs.tmp_dir)
            assert spec["buildDir"] == str(dirs.build_dir)
            assert spec["rootDir"] == str(dirs.root_dir)

    def test_plain_mapping_directories(self, orchestrator: BuildOrchestrator, caller: RecordingCaller) -> None:
        caller.respond(GO_BUILD, BUILD_TOOL, _single_response("binary"))

        orchestrator.orchestrate([SubEngine(GO_BUILD)], [{"name": "a"}], {"buildDir": "/out"})

        assert caller.calls[0].arguments["buildDir"] == "/out"

    def test_builder_config_injected_per_builder(
        self, orchestrator: BuildOrchestrator, caller: RecordingCaller, dirs: ForgeDirectories
    ) -> None:
        builders = EngineChain(
            alias="go-multi",
            steps=(
                SubEngine(GO_BUILD, {"command": "go", "args": ["build", "-race"], "env": {"CGO_ENABLED": "1"}}),
                SubEngine(CONTAINER_BUILD, {"workDir": "./docker", "command": "", "unrelated": "x"}),
            ),
        )
        caller.respond(GO_BUILD, BUILD_BATCH_TOOL, _batch_response("binary"))
        caller.respond(CONTAINER_BUILD, BUILD_BATCH_TOOL, _batch_response("container"))

        orchestrator.orchestrate(builders, [{"name": "api"}, {"name": "worker"}], dirs)

        go_specs = caller.calls[0].arguments["specs"]
        container_specs = caller.calls[1].arguments["specs"]
        assert all(s["command"] == "go" and s["args"] == ["build", "-race"] for s in go_specs)
        assert all(s["env"] == {"CGO_ENABLED": "1"} for s in go_specs)
        assert all("workDir" not in s for s in go_specs)
        # Empty values and unknown keys are not injected
        assert all(s["workDir"] == "./docker" for s in container_specs)
        assert all("command" not in s and "unrelated" not in s for s in container_specs)

    def test_single_spec_uses_build(
        self, orchestrator: BuildOrchestrator, caller: RecordingCaller, dirs: ForgeDirectories
    ) -> None:
        caller.respond(GO_BUILD, BUILD_TOOL, _single_response("binary"))

        artifacts = orchestrator.orchestrate([SubEngine(GO_BUILD)], [{"name": "api"}], dirs)

        assert caller.sequence == [(GO_BUILD, BUILD_TOOL)]
        assert caller.calls[0].arguments["name"] == "api"
        assert [a.name for a in artifacts] == ["api"]

    def test_fail_fast(self, orchestrator: BuildOrchestrator, caller: RecordingCaller, dirs: ForgeDirectories) -> None:
        caller.fail(GO_BUILD, BUILD_BATCH_TOOL, EngineError(GO_BUILD, BUILD_BATCH_TOOL, "compile error"))

        with pytest.raises(StepFailedError) as exc_info:
            orchestrator.orchestrate([SubEngine(GO_BUILD), SubEngine(CONTAINER_BUILD)], [{"name": "a"}, {"name": "b"}], dirs)

        assert exc_info.value.step == 1
        assert exc_info.value.engine == GO_BUILD
        assert isinstance(exc_info.value.cause, EngineError)
        assert caller.sequence == [(GO_BUILD, BUILD_BATCH_TOOL)]

    def test_second_builder_failure_discards_first_builder_artifacts(
        self, orchestrator: BuildOrchestrator, caller: RecordingCaller, dirs: ForgeDirectories
    ) -> None:
        caller.respond(GO_BUILD, BUILD_BATCH_TOOL, _batch_response("binary"))
        caller.fail(CONTAINER_BUILD, BUILD_BATCH_TOOL, EngineError(CONTAINER_BUILD, BUILD_BATCH_TOOL, "no daemon"))
        specs = [{"name": "api"}, {"name": "worker"}, {"name": "cli"}]

        with pytest.raises(StepFailedError) as exc_info:
            orchestrator.orchestrate([SubEngine(GO_BUILD), SubEngine(CONTAINER_BUILD)], specs, dirs)

        assert caller.sequence == [(GO_BUILD, BUILD_BATCH_TOOL), (CONTAINER_BUILD, BUILD_BATCH_TOOL)]
        assert [len(c.arguments["specs"]) for c in caller.calls] == [3, 3]
        assert exc_info.value.step == 2
        assert exc_info.value.engine == CONTAINER_BUILD
        assert isinstance(exc_info.value.cause, EngineError)

    def test_builder_step_alias_must_be_a_builder(
        self, make_settings: Callable[..., ForgeSettings], project_dir: Path, caller: RecordingCaller, dirs: ForgeDirectories
    ) -> None:
        settings = make_settings(
            engines=[
                {"alias": "go", "type": "builder", "builder": [{"engine": GO_BUILD}]},
                {"alias": "gotest", "type": "test-runner", "test-runner": [{"engine": "py://go_test"}]},
            ]
        )
        orchestrator = BuildOrchestrator(resolver=EngineResolver(settings, cwd=project_dir), caller=caller)
        caller.respond(GO_BUILD, BUILD_TOOL, _single_response("binary"))

        artifacts = orchestrator.orchestrate([SubEngine("alias://go")], [{"name": "api"}], dirs)
        assert [a.name for a in artifacts] == ["api"]

        with pytest.raises(StepFailedError) as exc_info:
            orchestrator.orchestrate([SubEngine("alias://go"), SubEngine("alias://gotest")], [{"name": "api"}], dirs)

        assert exc_info.value.step == 2
        assert isinstance(exc_info.value.cause, ResolutionError)
        assert "expected builder" in str(exc_info.value.cause)
        # The runner engine behind the alias is never started
        assert ("py://go_test", BUILD_TOOL) not in caller.sequence

    def test_unparseable_result_fails_the_builder(
        self, orchestrator: BuildOrchestrator, caller: RecordingCaller, dirs: ForgeDirectories
    ) -> None:
        caller.respond(GO_BUILD, BUILD_TOOL, _single_response("binary"))
        caller.respond(CONTAINER_BUILD, BUILD_TOOL, {"status": "done"})

        with pytest.raises(StepFailedError) as exc_info:
            orchestrator.orchestrate([SubEngine(GO_BUILD), SubEngine(CONTAINER_BUILD)], [{"name": "a"}], dirs)

        assert exc_info.value.step == 2
        assert isinstance(exc_info.value.cause, ArtifactParseError)

    def test_empty_inputs(self, orchestrator: BuildOrchestrator, dirs: ForgeDirectories) -> None:
        with pytest.raises(InvalidArgumentError):
            orchestrator.orchestrate([], [{"name": "a"}], dirs)
        with pytest.raises(InvalidArgumentError):
            orchestrator.orchestrate([SubEngine(GO_BUILD)], [], dirs)


BUILD_CONFIG: dict[str, Any] = {
    "build": [
        {"name": "api", "src": "./cmd/api", "dest": "./build/bin", "engine": GO_BUILD},
        {"name": "worker", "src": "./cmd/worker", "engine": GO_BUILD},
        {"name": "api-image", "src": "./Containerfile", "engine": "alias://images", "spec": {"push": True}},
    ],
    "engines": [
        {
            "alias": "images",
            "type": "builder",
            "builder": [{"engine": CONTAINER_BUILD, "spec": {"command": "podman"}}],
        },
        {"alias": "cluster", "type": "testenv", "testenv": [{"engine": "py://testenv_kind"}]},
    ],
}


@pytest.fixture
def service_for(
    make_settings: Callable[..., ForgeSettings],
    project_dir: Path,
    caller: RecordingCaller,
    store: ArtifactStore,
) -> Callable[..., BuildService]:
    caller.respond(GO_BUILD, BUILD_TOOL, _single_response("binary"))
    caller.respond(GO_BUILD, BUILD_BATCH_TOOL, _batch_response("binary"))
    caller.respond(CONTAINER_BUILD, BUILD_TOOL, _single_response("container"))

    def factory(config: dict[str, Any] | None = None) -> BuildService:
        settings = make_settings(**(BUILD_CONFIG if config is None else config))
        resolver = EngineResolver(settings, cwd=project_dir)
        return BuildService(
            settings,
            orchestrator=BuildOrchestrator(resolver=resolver, caller=caller),
            store=store,
            resolver=resolver,
            workspace=ForgeWorkspace(settings, project_root=resolver.project_root),
        )

    return factory


class TestBuildService:
    """Project build workflow."""

    def test_groups_by_engine_in_config_order(self, service_for: Callable[..., BuildService]) -> None:
        groups = service_for().group_specs()

        assert list(groups) == [GO_BUILD, "alias://images"]
        assert [p["name"] for p in groups[GO_BUILD]] == ["api", "worker"]
        assert groups["alias://images"][0]["push"] is True

    def test_group_filter_and_unknown_name(self, service_for: Callable[..., BuildService]) -> None:
        service = service_for()

        assert list(service.group_specs("worker")) == [GO_BUILD]
        with pytest.raises(NotFoundError):
            service.group_specs("nope")

    def test_build_all_records_artifacts(
        self, service_for: Callable[..., BuildService], caller: RecordingCaller, store: ArtifactStore, project_dir: Path
    ) -> None:
        artifacts = service_for().build()

        assert [(a.name, a.type) for a in artifacts] == [
            ("api", "binary"),
            ("worker", "binary"),
            ("api-image", "container"),
        ]
        assert caller.sequence == [(GO_BUILD, BUILD_BATCH_TOOL), (CONTAINER_BUILD, BUILD_TOOL)]
        # Alias builder config reaches the sub-engine
        assert caller.calls[1].arguments["command"] == "podman"
        assert caller.calls[1].arguments["buildDir"] == str(project_dir / "build")

        stored = store.read()
        assert [a.name for a in stored.artifacts] == ["api", "worker", "api-image"]
        assert all(a.timestamp for a in stored.artifacts)

    def test_build_one(self, service_for: Callable[..., BuildService], caller: RecordingCaller) -> None:
        artifacts = service_for().build("api-image")

        assert [a.name for a in artifacts] == ["api-image"]
        assert caller.sequence == [(CONTAINER_BUILD, BUILD_TOOL)]

    def test_nothing_configured(
        self, service_for: Callable[..., BuildService], caller: RecordingCaller, store: ArtifactStore
    ) -> None:
        assert service_for({}).build() == []
        assert caller.calls == []
        assert not store.path.exists()

    def test_failed_builder_records_nothing(
        self, service_for: Callable[..., BuildService], caller: RecordingCaller, store: ArtifactStore
    ) -> None:
        caller.fail(CONTAINER_BUILD, BUILD_TOOL, EngineError(CONTAINER_BUILD, BUILD_TOOL, "no daemon"))

        with pytest.raises(StepFailedError):
            service_for().build()

        assert store.read().artifacts == []

    def test_alias_of_wrong_kind(self, service_for: Callable[..., BuildService], caller: RecordingCaller) -> None:
        config = {"build": [{"name": "x", "engine": "alias://cluster"}], "engines": BUILD_CONFIG["engines"]}

        with pytest.raises(ResolutionError, match="expected builder"):
            service_for(config).build()

        assert caller.calls == []

    def test_build_gets_a_fresh_scratch_directory(
        self, service_for: Callable[..., BuildService], caller: RecordingCaller, project_dir: Path
    ) -> None:
        service_for().build("api")

        tmp_dir = Path(caller.calls[0].arguments["tmpDir"])
        assert tmp_dir.is_dir()
        assert tmp_dir.parent == project_dir / ".forge" / "tmp"
        assert tmp_dir.name.startswith(TMP_DIR_PREFIX)
