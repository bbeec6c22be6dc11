# src/forgeflow/cli.py
"""forgeflow Command Line Interface.

Entry point for the forgeflow CLI tool. ``forgeflow --mcp`` switches the
same binary into MCP server mode instead of running a command.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from enum import StrEnum
from pathlib import Path
from typing import Any

import typer
import yaml
from dynaconf.vendor.ruamel.yaml.parser import ParserError as YamlParserError
from dynaconf.vendor.ruamel.yaml.scanner import ScannerError as YamlScannerError
from pydantic import ValidationError

from forgeflow import __version__
from forgeflow.contracts.errors import ForgeError
from forgeflow.core.config import DEFAULT_CONFIG_PATH, ForgeSettings, load_settings

__all__ = [
    "app",
    "load_settings",  # Re-exported from config for convenience
]

app = typer.Typer(
    name="forgeflow",
    help="forgeflow: build and test orchestration through pluggable engines.",
    no_args_is_help=True,
)


class OutputFormat(StrEnum):
    TABLE = "table"
    JSON = "json"
    YAML = "yaml"


@dataclass(frozen=True, slots=True)
class _CliState:
    """Global options shared with subcommands through the Typer context."""

    config_path: Path


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        typer.echo(f"forgeflow version {__version__}")
        raise typer.Exit()


def _load_dotenv(env_file: Path | None = None) -> bool:
    """Load environment variables from .env file.

    Engines inherit forgeflow's environment, so variables loaded here reach
    them too.

    Args:
        env_file: Explicit path to .env file. If None, searches for .env
                 in current directory and parent directories.

    Returns:
        True if .env was found and loaded, False otherwise.

    Raises:
        typer.Exit: If explicit env_file path doesn't exist.
    """
    from dotenv import load_dotenv

    if env_file is not None:
        if not env_file.exists():
            typer.secho(
                f"Error: .env file not found: {env_file}",
                fg=typer.colors.RED,
                err=True,
            )
            raise typer.Exit(1)
        return load_dotenv(env_file, override=False)

    return load_dotenv(override=False)  # Don't override existing env vars


def _format_validation_error(
    title: str,
    message: str,
    hint: str | None = None,
    details: list[str] | None = None,
) -> None:
    """Display a formatted error panel on stderr with optional hint and details."""
    from rich.console import Console
    from rich.panel import Panel
    from rich.text import Text

    console = Console(stderr=True)

    content = Text()
    content.append(message, style="white")

    if details:
        content.append("\n\n")
        for detail in details:
            content.append(f"  • {detail}\n", style="dim")

    if hint:
        content.append("\n")
        content.append("Hint: ", style="yellow bold")
        content.append(hint, style="yellow")

    panel = Panel(
        content,
        title=f"[red bold]❌ {title}[/]",
        border_style="red",
        padding=(0, 1),
    )
    console.print(panel)


def _load_config(config_path: Path) -> ForgeSettings:
    """Load settings, reporting configuration problems and exiting with 1."""
    try:
        return load_settings(config_path)
    except (YamlParserError, YamlScannerError) as e:
        _format_validation_error(
            title="YAML Syntax Error",
            message=f"Failed to parse {config_path.name}",
            details=[str(e.problem)] if hasattr(e, "problem") else None,
            hint="Check for unclosed brackets, incorrect indentation, or invalid characters.",
        )
        raise typer.Exit(1) from None
    except FileNotFoundError:
        _format_validation_error(
            title="File Not Found",
            message=f"Configuration file does not exist: {config_path}",
            hint="Run from the project root or pass --config.",
        )
        raise typer.Exit(1) from None
    except ValidationError as e:
        # Must be before ValueError - ValidationError inherits from it
        details = []
        for error in e.errors():
            loc = ".".join(str(x) for x in error["loc"])
            details.append(f"{loc}: {error['msg']}")
        _format_validation_error(
            title="Configuration Validation Failed",
            message=f"Invalid settings in {config_path.name}",
            details=details,
            hint="Check field names, types, and engine references (py:// or alias://).",
        )
        raise typer.Exit(1) from None


def _settings(ctx: typer.Context) -> ForgeSettings:
    state: _CliState = ctx.obj
    return _load_config(state.config_path)


def _fail(error: ForgeError) -> typer.Exit:
    typer.secho(f"Error: {error}", fg=typer.colors.RED, err=True)
    return typer.Exit(1)


def _render(data: Any, output_format: OutputFormat) -> str:
    if output_format is OutputFormat.JSON:
        return json.dumps(data, indent=2)
    return yaml.safe_dump(data, sort_keys=False).rstrip()


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    version: bool | None = typer.Option(
        None,
        "--version",
        "-V",
        callback=version_callback,
        is_eager=True,
        help="Show version and exit.",
    ),
    config: Path = typer.Option(
        DEFAULT_CONFIG_PATH,
        "--config",
        "-c",
        help="Path to the project configuration file.",
    ),
    no_dotenv: bool = typer.Option(
        False,
        "--no-dotenv",
        help="Skip loading .env file.",
    ),
    env_file: Path | None = typer.Option(
        None,
        "--env-file",
        help="Path to .env file (skips automatic search).",
        exists=False,  # We handle existence check ourselves for better error message
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        help="Enable verbose/debug logging.",
    ),
    json_logs: bool = typer.Option(
        False,
        "--json-logs",
        help="Output structured JSON logs (for machine processing).",
    ),
    mcp: bool = typer.Option(
        False,
        "--mcp",
        help="Run as an MCP server over stdio instead of running a command.",
    ),
) -> None:
    """forgeflow: build and test orchestration through pluggable engines."""
    # Logs go to stderr: stdout carries protocol frames in server mode
    from forgeflow.core.logging import configure_logging

    log_level = "DEBUG" if verbose else "INFO"
    configure_logging(json_output=json_logs, level=log_level)

    if not no_dotenv:
        _load_dotenv(env_file=env_file)
    elif env_file is not None:
        typer.secho(
            "Warning: --env-file ignored because --no-dotenv is set.",
            fg=typer.colors.YELLOW,
            err=True,
        )

    ctx.obj = _CliState(config_path=config.expanduser())

    if mcp:
        from forgeflow.mcp import serve

        serve(_load_config(ctx.obj.config_path))
        raise typer.Exit()

    if ctx.invoked_subcommand is None:
        typer.echo(ctx.get_help())
        raise typer.Exit()


@app.command()
def create(
    ctx: typer.Context,
    stage: str = typer.Argument(..., help="Test stage name from the configuration."),
) -> None:
    """Create a test environment for STAGE and print its test ID."""
    from forgeflow.orchestrator import build_orchestrators

    components = build_orchestrators(_settings(ctx))
    try:
        env = components.stages.create(stage)
    except ForgeError as e:
        raise _fail(e) from None
    typer.echo(env.id)


@app.command()
def delete(
    ctx: typer.Context,
    test_id: str = typer.Argument(..., help="Test environment ID."),
) -> None:
    """Tear down a test environment and remove its record."""
    from forgeflow.orchestrator import build_orchestrators

    components = build_orchestrators(_settings(ctx))
    try:
        report = components.stages.delete(test_id)
    except ForgeError as e:
        raise _fail(e) from None

    for outcome in report.failures:
        typer.secho(f"Warning: {outcome.target}: {outcome.reason}", fg=typer.colors.YELLOW, err=True)
    typer.echo(f"Deleted test environment {test_id}")


@app.command()
def get(
    ctx: typer.Context,
    test_id: str = typer.Argument(..., help="Test environment ID."),
    output_format: OutputFormat = typer.Option(
        OutputFormat.YAML,
        "--format",
        "-f",
        help="Output format.",
    ),
) -> None:
    """Show one stored test environment."""
    from forgeflow.orchestrator import build_orchestrators

    components = build_orchestrators(_settings(ctx))
    try:
        env = components.stages.get(test_id)
    except ForgeError as e:
        raise _fail(e) from None
    typer.echo(_render(env.model_dump(mode="json", by_alias=True), output_format))


@app.command("list")
def list_environments(
    ctx: typer.Context,
    stage: str | None = typer.Option(
        None,
        "--stage",
        "-s",
        help="Only environments of this stage.",
    ),
    output_format: OutputFormat = typer.Option(
        OutputFormat.TABLE,
        "--format",
        "-f",
        help="Output format.",
    ),
) -> None:
    """List stored test environments, oldest first."""
    from forgeflow.orchestrator import build_orchestrators

    components = build_orchestrators(_settings(ctx))
    try:
        envs = components.stages.list_environments(stage)
    except ForgeError as e:
        raise _fail(e) from None

    if output_format is not OutputFormat.TABLE:
        typer.echo(_render([env.model_dump(mode="json", by_alias=True) for env in envs], output_format))
        return

    if not envs:
        typer.echo("No test environments")
        return
    for env in envs:
        typer.echo(f"{env.id:45} {env.name:20} {env.status:8} {env.created_at:%Y-%m-%d %H:%M:%S}")


@app.command()
def build(
    ctx: typer.Context,
    name: str | None = typer.Argument(None, help="Only build the artifact with this name."),
) -> None:
    """Build configured artifacts and record them in the artifact store."""
    from forgeflow.orchestrator import build_orchestrators

    components = build_orchestrators(_settings(ctx))
    try:
        artifacts = components.builds.build(name)
    except ForgeError as e:
        raise _fail(e) from None

    if not artifacts:
        typer.echo("No artifacts to build")
        return
    for artifact in artifacts:
        typer.echo(f"  {artifact.name:30} {artifact.type:12} {artifact.location}")
    typer.echo(f"✅ Successfully built {len(artifacts)} artifact(s)")


@app.command()
def run(
    ctx: typer.Context,
    stage: str = typer.Argument(..., help="Test stage name from the configuration."),
    test_id: str | None = typer.Argument(None, help="Run against this test environment instead of creating one."),
) -> None:
    """Run the test runners of STAGE, record the report and settle the environment status.

    Exits with 1 when the tests fail.
    """
    from forgeflow.orchestrator import build_orchestrators

    components = build_orchestrators(_settings(ctx))
    try:
        result = components.runs.run(stage, test_id)
    except ForgeError as e:
        raise _fail(e) from None

    report = result.report
    if result.environment is not None:
        typer.echo(f"Test environment: {result.environment.id}")
    typer.echo(f"Report: {report.id}")
    typer.echo(f"Status: {report.status}")
    stats = report.test_stats
    typer.echo(f"Total: {stats.total}  Passed: {stats.passed}  Failed: {stats.failed}  Skipped: {stats.skipped}")
    if report.coverage.percentage:
        typer.echo(f"Coverage: {report.coverage.percentage:.1f}%")
    if report.error_message:
        typer.secho(f"Error: {report.error_message}", fg=typer.colors.RED, err=True)
    if not result.passed:
        raise typer.Exit(1)


@app.command()
def reports(
    ctx: typer.Context,
    stage: str | None = typer.Option(
        None,
        "--stage",
        "-s",
        help="Only reports of this stage.",
    ),
    output_format: OutputFormat = typer.Option(
        OutputFormat.TABLE,
        "--format",
        "-f",
        help="Output format.",
    ),
) -> None:
    """List stored test reports, oldest first."""
    from forgeflow.orchestrator import build_orchestrators

    components = build_orchestrators(_settings(ctx))
    try:
        stored = components.runs.list_reports(stage)
    except ForgeError as e:
        raise _fail(e) from None

    if output_format is not OutputFormat.TABLE:
        typer.echo(_render([r.model_dump(mode="json", by_alias=True) for r in stored], output_format))
        return

    if not stored:
        typer.echo("No test reports")
        return
    for report in stored:
        stats = report.test_stats
        typer.echo(f"{report.id:38} {report.stage:20} {report.status:8} {stats.passed}/{stats.total}")


@app.command()
def validate(ctx: typer.Context) -> None:
    """Validate the configuration and every engine reference it uses, without running engines."""
    from forgeflow.contracts.enums import EngineKind
    from forgeflow.engines.resolver import EngineResolver

    settings = _settings(ctx)
    resolver = EngineResolver(settings)

    problems: list[str] = []
    for stage in settings.test:
        try:
            resolver.setup_for(stage)
            if stage.runner is not None:
                for runner in resolver.sub_engines(stage.runner, EngineKind.TEST_RUNNER):
                    resolver.resolve(runner.engine, kind=EngineKind.TEST_RUNNER)
        except ForgeError as e:
            problems.append(f"test.{stage.name}: {e}")
    for spec in settings.build:
        try:
            for builder in resolver.sub_engines(spec.engine, EngineKind.BUILDER):
                resolver.resolve(builder.engine, kind=EngineKind.BUILDER)
        except ForgeError as e:
            problems.append(f"build.{spec.name}: {e}")

    if problems:
        _format_validation_error(
            title="Engine Reference Errors",
            message=f"Unresolvable engines in {ctx.obj.config_path.name}",
            details=problems,
            hint="Check the engines section for missing or mistyped aliases.",
        )
        raise typer.Exit(1)

    typer.echo("✅ Configuration valid!")
    typer.echo(f"  Build specs: {len(settings.build)}")
    typer.echo(f"  Test stages: {len(settings.test)}")
    typer.echo(f"  Engine aliases: {len(settings.engines)}")
