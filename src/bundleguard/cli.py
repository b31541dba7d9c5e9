"""BundleGuard command-line interface."""

from __future__ import annotations

import json
import logging
import sys
from importlib.metadata import PackageNotFoundError
from importlib.metadata import version as get_version
from pathlib import Path
from typing import NoReturn

import typer
import yaml
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.table import Table

from .augmenter import ConfigurationAugmenter
from .environment import is_production_build, read_environment_tag
from .exceptions import BundleGuardError, ConfigurationError
from .models import AugmenterSettings, BuildConfiguration, ProjectPaths
from .pipeline import process_build
from .policy import DEFAULT_POLICY, DEFAULT_VARIANT, POLICY_VARIANTS
from .registry import REGISTRY_DIRNAME, PolicyRegistry, discover_registry

app = typer.Typer(
    name="bundleguard",
    help="BundleGuard: Content-Security-Policy and style purging for production builds",
    add_completion=False,
)
console = Console()


def _get_version_string() -> str:
    """Get version string from package metadata."""
    try:
        return get_version("bundleguard")
    except PackageNotFoundError:
        return "unknown"


def version_callback(value: bool) -> None:
    """Callback for --version flag."""
    if value:
        console.print(f"BundleGuard version {_get_version_string()}")
        raise typer.Exit


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
        force=True,
    )


@app.callback()
def main_callback(
    version: bool = typer.Option(
        False,
        "--version",
        callback=version_callback,
        is_eager=True,
        help="Show version and exit",
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        help="Enable debug logging",
    ),
) -> None:
    """BundleGuard: Content-Security-Policy and style purging for production builds."""
    _configure_logging(verbose)


def _load_settings(registry_path: Path | None) -> AugmenterSettings:
    """Load settings from an explicit or discovered registry, else defaults."""
    if registry_path is None:
        registry_path = discover_registry()
    elif not registry_path.is_dir():
        msg = f"Registry not found at {registry_path}"
        raise ConfigurationError(msg)

    if registry_path is None:
        return AugmenterSettings(paths=ProjectPaths(root=Path.cwd()))
    return PolicyRegistry(registry_path).load_settings()


def _read_host_config(path: Path | None) -> BuildConfiguration:
    """Read a host configuration from JSON or YAML; empty when not given."""
    if path is None:
        return BuildConfiguration()

    try:
        with path.open(encoding="utf-8") as f:
            data = json.load(f) if path.suffix == ".json" else yaml.safe_load(f)
    except (OSError, json.JSONDecodeError, yaml.YAMLError) as e:
        msg = f"Failed to read build configuration {path}: {e}"
        raise ConfigurationError(msg) from e

    if not isinstance(data, dict):
        msg = f"Build configuration must be a mapping: {path}"
        raise ConfigurationError(msg)
    return BuildConfiguration.from_host(data)


def _resolve_env(env: str | None, settings: AugmenterSettings) -> str:
    return env if env is not None else read_environment_tag(settings.environment_variable)


def _exit_with_error(error: BundleGuardError) -> NoReturn:
    """Print an error with the stage it came from and exit with status 1."""
    console.print(f"[red]Error:[/red] {escape(str(error))}")
    stage = error.details.get("stage")
    if stage:
        console.print(f"[red]Failed stage:[/red] {stage}")
    raise typer.Exit(1) from error


@app.command()
def init(
    path: Path = typer.Option(
        Path.cwd(),
        "--path",
        "-p",
        help="Project directory to initialize",
    ),
    variant: str = typer.Option(
        DEFAULT_VARIANT,
        "--variant",
        help=f"Built-in policy variant ({', '.join(POLICY_VARIANTS)})",
    ),
) -> None:
    """Initialize a project registry with a starter policy and settings."""
    registry_path = path / REGISTRY_DIRNAME

    if registry_path.exists():
        console.print(
            f"[yellow]Warning:[/yellow] Registry exists at {registry_path}",
        )
        if not typer.confirm("Overwrite existing files?"):
            console.print("Initialization cancelled")
            return

    try:
        written = PolicyRegistry(registry_path).write_defaults(variant)
    except OSError as e:
        console.print(f"[red]Error:[/red] Failed to create registry: {e}")
        raise typer.Exit(1) from e
    except BundleGuardError as e:
        _exit_with_error(e)

    console.print(f"[green]✓[/green] Registry initialized at {registry_path}")
    console.print("Created files:")
    for file_path in written:
        console.print(f"  • {file_path.relative_to(registry_path)}")


@app.command()
def augment(
    config_file: Path | None = typer.Argument(
        None,
        help="Host build configuration (JSON or YAML); empty configuration if omitted",
        exists=True,
        dir_okay=False,
    ),
    env: str | None = typer.Option(
        None,
        "--env",
        "-e",
        help="Build environment tag (defaults to the configured environment variable)",
    ),
    registry_path: Path | None = typer.Option(
        None,
        "--registry",
        help="Registry path (defaults to the nearest .bundleguard directory)",
    ),
    output: Path | None = typer.Option(
        None,
        "--output",
        "-o",
        help="Write the augmented configuration here instead of stdout",
    ),
) -> None:
    """Augment a host build configuration and print the result."""
    try:
        settings = _load_settings(registry_path)
        config = _read_host_config(config_file)
        tag = _resolve_env(env, settings)
        result = ConfigurationAugmenter(settings).augment(config, tag)
    except BundleGuardError as e:
        _exit_with_error(e)

    rendered = json.dumps(result.to_host(), indent=2)
    if output is None:
        typer.echo(rendered)
        return

    output.write_text(rendered + "\n", encoding="utf-8")
    state = "augmented" if result is not config else "unchanged"
    console.print(f"[green]✓[/green] Configuration {state} ({tag}) written to {output}")


@app.command()
def apply(
    build_dir: Path = typer.Argument(
        ...,
        help="Emitted build directory to process",
        exists=True,
        file_okay=False,
        dir_okay=True,
    ),
    config_file: Path | None = typer.Option(
        None,
        "--config",
        "-c",
        help="Host build configuration (JSON or YAML)",
        exists=True,
        dir_okay=False,
    ),
    env: str | None = typer.Option(
        None,
        "--env",
        "-e",
        help="Build environment tag (defaults to the configured environment variable)",
    ),
    registry_path: Path | None = typer.Option(
        None,
        "--registry",
        help="Registry path (defaults to the nearest .bundleguard directory)",
    ),
) -> None:
    """Augment the configuration and run its plugins over an emitted build."""
    try:
        settings = _load_settings(registry_path)
        tag = _resolve_env(env, settings)
        if not is_production_build(tag):
            console.print(f"[yellow]Skipped:[/yellow] '{tag}' build is not augmented")
            return

        config = ConfigurationAugmenter(settings).augment(_read_host_config(config_file), tag)
        changed = process_build(config, build_dir)
    except BundleGuardError as e:
        _exit_with_error(e)

    console.print(f"[green]✓[/green] Processed {build_dir} ({len(changed)} assets rewritten)")
    for key in changed:
        console.print(f"  • {key}")


@app.command()
def doctor(
    registry_path: Path | None = typer.Option(
        None,
        "--registry",
        help="Registry path (defaults to the nearest .bundleguard directory)",
    ),
) -> None:
    """Show the effective policy and build settings."""
    try:
        settings = _load_settings(registry_path)
    except BundleGuardError as e:
        _exit_with_error(e)

    policy = settings.policy or DEFAULT_POLICY

    table = Table(title="BundleGuard Doctor")
    table.add_column("Setting", style="cyan")
    table.add_column("Value", style="green")

    table.add_row("Environment Variable", settings.environment_variable)
    table.add_row("Current Environment", read_environment_tag(settings.environment_variable))
    table.add_row("Entry HTML", str(settings.paths.resolved_html()))
    table.add_row("Source Tree", str(settings.paths.resolved_src()))
    stages = ["purgecss", "csp"] if settings.purge_enabled else ["csp"]
    table.add_row("Stages", " → ".join(stages))
    table.add_row("Content Globs", ", ".join(settings.content_globs))
    table.add_row("Integrity Hash", settings.hash_algorithm)

    console.print(table)

    console.print("\n[bold]Content-Security-Policy:[/bold]")
    for name, value in policy.to_plugin_directives().items():
        console.print(f"  [cyan]{name}[/cyan] {value}")


@app.command()
def version() -> None:
    """Show BundleGuard version information."""
    console.print(f"BundleGuard version {_get_version_string()}")


def main() -> None:
    """Entry point for the CLI."""
    try:
        app()
    except KeyboardInterrupt:
        console.print("\n[yellow]Interrupted[/yellow]")
        sys.exit(130)


if __name__ == "__main__":
    main()
