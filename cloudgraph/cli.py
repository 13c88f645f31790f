"""Command-line interface for cloudgraph."""

import sys
from contextlib import contextmanager
from typing import Iterator

import click

from . import __version__
from .adapters.inventory import InventoryAdapter
from .adapters.registry import AdapterRegistry
from .config.errors import ConfigLoadError, ConfigValidationError
from .config.loader import parse_config
from .config.models import AppConfig
from .inference.summary import get_cross_cloud_summary
from .logging_setup import setup_logger
from .output.formatter import (
    format_cross_cloud_summary,
    format_drift_result,
    format_stats,
    format_subgraph,
    format_sync_wave,
    format_timeline,
    format_validation_result,
)
from .schema.types import CloudProvider, SyncStatus
from .storage import open_storage
from .storage.errors import StorageError
from .sync.engine import GraphEngine
from .validators.runner import run_validators

format_option = click.option(
    "--format",
    "output_format",
    type=click.Choice(["text", "json"]),
    default="text",
    help="Output format",
)


def _build_registry(config: AppConfig) -> AdapterRegistry:
    registry = AdapterRegistry()
    for declared in config.adapters:
        registry.register(
            InventoryAdapter(
                declared.path,
                provider=declared.provider,
                max_workers=config.engine.max_workers,
            )
        )
    return registry


@contextmanager
def _engine(config: AppConfig) -> Iterator[GraphEngine]:
    """Open storage for one command; storage errors exit with code 2."""
    try:
        storage = open_storage(config.storage.backend, config.storage.path)
    except StorageError as e:
        click.echo(f"Storage error: {e}", err=True)
        sys.exit(2)
    try:
        yield GraphEngine(storage, _build_registry(config), config.engine)
    except StorageError as e:
        click.echo(f"Storage error: {e}", err=True)
        sys.exit(2)
    finally:
        storage.close()


@click.group()
@click.version_option(version=__version__, prog_name="cloudgraph")
@click.option(
    "--config",
    "config_path",
    type=click.Path(exists=True, dir_okay=False),
    default=None,
    help="YAML configuration file",
)
@click.option("--log-level", default=None, help="Override the configured log level")
@click.pass_context
def main(ctx: click.Context, config_path: str | None, log_level: str | None):
    """cloudgraph: a multi-cloud infrastructure knowledge graph."""
    try:
        config = parse_config(config_path) if config_path else AppConfig()
    except ConfigLoadError as e:
        click.echo(f"Error loading config: {e}", err=True)
        sys.exit(2)
    except ConfigValidationError as e:
        click.echo(f"Config validation error: {e}", err=True)
        for err in e.errors:
            click.echo(f"  - {err['loc']}: {err['msg']}", err=True)
        sys.exit(2)

    setup_logger(log_level or config.logging.level, config.logging.file)
    ctx.obj = config


@main.command()
@click.option(
    "--provider",
    "providers",
    multiple=True,
    type=click.Choice([p.value for p in CloudProvider]),
    help="Only sync these providers",
)
@format_option
@click.pass_obj
def sync(config: AppConfig, providers: tuple[str, ...], output_format: str):
    """Run a discovery wave over the configured adapters.

    Exit codes:
      0 - Sync completed (possibly with partial errors)
      1 - A provider cycle failed
      2 - Configuration or storage error
    """
    if not config.adapters:
        click.echo("No adapters configured", err=True)
        sys.exit(2)

    with _engine(config) as engine:
        wave = engine.sync(list(providers) or None)

    click.echo(format_sync_wave(wave, output_format))  # type: ignore
    sys.exit(1 if wave.status == SyncStatus.FAILED else 0)


@main.command()
@format_option
@click.pass_obj
def stats(config: AppConfig, output_format: str):
    """Show graph statistics."""
    with _engine(config) as engine:
        result = engine.get_stats()
    click.echo(format_stats(result, output_format))  # type: ignore


@main.command("blast-radius")
@click.argument("node_id")
@click.option("--depth", type=int, default=None, help="Maximum hop count")
@format_option
@click.pass_obj
def blast_radius(config: AppConfig, node_id: str, depth: int | None, output_format: str):
    """Show everything connected to NODE_ID within DEPTH hops."""
    with _engine(config) as engine:
        result = engine.get_blast_radius(node_id, depth)
    click.echo(format_subgraph(result, output_format))  # type: ignore
    if not result.nodes:
        sys.exit(1)


@main.command()
@click.argument("node_id")
@click.option("--limit", type=int, default=50, help="Most recent entries to show")
@format_option
@click.pass_obj
def timeline(config: AppConfig, node_id: str, limit: int, output_format: str):
    """Show the change history of NODE_ID, oldest first."""
    with _engine(config) as engine:
        changes = engine.get_timeline(node_id, limit)
    click.echo(format_timeline(changes, output_format))  # type: ignore


@main.command("cross-cloud")
@format_option
@click.pass_obj
def cross_cloud(config: AppConfig, output_format: str):
    """Summarize relationships between providers."""
    with _engine(config) as engine:
        summary = get_cross_cloud_summary(engine.storage, config.engine.inference)
    click.echo(format_cross_cloud_summary(summary, output_format))  # type: ignore


@main.command()
@click.option(
    "--provider",
    default=None,
    type=click.Choice([p.value for p in CloudProvider]),
    help="Only scan this provider",
)
@click.option("--record", is_flag=True, default=False, help="Append drift to the change ledger")
@format_option
@click.pass_obj
def drift(config: AppConfig, provider: str | None, record: bool, output_format: str):
    """Compare a fresh discovery against the stored graph."""
    with _engine(config) as engine:
        result = engine.detect_drift(provider, record=record)
    click.echo(format_drift_result(result, output_format))  # type: ignore


@main.command()
@format_option
@click.option(
    "--strict",
    is_flag=True,
    default=False,
    help="Treat warnings as errors",
)
@click.pass_obj
def validate(config: AppConfig, output_format: str, strict: bool):
    """Check the stored graph's integrity.

    Exit codes:
      0 - Validation passed
      1 - Validation failed (errors found)
      2 - Configuration or storage error
    """
    with _engine(config) as engine:
        result = run_validators(engine.storage)

    click.echo(format_validation_result(result, output_format))  # type: ignore

    if result.has_errors:
        sys.exit(1)
    elif strict and result.has_warnings:
        sys.exit(1)
    else:
        sys.exit(0)


if __name__ == "__main__":
    main()
