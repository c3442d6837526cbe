#!/usr/bin/env python
"""
CLI management commands for the Taskflow licensing service.
"""

import asyncio
import json
import sys
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

import click

from taskflow.platform import __version__
from taskflow.platform.db import create_all_tables_async, dispose_engine, get_session_maker
from taskflow.platform.domain import ConfigurationError
from taskflow.platform.licensing.catalog import (
    CatalogStore,
    get_catalog_store,
    load_catalog_file,
    load_default_catalog,
)
from taskflow.platform.licensing.exceptions import CatalogIntegrityError


@dataclass
class CLIDependencies:
    """Bundle of injectable dependencies used by CLI commands."""

    session_factory: Callable[[], Any]
    create_tables: Callable[[], Awaitable[None]]
    dispose: Callable[[], Awaitable[None]]
    path_factory: Callable[[str], Path]


def _get_cli_dependencies() -> CLIDependencies:
    """Return the default dependency bundle for CLI commands."""
    # Registers the licensing tables on the shared metadata.
    import taskflow.platform.licensing.tables  # noqa: F401

    return CLIDependencies(
        session_factory=get_session_maker,
        create_tables=create_all_tables_async,
        dispose=dispose_engine,
        path_factory=Path,
    )


def _load_store(catalog_path: str | None) -> CatalogStore:
    try:
        definition = load_catalog_file(catalog_path) if catalog_path else load_default_catalog()
        return CatalogStore(definition)
    except ConfigurationError as e:
        raise click.ClickException(str(e)) from e


def _configured_store() -> CatalogStore:
    try:
        return get_catalog_store()
    except (ConfigurationError, CatalogIntegrityError) as e:
        raise click.ClickException(str(e)) from e


def _echo_json(data: Any) -> None:
    click.echo(json.dumps(data, indent=2, default=str))


@click.group()
@click.version_option(__version__, prog_name="taskflow-licensing")
def cli() -> None:
    """Taskflow licensing CLI."""
    pass


@cli.command()
@click.option(
    "--catalog", "catalog_path", default=None, help="Catalog JSON file (default: packaged)"
)
def catalog_summary(catalog_path: str | None) -> None:
    """Print plan, feature and entitlement counts of a catalog."""
    try:
        store = _load_store(catalog_path)
    except CatalogIntegrityError as e:
        raise click.ClickException(e.message) from e
    _echo_json(store.summary())


@cli.command()
@click.argument("path", type=click.Path(dir_okay=False))
def validate_catalog(path: str) -> None:
    """Validate a catalog file; exits non-zero when it is not usable."""
    try:
        store = _load_store(path)
    except CatalogIntegrityError as e:
        click.echo(f"Catalog {path} is invalid:", err=True)
        for problem in e.problems:
            click.echo(f"  - {problem}", err=True)
        sys.exit(1)
    summary = store.summary()
    click.echo(
        f"Catalog {store.version} is valid: {summary['plans']} plans, "
        f"{summary['features']} features, {summary['entitlements']} entitlements"
    )


@cli.command()
@click.option(
    "--catalog", "catalog_path", default=None, help="Catalog JSON file (default: packaged)"
)
def feature_matrix(catalog_path: str | None) -> None:
    """Print feature -> plan -> limit matrix of a catalog."""
    try:
        store = _load_store(catalog_path)
    except CatalogIntegrityError as e:
        raise click.ClickException(e.message) from e
    _echo_json(store.feature_matrix())


@cli.command()
def init_database() -> None:
    """Create the licensing tables."""
    deps = _get_cli_dependencies()

    async def _init() -> None:
        try:
            await deps.create_tables()
        finally:
            await deps.dispose()

    click.echo("Initializing database...")
    asyncio.run(_init())
    click.echo("Database initialized successfully!")


@cli.command()
@click.option("--grace-days", type=int, default=None, help="Override the configured grace period")
def purge_usage_counters(grace_days: int | None) -> None:
    """Delete usage counters of windows that ended before the grace period."""
    from taskflow.platform.licensing.evaluator import EntitlementEvaluator
    from taskflow.platform.licensing.sql_repository import SQLAlchemyUsageRepository

    deps = _get_cli_dependencies()

    async def _purge() -> int:
        try:
            evaluator = EntitlementEvaluator(
                _configured_store(),
                SQLAlchemyUsageRepository(deps.session_factory()),
                grace_days=grace_days,
            )
            return await evaluator.purge_usage_counters(datetime.now(UTC))
        finally:
            await deps.dispose()

    purged = asyncio.run(_purge())
    click.echo(f"Purged {purged} usage counter(s)")


@cli.command()
@click.argument("tenant_id")
@click.option("--output", default="users.csv", help="CSV file to write")
def export_users(tenant_id: str, output: str) -> None:
    """Export a tenant's users as CSV."""
    from taskflow.platform.licensing.reporting import export_users_csv
    from taskflow.platform.licensing.sql_repository import SQLAlchemyLicensingStore

    deps = _get_cli_dependencies()

    async def _export() -> tuple[int, str]:
        try:
            store = SQLAlchemyLicensingStore(deps.session_factory())
            async with store.unit_of_work(tenant_id) as uow:
                users = await uow.users.find_all()
            return len(users), export_users_csv(users)
        finally:
            await deps.dispose()

    count, content = asyncio.run(_export())
    deps.path_factory(output).write_text(content, encoding="utf-8")
    click.echo(f"Exported {count} users to {output}")


if __name__ == "__main__":
    cli()
