"""
server-sync: CLI Entry Point

Usage:
    server-sync [-v] [--env-file PATH] [--dry-run] [--json]
    python -m server_sync

All settings come from the environment (see SERVER_SYNC_* variables);
the options below only override them for one run.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Optional

import click

from . import __version__
from .config.loader import (
    AUDIT_LOG_VAR,
    BRANCH_VAR,
    CONTEXTS_VAR,
    DESTINATION_VAR,
    REPO_STORAGE_VAR,
    REPO_VAR,
    load_config,
)
from .engine.sync import SyncResult, run_sync
from .errors import ConfigError
from .logging_config import setup_logging, verbosity_to_level
from .persistence.audit import AuditWriter


def _open_audit_log(path: Optional[Path]) -> Optional[AuditWriter]:
    if path is None:
        return None
    try:
        return AuditWriter(path)
    except OSError as e:
        raise ConfigError(f"cannot open audit log {path}: {e}", field=AUDIT_LOG_VAR)


def _print_summary(result: SyncResult) -> None:
    click.echo("")
    click.echo(f"  Run ID:     {result.run_id}")
    click.echo(f"  Commit:     {(result.commit or '-')[:12]}{' (fresh clone)' if result.cloned else ''}")
    click.echo(f"  Selected:   {result.files_selected}")
    click.echo(f"  Written:    {result.files_written}")
    if result.directories_created:
        click.echo(f"  New dirs:   {result.directories_created}")
    if result.backups:
        click.echo(f"  Backups:    {result.backups}")
    click.echo(f"  Duration:   {result.duration_ms}ms")

    if result.ok:
        if result.dry_run:
            click.secho("\n(Dry run: destination not modified)", fg="cyan")
        else:
            click.secho("✓ Done", fg="green")
    else:
        click.secho(
            f"\n✗ Sync failed during {result.failed_step}: {result.error}",
            fg="red",
            err=True,
        )


@click.command(context_settings={"help_option_names": ["-h", "--help"]})
@click.option("-v", "--verbose", count=True, help="Debug output (overrides LOG_LEVEL)")
@click.option(
    "--env-file",
    type=click.Path(dir_okay=False),
    default=None,
    help="Env file to load (overrides SERVER_SYNC_ENV)",
)
@click.option("--repo", default=None, help=f"Override {REPO_VAR}")
@click.option("--branch", default=None, help=f"Override {BRANCH_VAR}")
@click.option("--destination", default=None, help=f"Override {DESTINATION_VAR}")
@click.option("--contexts", default=None, help=f"Override {CONTEXTS_VAR} (e.g. 'prod;dev')")
@click.option("--repo-storage", default=None, help=f"Override {REPO_STORAGE_VAR}")
@click.option("--dry-run", is_flag=True, help="Update the mirror but don't write the destination")
@click.option("--json", "as_json", is_flag=True, help="Print the run result as JSON")
@click.version_option(version=__version__, prog_name="server-sync")
@click.pass_context
def cli(
    ctx: click.Context,
    verbose: int,
    env_file: Optional[str],
    repo: Optional[str],
    branch: Optional[str],
    destination: Optional[str],
    contexts: Optional[str],
    repo_storage: Optional[str],
    dry_run: bool,
    as_json: bool,
) -> None:
    """Deploy the files of a git branch that match the active contexts."""
    setup_logging(level=verbosity_to_level(verbose))

    overrides = {
        REPO_VAR: repo,
        BRANCH_VAR: branch,
        DESTINATION_VAR: destination,
        CONTEXTS_VAR: contexts,
        REPO_STORAGE_VAR: repo_storage,
    }

    try:
        config = load_config(overrides=overrides, env_file=env_file)
        audit_writer = _open_audit_log(config.audit_log)
    except ConfigError as e:
        click.secho(f"✗ Configuration error: {e}", fg="red", err=True)
        ctx.exit(1)

    result = run_sync(config, dry_run=dry_run, audit_writer=audit_writer)

    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2, default=str))
        if not result.ok:
            click.echo(f"Sync failed during {result.failed_step}: {result.error}", err=True)
    else:
        _print_summary(result)

    ctx.exit(0 if result.ok else 1)


def main() -> None:
    cli(prog_name="server-sync")


if __name__ == "__main__":
    main()
