# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/foundry/cli/app.py
from __future__ import annotations

from pathlib import Path
from typing import Optional

import typer
import yaml
from pydantic import ValidationError

from foundry.checkpoint.store import FileCheckpointStore
from foundry.cli import output
from foundry.config.loader import load_settings
from foundry.config.models import FoundrySettings
from foundry.core.errors import CheckpointLocked, FoundryError, SessionAborted
from foundry.logging.log import init_logging
from foundry.observers.console import ConsoleObserver
from foundry.observers.dispatcher import EventBus
from foundry.observers.jsonfile import JsonFileObserver
from foundry.observers.logger import LoggerObserver
from foundry.prompts.terminal import TerminalPrompter
from foundry.rigs import registry
from foundry.rigs.registry import Rig
from foundry.session.controller import SessionController


# ------------------------------------------------------------------------------
# CLI setup
# ------------------------------------------------------------------------------

app = typer.Typer(help="AI Foundry rig installer", no_args_is_help=True)

EXIT_FAILED = 1
EXIT_INTERRUPTED = 130

DEFAULT_RIG = "droplet"

RIG_HELP = "Rig to install (see `foundry rigs`)"
CONFIG_HELP = "Settings YAML (default: $FOUNDRY_CONFIG or ~/.foundry/config.yaml)"


# ------------------------------------------------------------------------------
# Helpers
# ------------------------------------------------------------------------------

def _settings(config: Optional[Path]) -> FoundrySettings:
    try:
        return load_settings(config)
    except (FileNotFoundError, ValidationError, ValueError, yaml.YAMLError) as exc:
        output.fail(f"Could not load settings: {exc}")
        raise typer.Exit(EXIT_FAILED)


def _rig(name: str) -> Rig:
    try:
        return registry.get(name)
    except KeyError as exc:
        raise typer.BadParameter(exc.args[0], param_hint="RIG")


def _store(settings: FoundrySettings, rig: Rig) -> FileCheckpointStore:
    return FileCheckpointStore(settings.checkpoint_path(rig.name))


# ------------------------------------------------------------------------------
# Commands
# ------------------------------------------------------------------------------

@app.command()
def run(
    rig: str = typer.Argument(DEFAULT_RIG, help=RIG_HELP),
    reset: bool = typer.Option(False, "--reset", help="Discard saved progress and start over"),
    config: Optional[Path] = typer.Option(None, "--config", help=CONFIG_HELP),
    debug: bool = typer.Option(False, "--debug"),
):
    """Start a rig install, or resume the one in progress."""
    settings = _settings(config)
    r = _rig(rig)

    logger, run_id, log_path = init_logging(base_dir=settings.log_dir, verbose=debug)
    typer.echo(f"  Run ID   : {run_id}")
    typer.echo(f"  Logs     : {log_path}")

    bus = EventBus(
        [
            ConsoleObserver(),
            LoggerObserver(logger),
            JsonFileObserver(settings.log_dir / f"{run_id}.jsonl"),
        ],
        ctx={"run_id": run_id, "rig": r.name},
    )
    controller = SessionController(r, _store(settings, r), TerminalPrompter(), settings, bus=bus)

    try:
        controller.run(reset=reset)
    except CheckpointLocked as exc:
        output.failure(str(exc), remediation=exc.remediation)
        raise typer.Exit(EXIT_FAILED)
    except SessionAborted as exc:
        output.fail(str(exc))
        if exc.remediation:
            output.hint(f"fix: {exc.remediation}")
        output.hint(f"Progress saved. Run `foundry run {r.name}` again to resume.")
        logger.info("run aborted: %s", exc)
        raise typer.Exit(EXIT_FAILED)
    except FoundryError as exc:
        output.failure(str(exc), command=exc.command, output=exc.output, remediation=exc.remediation)
        logger.exception("run failed")
        raise typer.Exit(EXIT_FAILED)
    except (KeyboardInterrupt, typer.Abort):
        # Ctrl-C inside a prompt arrives as typer.Abort
        typer.echo("")
        output.warn(f"Interrupted. Progress saved; run `foundry run {r.name}` again to resume.")
        logger.info("run interrupted")
        raise typer.Exit(EXIT_INTERRUPTED)

    logger.info("=== foundry run finished ===")


@app.command()
def status(
    rig: str = typer.Argument(DEFAULT_RIG, help=RIG_HELP),
    config: Optional[Path] = typer.Option(None, "--config", help=CONFIG_HELP),
):
    """Show the saved progress for a rig."""
    settings = _settings(config)
    r = _rig(rig)
    store = _store(settings, r)
    session = store.load()
    if session is None:
        typer.echo(f"No {r.name} session in progress.")
        return

    steps = r.build(settings)
    current = min(session.current_step, len(steps))
    nxt = steps[current].title if current < len(steps) else "complete"
    typer.echo(f"Rig        : {r.name}")
    typer.echo(f"Progress   : {current}/{len(steps)} steps done (next: {nxt})")
    if session.target_host:
        typer.echo(f"Target     : {session.target_principal}@{session.target_host}")
    if session.target_resource_ref:
        typer.echo(f"Resource   : {session.target_resource_ref}")
    if session.skipped_steps:
        typer.echo(f"Skipped    : {', '.join(session.skipped_steps)}")
    typer.echo(f"Updated    : {session.updated_at.isoformat(timespec='seconds')}")
    typer.echo(f"Checkpoint : {store.path}")


@app.command()
def reset(
    rig: str = typer.Argument(DEFAULT_RIG, help=RIG_HELP),
    config: Optional[Path] = typer.Option(None, "--config", help=CONFIG_HELP),
):
    """Discard the saved progress for one rig. Other rigs are untouched."""
    settings = _settings(config)
    r = _rig(rig)
    store = _store(settings, r)
    try:
        with store.lock():
            store.clear()
    except CheckpointLocked as exc:
        output.failure(str(exc), remediation=exc.remediation)
        raise typer.Exit(EXIT_FAILED)
    typer.echo(f"Checkpoint cleared for {r.name}.")


@app.command("rigs")
def list_rigs(config: Optional[Path] = typer.Option(None, "--config", help=CONFIG_HELP)):
    """List the rigs this installer knows."""
    settings = _settings(config)
    for r in registry.available():
        typer.secho(f"{r.name}: {r.title}", bold=True)
        typer.echo(f"  {r.description}")
        for i, s in enumerate(r.build(settings), start=1):
            typer.echo(f"    {i:>2}. {s.title} [{s.kind.value}]")


if __name__ == "__main__":
    app()
