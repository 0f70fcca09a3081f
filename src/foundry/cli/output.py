# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/foundry/cli/output.py
#
# Human narration on stdout. Machine-readable traces go to the log file.
from __future__ import annotations

from typing import Iterable, Optional

import typer


def banner(title: str, *lines: str, color: str = typer.colors.CYAN) -> None:
    rule = "=" * 40
    typer.echo("")
    typer.secho(rule, fg=color)
    typer.secho(f"  {title}", fg=color)
    for line in lines:
        typer.secho(f"  {line}", fg=color)
    typer.secho(rule, fg=color)


def step(title: str) -> None:
    typer.secho(f"\n--- {title}", fg=typer.colors.CYAN)


def ok(msg: str) -> None:
    typer.secho(f"    OK: {msg}", fg=typer.colors.GREEN)


def warn(msg: str) -> None:
    typer.secho(f"    WARN: {msg}", fg=typer.colors.YELLOW)


def fail(msg: str) -> None:
    typer.secho(f"    FAIL: {msg}", fg=typer.colors.RED)


def note(msg: str = "") -> None:
    typer.echo(f"    {msg}" if msg else "")


def hint(msg: str) -> None:
    typer.secho(f"    {msg}", fg=typer.colors.YELLOW)


def block(text: str, indent: str = "      ") -> None:
    for line in (text or "").rstrip().splitlines():
        typer.echo(f"{indent}{line}")


def failure(
    message: str,
    *,
    command: Optional[str] = None,
    output: str = "",
    remediation: Optional[str] = None,
) -> None:
    """Every failure shows what ran, what it said, and what to do next."""
    fail(message)
    if command:
        note(f"command: {command}")
    if output and output.strip():
        note("output:")
        block(output)
    if remediation:
        hint(f"fix: {remediation}")


def listing(title: str, items: Iterable[str]) -> None:
    typer.secho(f"\n{title}", fg=typer.colors.CYAN)
    for item in items:
        typer.echo(f"  {item}")
