# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/foundry/prompts/terminal.py

from __future__ import annotations

import logging
from typing import List, Optional, Sequence

import typer

from .interface import SKIPPED, Option, SecretValue

log = logging.getLogger("foundry")


def _parse_many(raw: str, keys: Sequence[str]) -> Optional[List[str]]:
    picked: List[str] = []
    for part in raw.replace(" ", ",").split(","):
        part = part.strip()
        if not part:
            continue
        if part not in keys:
            return None
        if part not in picked:
            picked.append(part)
    return picked


class TerminalPrompter:
    """
    typer-backed prompts. Invalid input loops; nothing defaults silently.
    """

    indent = "    "

    def _show(self, label: str, options: Sequence[Option]) -> None:
        typer.echo("")
        typer.secho(f"{self.indent}{label}", fg=typer.colors.YELLOW)
        typer.echo("")
        for key, text in options:
            typer.echo(f"{self.indent}{key}) {text}")
        typer.echo("")

    def choose(self, key: str, label: str, options: Sequence[Option]) -> str:
        keys = [k for k, _ in options]
        self._show(label, options)
        while True:
            raw = typer.prompt(f"{self.indent}Choice ({'/'.join(keys)})").strip()
            if raw in keys:
                log.debug("prompt %s -> %s", key, raw)
                return raw
            typer.secho(f"{self.indent}Invalid choice: {raw!r}", fg=typer.colors.RED)

    def choose_many(self, key: str, label: str, options: Sequence[Option]) -> List[str]:
        keys = [k for k, _ in options]
        self._show(label, options)
        while True:
            raw = typer.prompt(
                f"{self.indent}Enter choices (e.g. {keys[0]},{keys[-1]}; empty for none)",
                default="",
                show_default=False,
            )
            picked = _parse_many(raw, keys)
            if picked is not None:
                log.debug("prompt %s -> %s", key, picked)
                return picked
            typer.secho(f"{self.indent}Invalid choice: {raw!r}", fg=typer.colors.RED)

    def confirm(self, key: str, label: str, default: bool = False) -> bool:
        answer = typer.confirm(f"{self.indent}{label}", default=default)
        log.debug("prompt %s -> %s", key, answer)
        return answer

    def ask(self, key: str, label: str, default: Optional[str] = None) -> str:
        while True:
            if default is None:
                raw = typer.prompt(f"{self.indent}{label}", default="", show_default=False)
            else:
                raw = typer.prompt(f"{self.indent}{label}", default=default, show_default=bool(default))
            raw = raw.strip()
            # an explicit default, even "", makes the answer optional
            if raw or default is not None:
                log.debug("prompt %s -> %s", key, raw)
                return raw
            typer.secho(f"{self.indent}A value is required", fg=typer.colors.RED)

    def secret(self, key: str, label: str) -> SecretValue:
        typer.secho(f"{self.indent}(input is hidden; press Enter to skip)", fg=typer.colors.YELLOW)
        raw = typer.prompt(f"{self.indent}{label}", default="", show_default=False, hide_input=True)
        if not raw.strip():
            log.debug("prompt %s -> skipped", key)
            return SKIPPED
        log.debug("prompt %s -> <secret>", key)
        return raw.strip()

    def pause(self, key: str, label: str = "Press Enter to continue...") -> None:
        typer.prompt(f"{self.indent}{label}", default="", show_default=False)
