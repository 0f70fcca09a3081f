# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/foundry/remote/models.py

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional


@dataclass
class RemoteTarget:
    """
    The host the bridge talks to.
    """
    host: str                      # IP or DNS name
    principal: str = "root"        # remote account
    port: int = 22
    key_path: Optional[Path] = None
    # in-memory only, never checkpointed
    password: Optional[str] = field(default=None, repr=False)

    @property
    def label(self) -> str:
        return f"{self.principal}@{self.host}"


@dataclass
class ExecResult:
    command: str
    exit_status: int
    output: str = ""

    @property
    def ok(self) -> bool:
        return self.exit_status == 0
