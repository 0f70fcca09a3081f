# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/foundry/checkpoint/models.py
from __future__ import annotations

import hashlib
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


def _now() -> datetime:
    return datetime.now(timezone.utc)


def session_id_for(path: str | Path) -> str:
    """
    Stable session id derived from the checkpoint location.
    One checkpoint path == one session per operator machine.
    """
    resolved = str(Path(path).expanduser().resolve())
    return hashlib.sha256(resolved.encode("utf-8")).hexdigest()[:16]


class ProvisioningSession(BaseModel):
    """
    Persisted projection of one provisioning run.

    There is deliberately no field for API keys, tokens or passwords:
    anything collected through Prompter.secret() lives only in the
    in-memory StepContext and is re-asked on resume.
    """

    # newer checkpoints may carry fields this version does not know about
    model_config = ConfigDict(extra="ignore")

    session_id: str
    rig: str = "droplet"
    current_step: int = 0
    target_host: Optional[str] = None
    target_principal: str = "root"
    target_resource_ref: Optional[str] = None
    skipped_steps: List[str] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=_now)
    updated_at: datetime = Field(default_factory=_now)

    def advance_to(self, step: int) -> None:
        # current_step never moves backwards outside an explicit reset
        if step > self.current_step:
            self.current_step = step
        self.touch()

    def mark_skipped(self, name: str) -> None:
        if name not in self.skipped_steps:
            self.skipped_steps.append(name)
        self.touch()

    def clear_skipped(self, name: str) -> None:
        if name in self.skipped_steps:
            self.skipped_steps.remove(name)

    def forget_target(self) -> None:
        """
        Explicit partial reset: drop the resolved target. The caller rewinds
        current_step to the step that resolves it, since everything after
        that step ran against the old host and has to run again.
        """
        self.target_host = None
        self.target_resource_ref = None
        self.skipped_steps = []
        self.touch()

    def touch(self) -> None:
        self.updated_at = _now()
