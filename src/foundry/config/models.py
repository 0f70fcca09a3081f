# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/foundry/config/models.py

from __future__ import annotations

import tempfile
from pathlib import Path
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator

from ..tools.models import ToolSpec


def _default_checkpoint_dir() -> Path:
    return Path(tempfile.gettempdir())


class DropletDefaults(BaseModel):
    name: str = "openclaw"
    region: str = "nyc1"
    size: str = "s-1vcpu-2gb"
    image: str = "ubuntu-24-04-x64"
    ssh_key_ids: List[str] = Field(default_factory=list)


class FoundrySettings(BaseModel):
    """
    Operator settings. Nothing in here is secret: tokens and API keys are
    asked for at the step that needs them and kept in memory only.
    """

    state_dir: Path = Field(default_factory=lambda: Path.home() / ".foundry")
    checkpoint_dir: Path = Field(default_factory=_default_checkpoint_dir)

    # remote connection
    connect_timeout: float = 10.0
    connect_retries: int = 5
    connect_retry_delay: float = 10.0
    command_timeout: float = 900.0
    smoke_test_timeout: float = 30.0
    ssh_key_path: Optional[Path] = None
    ssh_port: int = 22
    default_principal: str = "root"

    # remote bootstrap script
    remote_script_path: str = "/tmp/openclaw-setup.sh"
    remote_checkpoint_path: str = "/tmp/openclaw-setup-checkpoint"
    script_source: str = "bundled"   # "bundled" or an http(s) URL
    rig_base_url: str = "https://raw.githubusercontent.com/marshellis/ai-foundry/main/rigs"

    droplet: DropletDefaults = Field(default_factory=DropletDefaults)
    tools: List[ToolSpec] = Field(default_factory=list)

    @field_validator("state_dir", "checkpoint_dir", "ssh_key_path", mode="after")
    @classmethod
    def _expand(cls, v: Optional[Path]) -> Optional[Path]:
        return v.expanduser() if v is not None else v

    @field_validator("script_source")
    @classmethod
    def _source(cls, v: str) -> str:
        if v != "bundled" and not v.startswith(("http://", "https://")):
            raise ValueError("script_source must be 'bundled' or an http(s) URL")
        return v

    @property
    def log_dir(self) -> Path:
        return self.state_dir / "logs"

    def checkpoint_path(self, rig: str) -> Path:
        return self.checkpoint_dir / f"foundry-{rig}-checkpoint.json"
