# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

from __future__ import annotations
from dataclasses import dataclass, asdict, field
from typing import List, Dict, Any, Optional
from datetime import datetime, timezone


def _ts() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds")


@dataclass(frozen=True, kw_only=True)
class BaseEvent:
    ts: str = field(default_factory=_ts)   # ISO timestamp
    run_id: str = ""                       # correlates all events of one invocation
    rig: str = ""
    session_id: Optional[str] = None

    def dict(self) -> Dict[str, Any]:
        return asdict(self)


# ----- Session -----

@dataclass(frozen=True)
class SessionStarted(BaseEvent):
    resume_step: int
    total_steps: int
    target: Optional[str] = None

@dataclass(frozen=True)
class SessionCompleted(BaseEvent):
    configured: List[str]
    skipped: List[str]

@dataclass(frozen=True)
class SessionStopped(BaseEvent):
    step: str
    reason: str


# ----- Per-step lifecycle -----

@dataclass(frozen=True)
class StepStarted(BaseEvent):
    index: int
    total: int
    name: str
    title: str
    kind: str

@dataclass(frozen=True)
class StepSatisfied(BaseEvent):
    index: int
    name: str

@dataclass(frozen=True)
class StepSucceeded(BaseEvent):
    index: int
    name: str
    duration_ms: int

@dataclass(frozen=True)
class StepFailed(BaseEvent):
    index: int
    name: str
    error: str
    category: str
    command: Optional[str] = None
    output: str = ""
    remediation: Optional[str] = None

@dataclass(frozen=True)
class StepSkipped(BaseEvent):
    index: int
    name: str
    reason: str

@dataclass(frozen=True)
class CheckpointSaved(BaseEvent):
    step: int


# ----- Tools & remote -----

@dataclass(frozen=True)
class ToolInvoked(BaseEvent):
    tool: str
    where: str
    command: str
    returncode: int
    outcome: str

@dataclass(frozen=True)
class RemoteConnected(BaseEvent):
    host: str
    principal: str
    attempts: int

@dataclass(frozen=True)
class RemoteExecuted(BaseEvent):
    host: str
    command: str
    exit_status: int
