# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/foundry/steps/models.py

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from ..checkpoint.models import ProvisioningSession
from ..config.models import FoundrySettings
from ..prompts.interface import Prompter
from ..remote.bridge import RemoteBridge
from ..remote.models import RemoteTarget
from ..remote.runner import RemoteRunner
from ..tools.invoker import ToolInvoker
from ..core.errors import Unreachable

log = logging.getLogger("foundry")


class StepKind(str, Enum):
    LOCAL = "local-only"
    REMOTE = "remote-delegated"
    INTERACTIVE = "interactive-only"


@dataclass
class Step:
    """
    A named unit of work at a fixed position in a rig's sequence.

    `check` runs before `body` and answers "is the end state already
    there?". When it says yes, `body` must not run. A step whose check is
    satisfied can always be recorded as done.

    `reverify` marks steps whose effect does not survive the process
    (an open connection, in-memory decisions): they are re-checked even
    when the checkpoint is already past them, without moving the
    checkpoint.
    """

    name: str
    title: str
    kind: StepKind
    body: Callable[["StepContext"], None]
    check: Optional[Callable[["StepContext"], bool]] = None
    reverify: bool = False
    index: int = -1


@dataclass
class StepContext:
    """
    Everything a step body can touch. Secrets and decisions live here,
    in memory, and are gone when the process exits.
    """

    session: ProvisioningSession
    settings: FoundrySettings
    prompter: Prompter
    invoker: ToolInvoker
    bridge: Optional[RemoteBridge] = None
    checkpoint: Callable[[], None] = lambda: None
    decisions: Dict[str, Any] = field(default_factory=dict)
    secrets: Dict[str, str] = field(default_factory=dict)
    configured: List[str] = field(default_factory=list)
    manual: List[str] = field(default_factory=list)

    @property
    def remote(self) -> ToolInvoker:
        """The invoker, running on the target host."""
        return self.invoker.on(RemoteRunner(self.require_bridge()))

    def require_bridge(self) -> RemoteBridge:
        if self.bridge is None or not self.bridge.connected:
            raise Unreachable(
                "No open connection to the target host",
                remediation="Re-run; the connection step reconnects first",
            )
        return self.bridge

    def session_target(self) -> Optional[RemoteTarget]:
        """The target recorded in the session, if one has been resolved."""
        if not self.session.target_host:
            return None
        return RemoteTarget(
            host=self.session.target_host,
            principal=self.session.target_principal,
            port=self.settings.ssh_port,
            key_path=self.settings.ssh_key_path,
        )

    def ensure_connected(self) -> RemoteBridge:
        """
        Reopen a dropped link before a remote step runs again. Uses the
        bridge's last target (with any in-memory password) unless the
        session now records a different host.
        """
        if self.bridge is None:
            return self.require_bridge()
        if not self.bridge.connected:
            target = getattr(self.bridge, "target", None)
            recorded = self.session_target()
            if recorded is not None and (target is None or target.host != recorded.host):
                target = recorded
            if target is None:
                return self.require_bridge()
            log.info("reconnecting to %s", target.label)
            self.bridge.connect(target)
        return self.bridge

    def was_skipped(self, step_name: str) -> bool:
        return step_name in self.session.skipped_steps


class RewindTo(Exception):
    """
    Raised by a step to send the sequence back to an earlier step, after
    the step itself has reset the session fields that step resolves.
    """

    def __init__(self, step_name: str, reason: str = ""):
        super().__init__(reason or f"rewind to {step_name}")
        self.step_name = step_name
        self.reason = reason


@dataclass
class StepReport:
    executed: List[str] = field(default_factory=list)
    satisfied: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)
    resumed_from: int = 0
    completed: bool = False
