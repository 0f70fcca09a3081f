# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/foundry/session/controller.py

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable, List, Optional

from ..checkpoint.models import ProvisioningSession
from ..checkpoint.store import CheckpointStore
from ..cli import output
from ..config.models import FoundrySettings
from ..observers.dispatcher import EventBus
from ..observers.events import SessionCompleted
from ..prompts.interface import Prompter
from ..remote.bridge import RemoteBridge
from ..rigs.registry import Rig
from ..steps.models import StepContext
from ..steps.sequencer import StepSequencer
from ..tools.invoker import ToolInvoker
from ..tools.patterns import build_tool_table

log = logging.getLogger("foundry")


@dataclass
class RunSummary:
    rig: str
    target: Optional[str] = None
    configured: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)
    manual: List[str] = field(default_factory=list)
    notes: List[str] = field(default_factory=list)


class SessionController:
    """
    Composition root for one provisioning run.

    Owns the checkpoint for the duration of the run (advisory lock), loads
    or creates the session, hands the rig's steps to the sequencer, and on
    completion clears the checkpoint and reports what was configured versus
    skipped. An interrupted or aborted run leaves the last checkpoint as-is.
    """

    def __init__(
        self,
        rig: Rig,
        store: CheckpointStore,
        prompter: Prompter,
        settings: Optional[FoundrySettings] = None,
        *,
        invoker: Optional[ToolInvoker] = None,
        bridge_factory: Optional[Callable[[], RemoteBridge]] = None,
        bus: Optional[EventBus] = None,
    ):
        self.rig = rig
        self.store = store
        self.prompter = prompter
        self.settings = settings or FoundrySettings()
        self.bus = bus or EventBus()
        self.invoker = invoker or ToolInvoker(
            build_tool_table(self.settings.tools),
            bus=self.bus,
            timeout=self.settings.command_timeout,
        )
        self.bridge_factory = bridge_factory or self._default_bridge

    def _default_bridge(self) -> RemoteBridge:
        s = self.settings
        return RemoteBridge(
            connect_timeout=s.connect_timeout,
            retries=s.connect_retries,
            retry_delay=s.connect_retry_delay,
            command_timeout=s.command_timeout,
            bus=self.bus,
        )

    # ------------------ session ------------------

    def _open_session(self, reset: bool) -> ProvisioningSession:
        if reset:
            self.store.clear()
            output.note("Checkpoint cleared. Starting fresh.")

        session = self.store.load()
        if session is not None and session.rig != self.rig.name:
            log.warning("checkpoint belongs to rig %s, not %s; starting over", session.rig, self.rig.name)
            session = None

        if session is None:
            session = self.store.new_session(self.rig.name, principal=self.settings.default_principal)
            self.store.save(session)
        return session

    def run(self, reset: bool = False) -> RunSummary:
        with self.store.lock():
            session = self._open_session(reset)
            self.bus.bind(rig=self.rig.name, session_id=session.session_id)

            output.banner(self.rig.title, self.rig.description)

            ctx = StepContext(
                session=session,
                settings=self.settings,
                prompter=self.prompter,
                invoker=self.invoker,
                bridge=self.bridge_factory() if self.rig.remote else None,
                checkpoint=lambda: self.store.save(session),
            )
            # a target from a previous run may no longer exist
            ctx.decisions["resumed_target"] = bool(session.target_host)

            sequencer = StepSequencer(self.rig.build(self.settings), self.store, self.prompter, self.bus)
            try:
                sequencer.run(ctx)
                notes = self.rig.epilogue(ctx) if self.rig.epilogue else []
            finally:
                if ctx.bridge is not None:
                    ctx.bridge.close()

            summary = RunSummary(
                rig=self.rig.name,
                target=session.target_host or session.target_resource_ref,
                configured=list(ctx.configured),
                skipped=list(session.skipped_steps),
                manual=list(ctx.manual),
                notes=notes,
            )
            # a finished session must not be resumed by a later, unrelated run
            self.store.clear()
            self.bus.emit(SessionCompleted(configured=summary.configured, skipped=summary.skipped))
            log.info("session complete: configured=%s skipped=%s", summary.configured, summary.skipped)

        print_summary(summary)
        return summary


def print_summary(summary: RunSummary) -> None:
    output.banner("Setup complete!", color="green")
    if summary.target:
        output.note(f"Target: {summary.target}")
    output.listing("Configured:", summary.configured or ["(nothing new)"])
    if summary.skipped:
        output.listing("Skipped steps:", summary.skipped)
    if summary.manual:
        output.listing("Finish these by hand:", summary.manual)
    if summary.notes:
        output.listing("Next:", summary.notes)
