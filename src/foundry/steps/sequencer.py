# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/foundry/steps/sequencer.py

from __future__ import annotations

import logging
import time
from typing import Dict, List, Optional, Sequence

from .models import RewindTo, Step, StepContext, StepKind, StepReport
from ..checkpoint.store import CheckpointStore
from ..core.errors import (
    AmbiguousOutcome,
    AuthRejected,
    FatalToolFailure,
    FoundryError,
    RecoverableToolFailure,
    SessionAborted,
    Unreachable,
)
from ..observers.dispatcher import EventBus
from ..observers.events import (
    CheckpointSaved,
    SessionStarted,
    SessionStopped,
    StepFailed,
    StepSatisfied,
    StepSkipped,
    StepStarted,
    StepSucceeded,
)
from ..prompts.interface import Prompter

log = logging.getLogger("foundry")

# failures the operator can do something about without restarting
RECOVERABLE = (RecoverableToolFailure, AmbiguousOutcome, Unreachable, AuthRejected)

FAILURE_CHOICES = [
    ("retry", "Retry this step"),
    ("skip", "Skip it and continue"),
    ("abort", "Abort (progress is saved; re-run to resume here)"),
]


def _category(exc: BaseException) -> str:
    if isinstance(exc, AmbiguousOutcome):
        return "ambiguous"
    if isinstance(exc, FatalToolFailure):
        return "fatal"
    if isinstance(exc, (Unreachable, AuthRejected)):
        return "connection"
    if isinstance(exc, RecoverableToolFailure):
        return "recoverable"
    return "error"


class StepSequencer:
    """
    Runs an ordered list of steps, resuming after the last completed one.

      - a step's index + 1 is saved before the next step starts
      - a satisfied check counts as done, the body is not run
      - recoverable and ambiguous failures ask: retry, skip or abort
      - fatal failures stop the session without advancing
      - Ctrl-C propagates; whatever was saved stays saved
    """

    def __init__(
        self,
        steps: Sequence[Step],
        store: CheckpointStore,
        prompter: Prompter,
        bus: Optional[EventBus] = None,
    ):
        self.steps: List[Step] = list(steps)
        for i, s in enumerate(self.steps):
            s.index = i
        self._by_name: Dict[str, Step] = {s.name: s for s in self.steps}
        if len(self._by_name) != len(self.steps):
            raise ValueError("step names must be unique")
        self.store = store
        self.prompter = prompter
        self.bus = bus or EventBus()

    def index_of(self, name: str) -> int:
        try:
            return self._by_name[name].index
        except KeyError:
            raise ValueError(f"unknown step {name!r}") from None

    # ------------------ persistence ------------------

    def _save(self, ctx: StepContext) -> None:
        self.store.save(ctx.session)
        self.bus.emit(CheckpointSaved(step=ctx.session.current_step))

    # ------------------ main loop ------------------

    def run(self, ctx: StepContext) -> StepReport:
        total = len(self.steps)
        resume = min(max(ctx.session.current_step, 0), total)
        report = StepReport(resumed_from=resume)

        self.bus.emit(
            SessionStarted(
                resume_step=resume,
                total_steps=total,
                target=ctx.session.target_host,
            )
        )
        log.info("sequence start: %d steps, resuming at %d", total, resume)

        i = 0
        while i < total:
            step = self.steps[i]
            try:
                if i < resume:
                    if step.reverify:
                        self._attempt(step, ctx, report, advance=False)
                else:
                    self._attempt(step, ctx, report, advance=True)
            except RewindTo as rw:
                target = self.index_of(rw.step_name)
                log.info("rewinding to %s: %s", rw.step_name, rw.reason)
                ctx.session.current_step = min(ctx.session.current_step, target)
                self.store.save(ctx.session)
                resume = target
                i = target
                continue
            except KeyboardInterrupt:
                self.bus.emit(SessionStopped(step=step.name, reason="interrupted"))
                raise
            except SessionAborted as exc:
                self.bus.emit(SessionStopped(step=step.name, reason=str(exc)))
                raise
            i += 1

        report.completed = True
        return report

    def _attempt(self, step: Step, ctx: StepContext, report: StepReport, *, advance: bool) -> None:
        """
        Run one step until it succeeds, is skipped, or the session stops.
        With advance=False (re-verification behind the resume point) the
        checkpoint is left alone.
        """
        total = len(self.steps)
        if not advance and step.check is not None and self._safe_check(step, ctx):
            return

        self.bus.emit(
            StepStarted(index=step.index, total=total, name=step.name, title=step.title, kind=step.kind.value)
        )

        while True:
            try:
                if step.kind is StepKind.REMOTE:
                    # remote checks go through the bridge; a dropped link is reopened first
                    ctx.ensure_connected()
                if step.check is not None and step.check(ctx):
                    self.bus.emit(StepSatisfied(index=step.index, name=step.name))
                    report.satisfied.append(step.name)
                else:
                    t0 = time.time()
                    step.body(ctx)
                    duration_ms = int((time.time() - t0) * 1000)
                    self.bus.emit(StepSucceeded(index=step.index, name=step.name, duration_ms=duration_ms))
                    report.executed.append(step.name)
                break
            except FatalToolFailure as exc:
                self._failed(step, exc)
                raise SessionAborted(
                    f"{step.title} failed and cannot be recovered automatically",
                    command=exc.command,
                    output=exc.output,
                    remediation=exc.remediation,
                ) from exc
            except RECOVERABLE as exc:
                self._failed(step, exc)
                choice = self.prompter.choose(f"failure.{step.name}", "What would you like to do?", FAILURE_CHOICES)
                if choice == "retry":
                    log.info("retrying step %s", step.name)
                    continue
                if choice == "skip":
                    self._skip(step, ctx, report, reason=str(exc), save=advance)
                    return
                raise SessionAborted(
                    f"Aborted at step {step.index + 1}/{total} ({step.title})",
                    remediation="Re-run the same command to resume from this step",
                ) from exc

        if advance:
            ctx.session.clear_skipped(step.name)
            ctx.session.advance_to(step.index + 1)
            self._save(ctx)

    def _safe_check(self, step: Step, ctx: StepContext) -> bool:
        try:
            return bool(step.check(ctx))
        except FoundryError as exc:
            log.debug("re-verify check for %s raised %s; running the step", step.name, exc)
            return False

    def _skip(self, step: Step, ctx: StepContext, report: StepReport, *, reason: str, save: bool) -> None:
        # skipping records the step but does not move current_step
        ctx.session.mark_skipped(step.name)
        report.skipped.append(step.name)
        self.bus.emit(StepSkipped(index=step.index, name=step.name, reason=reason))
        if save:
            self.store.save(ctx.session)

    def _failed(self, step: Step, exc: FoundryError) -> None:
        log.error("step %s failed: %s", step.name, exc)
        self.bus.emit(
            StepFailed(
                index=step.index,
                name=step.name,
                error=str(exc),
                category=_category(exc),
                command=exc.command,
                output=exc.output,
                remediation=exc.remediation,
            )
        )
