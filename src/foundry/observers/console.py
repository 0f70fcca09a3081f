# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/foundry/observers/console.py
from __future__ import annotations

from .events import (
    BaseEvent,
    CheckpointSaved,
    SessionStarted,
    StepFailed,
    StepSatisfied,
    StepSkipped,
    StepStarted,
)
from ..cli import output


class ConsoleObserver:
    """Renders step lifecycle events as operator narration."""

    def notify(self, event: BaseEvent) -> None:
        if isinstance(event, SessionStarted):
            if event.resume_step > 0:
                output.hint(f"Resuming from step {event.resume_step + 1}/{event.total_steps}")
                if event.target:
                    output.hint(f"Target: {event.target}")
                output.hint("Run with --reset to start fresh")
        elif isinstance(event, StepStarted):
            output.step(f"Step {event.index + 1}/{event.total}: {event.title}")
        elif isinstance(event, StepSatisfied):
            output.ok("Already done, nothing to change")
        elif isinstance(event, StepSkipped):
            output.warn(f"Skipped {event.name}: {event.reason}")
        elif isinstance(event, StepFailed):
            output.failure(
                event.error,
                command=event.command,
                output=event.output,
                remediation=event.remediation,
            )
        elif isinstance(event, CheckpointSaved):
            output.ok(f"Progress saved (step: {event.step})")
