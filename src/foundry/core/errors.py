# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/foundry/core/errors.py
from __future__ import annotations

from typing import Optional


class FoundryError(RuntimeError):
    """
    Base class for provisioning failures.

    Every failure carries enough for the operator to act on it:
      - command:     the exact external command that failed (secrets masked)
      - output:      what it printed
      - remediation: a command to run or a URL to follow
    """

    def __init__(
        self,
        message: str,
        *,
        command: Optional[str] = None,
        output: str = "",
        remediation: Optional[str] = None,
    ):
        super().__init__(message)
        self.command = command
        self.output = output
        self.remediation = remediation


class Unreachable(FoundryError):
    """Target host could not be contacted. Retryable."""


class AuthRejected(FoundryError):
    """Target host refused the credentials. Never retried automatically."""


class RecoverableToolFailure(FoundryError):
    """Tool failed in a way that has a documented manual fallback."""


class FatalToolFailure(FoundryError):
    """Tool failed with no known fallback; the session must stop here."""


class AmbiguousOutcome(FoundryError):
    """Tool output matched no known pattern. Treated as a failure."""


class SessionAborted(FoundryError):
    """Operator chose to abort, or a fatal failure ended the session."""


class CheckpointLocked(FoundryError):
    """Another orchestrator process owns the checkpoint."""
