# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/foundry/tools/models.py
from __future__ import annotations

import shlex
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Sequence

from pydantic import BaseModel, Field

from ..core.errors import (
    AmbiguousOutcome,
    FatalToolFailure,
    RecoverableToolFailure,
)


class Outcome(str, Enum):
    SUCCESS = "success"
    RECOVERABLE = "recoverable-failure"
    FATAL = "fatal-failure"
    AMBIGUOUS = "ambiguous"


class PatternRule(BaseModel):
    """
    One row of a tool's classification table.

    `pattern` is a regex searched (case-insensitive) in the combined
    stdout/stderr. `exit_codes` narrows the rule to specific return codes;
    `nonzero` to any failed exit.
    """

    pattern: str
    outcome: Outcome
    exit_codes: Optional[List[int]] = None
    nonzero: bool = False
    remediation: Optional[str] = None


class ToolSpec(BaseModel):
    name: str
    executable: Optional[str] = None          # defaults to `name`
    rules: List[PatternRule] = Field(default_factory=list)
    expect: Optional[str] = None              # rc=0 must also match this, else ambiguous
    on_nonzero: Outcome = Outcome.AMBIGUOUS   # unmatched non-zero exit
    on_timeout: Outcome = Outcome.RECOVERABLE
    remediation: Optional[str] = None
    install_hint: Optional[str] = None

    @property
    def command(self) -> str:
        return self.executable or self.name


MASK = "<redacted>"


def mask(text: str, secrets: Sequence[str]) -> str:
    for s in secrets:
        if s:
            text = text.replace(s, MASK)
    return text


@dataclass
class ToolResult:
    tool: str
    argv: List[str]
    returncode: int
    output: str
    outcome: Outcome
    remediation: Optional[str] = None
    secrets: Sequence[str] = field(default_factory=tuple, repr=False)

    @property
    def ok(self) -> bool:
        return self.outcome is Outcome.SUCCESS

    @property
    def display_command(self) -> str:
        return mask(shlex.join(self.argv), self.secrets)

    @property
    def display_output(self) -> str:
        return mask(self.output, self.secrets)

    def raise_for_outcome(self) -> "ToolResult":
        if self.outcome is Outcome.SUCCESS:
            return self
        exc_cls = {
            Outcome.RECOVERABLE: RecoverableToolFailure,
            Outcome.FATAL: FatalToolFailure,
            Outcome.AMBIGUOUS: AmbiguousOutcome,
        }[self.outcome]
        raise exc_cls(
            f"{self.tool} failed (rc={self.returncode}, {self.outcome.value})",
            command=self.display_command,
            output=self.display_output,
            remediation=self.remediation,
        )
