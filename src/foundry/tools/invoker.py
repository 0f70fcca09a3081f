# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/foundry/tools/invoker.py
from __future__ import annotations

import logging
import os
import re
import subprocess
from typing import Dict, List, Mapping, Optional, Protocol, Sequence, Tuple

from .models import Outcome, ToolResult, ToolSpec, mask
from .patterns import build_tool_table
from ..observers.dispatcher import EventBus
from ..observers.events import ToolInvoked

log = logging.getLogger("foundry")

# coreutils `timeout` convention, used by both runners
TIMEOUT_RC = 124
NOT_FOUND_RC = 127


class CommandRunner(Protocol):
    """Runs an argv somewhere and returns (rc, combined output)."""

    where: str

    def run(
        self,
        argv: Sequence[str],
        *,
        input: Optional[str] = None,
        env: Optional[Mapping[str, str]] = None,
        timeout: Optional[float] = None,
    ) -> Tuple[int, str]: ...


class LocalRunner:
    """
    subprocess on the operator's machine. Testable by mocking subprocess.run.
    """

    where = "local"

    def run(
        self,
        argv: Sequence[str],
        *,
        input: Optional[str] = None,
        env: Optional[Mapping[str, str]] = None,
        timeout: Optional[float] = None,
    ) -> Tuple[int, str]:
        full_env = None
        if env:
            full_env = dict(os.environ)
            full_env.update(env)
        try:
            cp = subprocess.run(
                list(argv),
                input=input,
                text=True,
                capture_output=True,
                env=full_env,
                timeout=timeout,
                check=False,
            )
        except FileNotFoundError as exc:
            return NOT_FOUND_RC, f"{argv[0]}: command not found ({exc})"
        except subprocess.TimeoutExpired as exc:
            partial = exc.stdout or ""
            if isinstance(partial, bytes):
                partial = partial.decode("utf-8", "replace")
            return TIMEOUT_RC, partial + f"\n{argv[0]}: timed out after {timeout}s"
        return cp.returncode, (cp.stdout or "") + (cp.stderr or "")


def classify(
    spec: ToolSpec,
    returncode: int,
    output: str,
    *,
    expect: Optional[str] = None,
) -> Tuple[Outcome, Optional[str]]:
    """
    Classification order:
      1. missing executable  -> recoverable, remediation = install hint
      2. timeout             -> spec.on_timeout
      3. first matching pattern rule (may turn a non-zero exit into success)
      4. rc == 0             -> success, unless an expected pattern is absent
      5. anything else       -> spec.on_nonzero (ambiguous by default)
    """
    remediation = spec.remediation

    if returncode == NOT_FOUND_RC and "not found" in output:
        return Outcome.RECOVERABLE, spec.install_hint or f"Install {spec.command} and re-run"

    if returncode == TIMEOUT_RC:
        return spec.on_timeout, remediation

    for rule in spec.rules:
        if rule.exit_codes is not None and returncode not in rule.exit_codes:
            continue
        if rule.nonzero and returncode == 0:
            continue
        if re.search(rule.pattern, output, re.IGNORECASE | re.MULTILINE):
            return rule.outcome, rule.remediation or remediation

    if returncode == 0:
        wanted = expect or spec.expect
        if wanted and not re.search(wanted, output, re.IGNORECASE | re.MULTILINE):
            return Outcome.AMBIGUOUS, remediation
        return Outcome.SUCCESS, None

    return spec.on_nonzero, remediation


class ToolInvoker:
    """
    Uniform entry point for every third-party CLI.

    Never retries: retrying a resource-creating call blindly can create the
    resource twice, so retry policy stays with the calling step.
    """

    def __init__(
        self,
        tools: Optional[Dict[str, ToolSpec]] = None,
        runner: Optional[CommandRunner] = None,
        bus: Optional[EventBus] = None,
        timeout: Optional[float] = None,
    ):
        self.tools = tools if tools is not None else build_tool_table()
        self.runner = runner or LocalRunner()
        self.bus = bus or EventBus()
        self.timeout = timeout

    def on(self, runner: CommandRunner) -> "ToolInvoker":
        """Same classification table, different place to run."""
        return ToolInvoker(self.tools, runner=runner, bus=self.bus, timeout=self.timeout)

    def spec(self, tool_name: str) -> ToolSpec:
        return self.tools.get(tool_name) or ToolSpec(name=tool_name)

    def invoke(
        self,
        tool_name: str,
        args: Sequence[str] = (),
        *,
        input: Optional[str] = None,
        env: Optional[Mapping[str, str]] = None,
        timeout: Optional[float] = None,
        expect: Optional[str] = None,
        secrets: Sequence[str] = (),
    ) -> ToolResult:
        spec = self.spec(tool_name)
        argv: List[str] = [spec.command, *args]
        shown = mask(" ".join(argv), secrets)
        log.debug("[%s] $ %s", self.runner.where, shown)

        rc, output = self.runner.run(
            argv, input=input, env=env, timeout=timeout or self.timeout
        )
        outcome, remediation = classify(spec, rc, output, expect=expect)

        result = ToolResult(
            tool=tool_name,
            argv=argv,
            returncode=rc,
            output=output,
            outcome=outcome,
            remediation=remediation,
            secrets=tuple(secrets),
        )
        log.debug("[%s] %s -> rc=%s %s", self.runner.where, tool_name, rc, outcome.value)
        self.bus.emit(
            ToolInvoked(
                tool=tool_name,
                where=self.runner.where,
                command=result.display_command,
                returncode=rc,
                outcome=outcome.value,
            )
        )
        return result
