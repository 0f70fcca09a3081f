# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/foundry/remote/runner.py
from __future__ import annotations

import shlex
from typing import Mapping, Optional, Sequence, Tuple

from .bridge import RemoteBridge
from ..tools.invoker import NOT_FOUND_RC


class RemoteRunner:
    """
    Lets ToolInvoker run a CLI on the target host: same classification
    table, the command just travels through the bridge.
    """

    where = "remote"

    def __init__(self, bridge: RemoteBridge):
        self.bridge = bridge

    def run(
        self,
        argv: Sequence[str],
        *,
        input: Optional[str] = None,
        env: Optional[Mapping[str, str]] = None,
        timeout: Optional[float] = None,
    ) -> Tuple[int, str]:
        cmd = shlex.join(argv)
        if timeout:
            # coreutils timeout exits 124, which the invoker reads as a timeout
            cmd = f"timeout {int(timeout)} {cmd}"
        if env:
            exports = " ".join(f"{k}={shlex.quote(str(v))}" for k, v in env.items())
            cmd = f"env {exports} {cmd}"
        # the invoker logs the masked command line; arguments may carry secrets
        rc, out, err = self.bridge.run(cmd, input=input, log_as=f"{argv[0]} [{len(argv) - 1} args]")
        output = out + err
        if rc == NOT_FOUND_RC and "not found" not in output:
            output += f"\n{argv[0]}: command not found"
        return rc, output
