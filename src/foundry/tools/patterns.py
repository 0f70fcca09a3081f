# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/foundry/tools/patterns.py
#
# Output patterns per external CLI. Anything a naive exit-code check would
# get wrong lives here and nowhere else.
from __future__ import annotations

from typing import Dict, Iterable, List, Optional

from .models import Outcome, PatternRule, ToolSpec

R = PatternRule

DEFAULT_TOOLS: List[ToolSpec] = [
    ToolSpec(
        name="doctl",
        rules=[
            R(pattern=r"unable to authenticate|\b401\b|invalid.*token", outcome=Outcome.RECOVERABLE, exit_codes=[1],
              remediation="https://cloud.digitalocean.com/account/api/tokens"),
            R(pattern=r"already exists", outcome=Outcome.SUCCESS),
            R(pattern=r"droplet limit|exceed", outcome=Outcome.FATAL, exit_codes=[1],
              remediation="https://cloud.digitalocean.com/account/team/droplet_limit_increase"),
        ],
        install_hint="https://docs.digitalocean.com/reference/doctl/how-to/install/",
    ),
    ToolSpec(
        name="gh",
        rules=[
            R(pattern=r"already exists|name already taken", outcome=Outcome.SUCCESS),
            R(pattern=r"not logged in|gh auth login|authentication required", outcome=Outcome.RECOVERABLE,
              remediation="gh auth login"),
            R(pattern=r"HTTP 403|Resource not accessible", outcome=Outcome.RECOVERABLE,
              remediation="https://docs.github.com/en/actions/security-guides/automatic-token-authentication"),
            R(pattern=r"Could not resolve to a Repository|HTTP 404", outcome=Outcome.FATAL),
        ],
        install_hint="https://cli.github.com/",
    ),
    ToolSpec(
        name="openclaw",
        rules=[
            R(pattern=r"already (exists|configured|linked)", outcome=Outcome.SUCCESS),
            # a diagnostic line fails the call even when openclaw exits 0
            R(pattern=r"^\s*error:.*(api key|unauthori[sz]ed|\b401\b)", outcome=Outcome.RECOVERABLE,
              remediation="openclaw onboard"),
            R(pattern=r"^\s*error:", outcome=Outcome.RECOVERABLE, remediation="openclaw logs --follow"),
            # anywhere else these words are only trusted on a failed exit
            R(pattern=r"api key|unauthori[sz]ed|\b401\b", outcome=Outcome.RECOVERABLE, nonzero=True,
              remediation="openclaw onboard"),
            R(pattern=r"\berror\b", outcome=Outcome.RECOVERABLE, nonzero=True,
              remediation="openclaw logs --follow"),
            R(pattern=r"command not found", outcome=Outcome.RECOVERABLE, exit_codes=[127],
              remediation="curl -fsSL https://openclaw.ai/install.sh | bash"),
        ],
        remediation="https://docs.openclaw.ai",
    ),
    ToolSpec(
        name="tailscale",
        rules=[
            R(pattern=r"Logged out|NeedsLogin|not logged in", outcome=Outcome.RECOVERABLE,
              remediation="tailscale up"),
            R(pattern=r"failed to connect to local tailscaled", outcome=Outcome.RECOVERABLE,
              remediation="systemctl start tailscaled"),
        ],
        install_hint="curl -fsSL https://tailscale.com/install.sh | sh",
    ),
    ToolSpec(
        name="gcloud",
        rules=[
            R(pattern=r"You do not currently have an active account|No credentialed accounts",
              outcome=Outcome.RECOVERABLE, remediation="gcloud auth login --no-browser"),
            R(pattern=r"already exists", outcome=Outcome.SUCCESS),
        ],
        install_hint="https://cloud.google.com/sdk/docs/install",
    ),
    ToolSpec(
        name="gog",
        rules=[
            R(pattern=r"not authenticated|no token", outcome=Outcome.RECOVERABLE,
              remediation="gog auth --no-browser"),
        ],
        install_hint="https://github.com/steipete/gogcli/releases",
    ),
    ToolSpec(
        name="ssh",
        # `ssh -V` prints its version on stderr
        expect=r"OpenSSH|ssh",
        install_hint="Install an OpenSSH client (apt install openssh-client, brew install openssh)",
    ),
    ToolSpec(
        name="git",
        rules=[
            R(pattern=r"not a git repository", outcome=Outcome.RECOVERABLE,
              remediation="cd into your repository and re-run"),
            R(pattern=r"No such remote", outcome=Outcome.RECOVERABLE,
              remediation="git remote add origin <url>"),
        ],
        on_nonzero=Outcome.RECOVERABLE,
    ),
]


def build_tool_table(overrides: Optional[Iterable[ToolSpec]] = None) -> Dict[str, ToolSpec]:
    """
    Merge configured overrides in front of the defaults: override rules are
    tried first, scalar fields replace the default's when set.
    """
    table: Dict[str, ToolSpec] = {t.name: t.model_copy(deep=True) for t in DEFAULT_TOOLS}
    for o in overrides or []:
        base = table.get(o.name)
        if base is None:
            table[o.name] = o
            continue
        merged = base.model_copy(deep=True)
        merged.rules = list(o.rules) + list(base.rules)
        for f in ("executable", "expect", "remediation", "install_hint"):
            v = getattr(o, f)
            if v is not None:
                setattr(merged, f, v)
        if "on_nonzero" in o.model_fields_set:
            merged.on_nonzero = o.on_nonzero
        if "on_timeout" in o.model_fields_set:
            merged.on_timeout = o.on_timeout
        table[o.name] = merged
    return table
