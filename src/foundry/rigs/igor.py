# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/foundry/rigs/igor.py
#
# Igor: a scheduled GitHub Actions worker. Everything runs locally through
# git and the gh CLI against the operator's repository.
from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import List, Optional

import requests

from .registry import Rig, register
from ..cli import output
from ..config.models import FoundrySettings
from ..core.errors import RecoverableToolFailure
from ..prompts.interface import SKIPPED
from ..steps.models import Step, StepContext, StepKind

log = logging.getLogger("foundry")

UPSTREAM_WORKFLOW_URL = (
    "https://raw.githubusercontent.com/dimagi/open-chat-studio/main/.github/workflows/claude-incremental.yml"
)
WORKFLOW_PATH = Path(".github/workflows/claude-incremental.yml")
TEMPLATE_PATH = Path(".igor/issue-template.md")
LABEL = "claude-incremental"
LABEL_COLOR = "7057ff"
SECRET_NAME = "ANTHROPIC_API_KEY"

SAMPLE_ISSUE = """## Goal
Sample tracking issue for Igor. Replace this with your actual project goal.

## Context
This is a template issue created by the Igor installer. Edit it to describe your project.

## Tasks

### Task 1: Example task
- [ ] Task 1

Replace this with a real task description. Include file paths, expected behavior, and any relevant context.

## Learnings
<!-- Igor updates this section with discoveries -->
"""

_GITHUB_REMOTE = re.compile(r"github\.com[:/]([^/]+)/([^/\s]+?)(?:\.git)?/?$")


def parse_github_remote(url: str) -> Optional[str]:
    """owner/name from an https or ssh GitHub remote URL."""
    m = _GITHUB_REMOTE.search((url or "").strip())
    if not m:
        return None
    return f"{m.group(1)}/{m.group(2)}"


def _repo(ctx: StepContext) -> str:
    return ctx.session.target_resource_ref or ""


def _repo_root(ctx: StepContext) -> Path:
    if "repo_root" not in ctx.decisions:
        res = ctx.invoker.invoke("git", ["rev-parse", "--show-toplevel"]).raise_for_outcome()
        ctx.decisions["repo_root"] = Path(res.output.strip().splitlines()[-1])
    return ctx.decisions["repo_root"]


def _download(url: str, dest: Path) -> None:
    resp = requests.get(url, timeout=30)
    resp.raise_for_status()
    dest.parent.mkdir(parents=True, exist_ok=True)
    tmp = dest.with_name(dest.name + ".part")
    tmp.write_text(resp.text, encoding="utf-8")
    tmp.replace(dest)


# ------------------ steps ------------------

def _check_prereqs(ctx: StepContext) -> None:
    ctx.invoker.invoke("git", ["--version"]).raise_for_outcome()
    output.ok("git found")
    ctx.invoker.invoke("gh", ["--version"]).raise_for_outcome()
    output.ok("GitHub CLI (gh) found")
    auth = ctx.invoker.invoke("gh", ["auth", "status"])
    if not auth.ok:
        raise RecoverableToolFailure(
            "Not authenticated with GitHub CLI",
            command=auth.display_command,
            output=auth.display_output,
            remediation="gh auth login",
        )
    output.ok("Authenticated with GitHub")


def _repo_known(ctx: StepContext) -> bool:
    return bool(ctx.session.target_resource_ref)


def _resolve_repo(ctx: StepContext) -> None:
    repo = None
    remote = ctx.invoker.invoke("git", ["remote", "get-url", "origin"])
    detected = parse_github_remote(remote.output) if remote.ok else None
    if detected:
        output.hint(f"Detected repository: {detected}")
        if ctx.prompter.confirm("igor.use_detected", "Use this repository?", default=True):
            repo = detected
    if not repo:
        repo = ctx.prompter.ask("igor.repo", "Target repository (owner/name)").strip()
    if not re.fullmatch(r"[\w.-]+/[\w.-]+", repo or ""):
        raise RecoverableToolFailure(
            f"Not a repository name: {repo!r}",
            remediation="Use the owner/name form, e.g. octocat/hello-world",
        )

    ctx.invoker.invoke("gh", ["repo", "view", repo, "--json", "name"]).raise_for_outcome()
    ctx.session.target_resource_ref = repo
    output.ok(f"Repository {repo} verified")


def _files_present(ctx: StepContext) -> bool:
    return (_repo_root(ctx) / WORKFLOW_PATH).is_file()


def _download_files(ctx: StepContext) -> None:
    root = _repo_root(ctx)
    output.ok(f"In git repository root: {root}")

    try:
        _download(UPSTREAM_WORKFLOW_URL, root / WORKFLOW_PATH)
    except requests.RequestException as exc:
        raise RecoverableToolFailure(
            f"Could not download the workflow file: {exc}",
            command=f"GET {UPSTREAM_WORKFLOW_URL}",
            remediation=f"Download it by hand into {WORKFLOW_PATH}",
        ) from exc
    output.ok(f"Downloaded workflow from upstream -> {WORKFLOW_PATH}")

    template_url = f"{ctx.settings.rig_base_url}/igor/issue-template.md"
    try:
        _download(template_url, root / TEMPLATE_PATH)
        output.ok(f"Downloaded issue template -> {TEMPLATE_PATH}")
    except requests.RequestException as exc:
        log.warning("issue template download failed: %s", exc)
        output.warn("Could not download issue template (non-critical)")


def _secret_present(ctx: StepContext) -> bool:
    res = ctx.invoker.invoke("gh", ["secret", "list", "--repo", _repo(ctx)])
    return res.ok and re.search(rf"^{SECRET_NAME}\b", res.output, re.MULTILINE) is not None


def _set_api_key(ctx: StepContext) -> None:
    value = ctx.prompter.secret("igor.anthropic_api_key", "Anthropic API key")
    if value is SKIPPED:
        ctx.manual.append(
            f"{SECRET_NAME}: GitHub repo > Settings > Secrets and variables > Actions > New repository secret"
        )
        output.warn(f"Skipped. Set {SECRET_NAME} later in the repository's Actions secrets")
        return
    # value goes over stdin, never on the command line
    ctx.invoker.invoke(
        "gh",
        ["secret", "set", SECRET_NAME, "--repo", _repo(ctx)],
        input=value,
        secrets=[value],
    ).raise_for_outcome()
    ctx.configured.append(f"{SECRET_NAME} secret")
    output.ok(f"{SECRET_NAME} secret set")


def _label_present(ctx: StepContext) -> bool:
    res = ctx.invoker.invoke(
        "gh",
        ["label", "list", "--repo", _repo(ctx), "--search", LABEL, "--json", "name", "--jq", ".[].name"],
    )
    return res.ok and LABEL in res.output.split()


def _create_label(ctx: StepContext) -> None:
    ctx.invoker.invoke(
        "gh",
        [
            "label", "create", LABEL,
            "--repo", _repo(ctx),
            "--description", "Tracked by Igor incremental worker",
            "--color", LABEL_COLOR,
        ],
    ).raise_for_outcome()
    ctx.configured.append(f"'{LABEL}' label")
    output.ok(f"Created '{LABEL}' label")


def _configure_permissions(ctx: StepContext) -> None:
    repo = _repo(ctx)
    enable = ctx.invoker.invoke(
        "gh",
        ["api", "-X", "PUT", f"repos/{repo}/actions/permissions", "-f", "enabled=true", "-f", "allowed_actions=all"],
    )
    if not enable.ok:
        log.warning("enabling actions on %s: %s", repo, enable.outcome.value)

    res = ctx.invoker.invoke(
        "gh",
        [
            "api", "-X", "PUT", f"repos/{repo}/actions/permissions/workflow",
            "-f", "default_workflow_permissions=write",
            "-F", "can_approve_pull_request_reviews=true",
        ],
    )
    if not res.ok:
        raise RecoverableToolFailure(
            "Could not configure Actions permissions automatically",
            command=res.display_command,
            output=res.display_output,
            remediation=(
                f"https://github.com/{repo}/settings/actions: set 'Read and write permissions' and "
                "allow GitHub Actions to create and approve pull requests"
            ),
        )
    ctx.configured.append("Actions permissions (read-write + PR approval)")
    output.ok("Actions permissions configured")


def _sample_issue(ctx: StepContext) -> None:
    if not ctx.prompter.confirm("igor.sample_issue", "Create a sample Igor tracking issue?", default=False):
        output.ok(f"Skipped. Use {TEMPLATE_PATH} as a reference when creating issues.")
        return
    res = ctx.invoker.invoke(
        "gh",
        [
            "issue", "create",
            "--repo", _repo(ctx),
            "--title", "Igor: Sample Tracking Issue",
            "--body", SAMPLE_ISSUE,
            "--label", LABEL,
        ],
        expect=r"https?://",
    ).raise_for_outcome()
    ctx.configured.append("sample tracking issue")
    output.ok(f"Created sample issue: {res.output.strip().splitlines()[-1]}")


# ------------------ rig ------------------

def build_steps(settings: FoundrySettings) -> List[Step]:
    L, I = StepKind.LOCAL, StepKind.INTERACTIVE
    return [
        Step("check-prereqs", "Checking prerequisites", L, _check_prereqs),
        Step("resolve-repo", "Determining target repository", I, _resolve_repo, check=_repo_known),
        Step("download-files", "Downloading Igor rig files", L, _download_files, check=_files_present),
        Step("api-key-secret", f"Configuring {SECRET_NAME} secret", I, _set_api_key, check=_secret_present),
        Step("label", f"Creating '{LABEL}' label", L, _create_label, check=_label_present),
        Step("actions-permissions", "Configuring GitHub Actions permissions", L, _configure_permissions),
        Step("sample-issue", "Sample tracking issue", I, _sample_issue),
    ]


def epilogue(ctx: StepContext) -> List[str]:
    return [
        "Files added:",
        f"  {WORKFLOW_PATH}  (workflow from dimagi/open-chat-studio)",
        f"  {TEMPLATE_PATH}  (reference template)",
        "",
        "Next steps:",
        "  1. Commit and push the new files:",
        f"     git add {WORKFLOW_PATH} {TEMPLATE_PATH.parent}/",
        "     git commit -m 'Add Igor incremental worker'",
        "     git push",
        f"  2. Create tracking issues with the '{LABEL}' label",
        "  3. Igor runs daily at 2am UTC, or trigger it from GitHub > Actions > Igor > Run workflow",
    ]


RIG = register(
    Rig(
        name="igor",
        title="Igor: Incremental AI Worker",
        description="Configures a GitHub repository for the Igor Actions workflow using gh",
        build=build_steps,
        epilogue=epilogue,
    )
)
