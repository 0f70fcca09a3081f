# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/foundry/rigs/droplet.py
#
# OpenClaw on a DigitalOcean droplet: local checks, target resolution,
# remote bootstrap through the bridge, smoke test, then optional channels.
from __future__ import annotations

import hashlib
import logging
import re
import shlex
from typing import List, Optional, Tuple

from .registry import Rig, register
from .renderer import done_marker, load_bootstrap_script
from ..cli import output
from ..config.models import FoundrySettings
from ..core.errors import (
    AmbiguousOutcome,
    RecoverableToolFailure,
    SessionAborted,
    Unreachable,
)
from ..prompts.interface import SKIPPED
from ..steps.models import RewindTo, Step, StepContext, StepKind
from ..tools.models import Outcome, ToolResult

log = logging.getLogger("foundry")

# small droplets run out of heap otherwise
NODE_OPTIONS = {"NODE_OPTIONS": "--max-old-space-size=768"}
CONTROL_UI_PORT = 18789
SMOKE_PROMPT = "Say hello in exactly 3 words\n"
DROPLET_FORMAT = ["--format", "ID,Name,PublicIPv4", "--no-header"]

FEATURES = [
    ("whatsapp", "WhatsApp (requires a dedicated phone number)"),
    ("telegram", "Telegram (requires a bot token from @BotFather)"),
    ("gmail", "Gmail (requires a Google Cloud project)"),
]

MANUAL = {
    "whatsapp": "openclaw channels login --channel whatsapp",
    "telegram": "openclaw channels add --channel telegram --token <TOKEN>",
    "gmail": "openclaw webhooks gmail setup --account <EMAIL>",
}

DOCS = {
    "whatsapp": "https://docs.openclaw.ai/channels/whatsapp",
    "telegram": "https://docs.openclaw.ai/channels/telegram",
    "gmail": "https://docs.openclaw.ai/automation/gmail-pubsub",
}


def _tail(text: str, lines: int = 15) -> str:
    return "\n".join((text or "").rstrip().splitlines()[-lines:])


def _label(ctx: StepContext) -> str:
    return f"{ctx.session.target_principal}@{ctx.session.target_host}"


# ------------------ 1: local prerequisites ------------------

def _check_local_prereqs(ctx: StepContext) -> None:
    ctx.invoker.invoke("ssh", ["-V"]).raise_for_outcome()
    output.ok("ssh available")

    key = ctx.settings.ssh_key_path
    if key is not None:
        if not key.is_file():
            raise RecoverableToolFailure(
                f"SSH key not found: {key}",
                remediation="ssh-keygen -t ed25519, or fix ssh_key_path in your config",
            )
        output.ok(f"SSH key {key}")


# ------------------ 2: target ------------------

def _target_known(ctx: StepContext) -> bool:
    return bool(ctx.session.target_host)


def _resolve_target(ctx: StepContext) -> None:
    how = ctx.prompter.choose(
        "droplet.target",
        "Where should OpenClaw run?",
        [
            ("create", "Create a new DigitalOcean droplet (or reuse one made by doctl)"),
            ("existing", "Use an existing host (enter its IP address)"),
        ],
    )
    if how != "create" or not _create_or_reuse_droplet(ctx):
        _enter_existing_host(ctx)
    ctx.decisions["resumed_target"] = False
    output.ok(f"Target: {_label(ctx)}")


def _enter_existing_host(ctx: StepContext) -> None:
    host = ctx.prompter.ask("droplet.host", "Droplet IP address").strip()
    if not host:
        raise RecoverableToolFailure(
            "No IP address provided",
            remediation="Find the public IPv4 at https://cloud.digitalocean.com/droplets",
        )
    user = ctx.prompter.ask("droplet.user", "SSH username", default=ctx.settings.default_principal)
    ctx.session.target_host = host
    ctx.session.target_principal = user.strip() or ctx.settings.default_principal
    ctx.session.target_resource_ref = None


def _do_token(ctx: StepContext) -> Optional[str]:
    token = ctx.secrets.get("digitalocean")
    if token:
        return token
    output.note("Create a token at https://cloud.digitalocean.com/account/api/tokens")
    value = ctx.prompter.secret("droplet.do_token", "DigitalOcean API token")
    if value is SKIPPED:
        output.warn("No token given, falling back to an existing host")
        output.note("Create a droplet at https://cloud.digitalocean.com/droplets/new, then enter its IP")
        return None
    ctx.secrets["digitalocean"] = value
    return value


def _doctl(ctx: StepContext, token: str, args: List[str]) -> ToolResult:
    return ctx.invoker.invoke(
        "doctl",
        args,
        env={"DIGITALOCEAN_ACCESS_TOKEN": token},
        secrets=[token],
    )


def parse_droplets(text: str) -> List[Tuple[str, str, str]]:
    """Rows of `doctl ... --format ID,Name,PublicIPv4 --no-header`."""
    rows = []
    for line in (text or "").splitlines():
        parts = line.split()
        if len(parts) >= 2 and parts[0].isdigit():
            rows.append((parts[0], parts[1], parts[2] if len(parts) > 2 else ""))
    return rows


def _create_or_reuse_droplet(ctx: StepContext) -> bool:
    """
    Never creates twice: a droplet id already recorded for this session is
    looked up first, then droplets with the configured name. Returns False
    when the operator skipped the token.
    """
    token = _do_token(ctx)
    if token is None:
        return False

    d = ctx.settings.droplet
    session = ctx.session
    row = None

    if session.target_resource_ref:
        res = _doctl(ctx, token, ["compute", "droplet", "get", session.target_resource_ref, *DROPLET_FORMAT])
        if res.ok:
            rows = parse_droplets(res.output)
            row = rows[0] if rows else None
        elif re.search(r"\b404\b|not found", res.output, re.IGNORECASE):
            output.warn(f"Droplet {session.target_resource_ref} no longer exists")
            session.target_resource_ref = None
        else:
            res.raise_for_outcome()

    name = d.name
    if row is None:
        listed = _doctl(ctx, token, ["compute", "droplet", "list", *DROPLET_FORMAT]).raise_for_outcome()
        same_name = [r for r in parse_droplets(listed.output) if r[1] == d.name]
        if same_name:
            found = same_name[0]
            if ctx.prompter.confirm(
                "droplet.reuse",
                f"A droplet named {d.name} already exists (id {found[0]}, ip {found[2] or 'pending'}). Use it?",
                default=True,
            ):
                row = found
            else:
                name = ctx.prompter.ask("droplet.name", "Name for the new droplet", default=f"{d.name}-2")

    if row is None:
        args = [
            "compute", "droplet", "create", name,
            "--region", d.region,
            "--size", d.size,
            "--image", d.image,
            "--wait",
            *DROPLET_FORMAT,
        ]
        if d.ssh_key_ids:
            args += ["--ssh-keys", ",".join(d.ssh_key_ids)]
        output.note(f"Creating droplet {name} ({d.size} in {d.region}), this takes a minute...")
        created = _doctl(ctx, token, args).raise_for_outcome()
        rows = parse_droplets(created.output)
        if not rows:
            raise AmbiguousOutcome(
                "doctl did not report the new droplet",
                command=created.display_command,
                output=created.display_output,
                remediation="doctl compute droplet list",
            )
        row = rows[0]

    droplet_id, _, ip = row
    session.target_resource_ref = droplet_id
    session.target_principal = "root"
    # record the id before anything else can fail, so a retry reuses it
    ctx.checkpoint()
    output.ok(f"Droplet {droplet_id}")

    if not ip:
        raise RecoverableToolFailure(
            f"Droplet {droplet_id} has no public IPv4 address yet",
            remediation=f"doctl compute droplet get {droplet_id}",
        )
    session.target_host = ip
    return True


# ------------------ 3: connect ------------------

def _connected(ctx: StepContext) -> bool:
    return ctx.bridge is not None and ctx.bridge.connected


def _connect(ctx: StepContext) -> None:
    s = ctx.session
    target = ctx.session_target()
    if target is None:
        raise RewindTo("resolve-target", "no target recorded")
    output.note(f"Connecting to {target.label}...")
    while True:
        try:
            ctx.bridge.connect(target)
            output.ok("SSH connection verified")
            return
        except Unreachable as exc:
            if not ctx.decisions.get("resumed_target"):
                raise
            output.failure(str(exc), command=exc.command, remediation=exc.remediation)
            choice = ctx.prompter.choose(
                "droplet.stale_target",
                f"{target.label} was saved by an earlier run and is not answering.",
                [
                    ("retry", "Try again"),
                    ("replace", "Use a different host (choose the target again)"),
                    ("abort", "Abort (progress is saved)"),
                ],
            )
            if choice == "retry":
                continue
            if choice == "replace":
                if s.target_resource_ref:
                    hint = f"doctl compute droplet delete {s.target_resource_ref}"
                    output.warn(f"Droplet {s.target_resource_ref} ({target.host}) is still running and billed")
                    output.note(f"Delete it once you no longer need it: {hint}")
                    ctx.manual.append(f"old droplet {s.target_resource_ref}: {hint}")
                    log.warning("forgetting droplet %s at %s", s.target_resource_ref, target.host)
                s.forget_target()
                ctx.decisions["resumed_target"] = False
                raise RewindTo("resolve-target", f"{target.label} unreachable")
            raise SessionAborted(
                f"{target.label} is unreachable",
                remediation="Re-run to try again, or run with --reset to start over",
            ) from exc


# ------------------ 4/5: remote bootstrap ------------------

def _script(ctx: StepContext) -> str:
    if "bootstrap_script" not in ctx.decisions:
        ctx.decisions["bootstrap_script"] = load_bootstrap_script(ctx.settings)
    return ctx.decisions["bootstrap_script"]


def _uploaded(ctx: StepContext) -> bool:
    want = hashlib.sha256(_script(ctx).encode("utf-8")).hexdigest()
    return ctx.require_bridge().sha256(ctx.settings.remote_script_path) == want


def _upload(ctx: StepContext) -> None:
    path = ctx.settings.remote_script_path
    ctx.require_bridge().transfer(_script(ctx), path)
    output.ok(f"Setup script uploaded to {path}")


def _bootstrapped(ctx: StepContext) -> bool:
    return ctx.require_bridge().file_exists(done_marker(ctx.settings))


def _run_bootstrap(ctx: StepContext) -> None:
    path = ctx.settings.remote_script_path
    output.hint("The setup will now run on the host. This may take several minutes.")
    output.hint("If interrupted, run foundry again to resume.")
    output.note()

    result = ctx.require_bridge().execute(path, interactive=True)
    # exit 0 is the whole contract; sub-step progress is the script's business
    if not result.ok:
        raise RecoverableToolFailure(
            f"Setup on the host exited with status {result.exit_status}",
            command=f"bash {path}",
            output=_tail(result.output),
            remediation=(
                "Retry to resume; the host remembers finished sub-steps in "
                f"{ctx.settings.remote_checkpoint_path}"
            ),
        )
    output.ok("Host setup finished")


# ------------------ 6: verify ------------------

def _smoke_test(ctx: StepContext) -> ToolResult:
    remote = ctx.remote
    if not remote.invoke("openclaw", ["status"]).ok:
        output.warn("OpenClaw service may not be running, trying to start it")
        remote.invoke("openclaw", ["gateway", "start"])
    output.note("Testing with a simple prompt...")
    return remote.invoke(
        "openclaw",
        ["chat"],
        input=SMOKE_PROMPT,
        env=NODE_OPTIONS,
        timeout=ctx.settings.smoke_test_timeout,
        expect=r"\S",
    )


def _verify(ctx: StepContext) -> None:
    res = _smoke_test(ctx)
    if not res.ok and res.outcome is not Outcome.FATAL:
        output.warn("OpenClaw test failed or timed out")
        output.note("This usually means the API key is not configured.")
        if ctx.prompter.confirm("droplet.reonboard", "Run openclaw onboard now to set the API key?", default=True):
            ctx.require_bridge().stream("openclaw onboard", interactive=True, env=NODE_OPTIONS)
            output.note("Testing again...")
            res = _smoke_test(ctx)
    res.raise_for_outcome()
    reply = res.display_output.strip().splitlines()
    output.ok(f"OpenClaw responded: {reply[-1] if reply else ''}")


# ------------------ 7..10: channels ------------------

def _features_chosen(ctx: StepContext) -> bool:
    return "features" in ctx.decisions


def _select_features(ctx: StepContext) -> None:
    picked = ctx.prompter.choose_many(
        "droplet.features",
        "Which channels would you like to set up?",
        FEATURES,
    )
    ctx.decisions["features"] = picked
    if not picked:
        output.ok("No channels for now")


def _selected(ctx: StepContext, feature: str) -> bool:
    if feature in ctx.decisions.get("features", []):
        return True
    output.note("Not selected")
    return False


def _manual(ctx: StepContext, feature: str, why: str) -> None:
    cmd = MANUAL[feature]
    ctx.manual.append(f"{feature}: {cmd}  ({DOCS[feature]})")
    output.warn(f"{why}; later run on the host: {cmd}")


def _whatsapp(ctx: StepContext) -> None:
    if not _selected(ctx, "whatsapp"):
        return
    output.note("You'll need a dedicated phone number for WhatsApp.")
    output.note("Options: Google Voice (free, US), prepaid SIM, or Twilio")
    output.note("A QR code will appear. Scan it with WhatsApp on your dedicated phone")
    output.note("(Settings > Linked Devices > Link a Device)")
    if not ctx.prompter.confirm("droplet.whatsapp_ready", "Ready to link WhatsApp?", default=True):
        _manual(ctx, "whatsapp", "Skipped")
        return

    cmd = MANUAL["whatsapp"]
    result = ctx.require_bridge().stream(cmd, interactive=True, env=NODE_OPTIONS)
    if not result.ok:
        raise RecoverableToolFailure(
            f"WhatsApp login exited with status {result.exit_status}",
            command=cmd,
            output=_tail(result.output),
            remediation=DOCS["whatsapp"],
        )
    ctx.configured.append("WhatsApp")
    output.ok("WhatsApp linked")


def _telegram(ctx: StepContext) -> None:
    if not _selected(ctx, "telegram"):
        return
    token = ctx.secrets.get("telegram")
    if not token:
        output.note("To create a Telegram bot:")
        output.note("1. Open Telegram and message @BotFather")
        output.note("2. Send /newbot and choose a name and username")
        output.note("3. Copy the bot token (format: 123456789:ABCdef...)")
        value = ctx.prompter.secret("droplet.telegram_token", "Telegram bot token")
        if value is SKIPPED:
            _manual(ctx, "telegram", "No token given")
            return
        token = ctx.secrets["telegram"] = value

    ctx.remote.invoke(
        "openclaw",
        ["channels", "add", "--channel", "telegram", "--token", token],
        env=NODE_OPTIONS,
        secrets=[token],
    ).raise_for_outcome()
    ctx.configured.append("Telegram")
    output.ok("Telegram bot configured. Message it on Telegram to test.")


def _gmail(ctx: StepContext) -> None:
    if not _selected(ctx, "gmail"):
        return
    bridge = ctx.require_bridge()
    remote = ctx.remote

    output.note("Gmail setup requires a Google Cloud project with the Gmail and")
    output.note("Pub/Sub APIs enabled, and Tailscale connected for the webhook.")

    acct = remote.invoke("gcloud", ["auth", "list", "--filter=status:ACTIVE", "--format=value(account)"])
    if acct.ok and "@" in acct.output:
        output.ok(f"gcloud already authenticated as {acct.output.split()[0]}")
    else:
        output.note("gcloud will print a 'gcloud auth login --remote-bootstrap=...' command.")
        output.note("Run it on your LOCAL machine, sign in, then paste its output back here.")
        ctx.prompter.pause("droplet.gcloud_ready", "Press Enter when ready...")
        r = bridge.stream("gcloud auth login --no-browser", interactive=True)
        if not r.ok:
            raise RecoverableToolFailure(
                "gcloud authentication failed",
                command="gcloud auth login --no-browser",
                output=_tail(r.output),
                remediation="https://cloud.google.com/sdk/docs/authorizing",
            )
        output.ok("gcloud authenticated")

    proj = remote.invoke("gcloud", ["config", "get-value", "project"])
    lines = proj.output.strip().splitlines() if proj.ok else []
    current = lines[-1].strip() if lines else ""
    if current in ("", "(unset)") or not ctx.prompter.confirm(
        "droplet.gcp_use_current", f"Use Google Cloud project {current}?", default=True
    ):
        project = ctx.prompter.ask("droplet.gcp_project", "GCP project ID").strip()
        remote.invoke("gcloud", ["config", "set", "project", project]).raise_for_outcome()
        output.ok(f"Project set to {project}")

    if remote.invoke("gog", ["auth", "status"]).ok:
        output.ok("gog already authenticated")
    else:
        ctx.prompter.pause("droplet.gog_ready", "gog needs OAuth access to Gmail. Press Enter to continue...")
        r = bridge.stream("gog auth --no-browser", interactive=True)
        if not r.ok:
            raise RecoverableToolFailure(
                "gog authentication failed",
                command="gog auth --no-browser",
                output=_tail(r.output),
                remediation="gog auth status",
            )
        output.ok("gog authenticated")

    if not remote.invoke("tailscale", ["status"]).ok:
        output.warn("Tailscale is not connected; the Gmail webhook needs it")
        ctx.manual.append("tailscale: tailscale up")

    account = ctx.prompter.ask("droplet.gmail_account", "Gmail address for your assistant", default="").strip()
    if not account:
        _manual(ctx, "gmail", "No address given")
        return
    cmd = f"openclaw webhooks gmail setup --account {shlex.quote(account)}"
    r = bridge.stream(cmd, interactive=True, env=NODE_OPTIONS)
    if not r.ok:
        raise RecoverableToolFailure(
            f"Gmail webhook setup exited with status {r.exit_status}",
            command=cmd,
            output=_tail(r.output),
            remediation=DOCS["gmail"],
        )
    ctx.configured.append("Gmail")
    output.ok("Gmail webhook configured")


# ------------------ rig ------------------

def build_steps(settings: FoundrySettings) -> List[Step]:
    L, R, I = StepKind.LOCAL, StepKind.REMOTE, StepKind.INTERACTIVE
    return [
        Step("check-local-prereqs", "Checking local prerequisites", L, _check_local_prereqs),
        Step("resolve-target", "Droplet connection details", I, _resolve_target, check=_target_known),
        Step("connect", "Testing SSH connection", L, _connect, check=_connected, reverify=True),
        Step("upload-bootstrap", "Uploading setup script", R, _upload, check=_uploaded),
        Step("run-bootstrap", "Running setup on the host", R, _run_bootstrap, check=_bootstrapped),
        Step("verify", "Verifying OpenClaw", R, _verify),
        Step("select-features", "Channel setup", I, _select_features, check=_features_chosen, reverify=True),
        Step("whatsapp", "WhatsApp", R, _whatsapp),
        Step("telegram", "Telegram", R, _telegram),
        Step("gmail", "Gmail", R, _gmail),
    ]


def epilogue(ctx: StepContext) -> List[str]:
    s = ctx.session
    label = f"{s.target_principal}@{s.target_host}"
    return [
        f"Host: {s.target_host}" + (f" (droplet {s.target_resource_ref})" if s.target_resource_ref else ""),
        "",
        "Access the Control UI from your local machine:",
        f"  ssh -L {CONTROL_UI_PORT}:localhost:{CONTROL_UI_PORT} {label}",
        f"  Then open: http://localhost:{CONTROL_UI_PORT}",
        "",
        "Quick commands (on the host):",
        "  openclaw status",
        "  echo 'Hello' | openclaw chat",
        "  openclaw logs --follow",
        "",
        "Add more channels later:",
        *[f"  {MANUAL[k]}" for k, _ in FEATURES],
        "",
        "Documentation: https://docs.openclaw.ai",
    ]


RIG = register(
    Rig(
        name="droplet",
        title="OpenClaw on DigitalOcean",
        description="Local installer that provisions a droplet over SSH and configures OpenClaw channels",
        build=build_steps,
        remote=True,
        epilogue=epilogue,
    )
)
