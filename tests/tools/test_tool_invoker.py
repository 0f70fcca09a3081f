import subprocess

import pytest

from foundry.core.errors import AmbiguousOutcome, FatalToolFailure, RecoverableToolFailure
from foundry.observers.dispatcher import EventBus
from foundry.observers.events import ToolInvoked
from foundry.tools.invoker import LocalRunner, ToolInvoker, classify
from foundry.tools.models import MASK, Outcome, PatternRule, ToolSpec
from foundry.tools.patterns import build_tool_table


class DummyCP:
    def __init__(self, rc=0, out="", err=""):
        self.returncode = rc
        self.stdout = out
        self.stderr = err


class FakeRunner:
    """Scripted (rc, output) per call; records argv, stdin and env."""

    where = "fake"

    def __init__(self, *results):
        self.results = list(results)
        self.calls = []

    def run(self, argv, *, input=None, env=None, timeout=None):
        self.calls.append({"argv": list(argv), "input": input, "env": env, "timeout": timeout})
        return self.results.pop(0) if self.results else (0, "")


class Recorder:
    def __init__(self):
        self.events = []

    def notify(self, event):
        self.events.append(event)


def test_local_runner_passes_argv_stdin_and_env(monkeypatch):
    calls = []

    def fake_run(argv, **kw):
        calls.append((argv, kw))
        return DummyCP(0, "out", "err")

    monkeypatch.setattr(subprocess, "run", fake_run)
    rc, output = LocalRunner().run(["gh", "secret", "set", "X"], input="v", env={"A": "1"}, timeout=5)

    assert rc == 0
    assert output == "outerr"
    argv, kw = calls[0]
    assert argv == ["gh", "secret", "set", "X"]
    assert kw["input"] == "v"
    assert kw["env"]["A"] == "1"
    assert kw["timeout"] == 5
    assert kw["check"] is False


def test_missing_executable_is_recoverable_with_install_hint(monkeypatch):
    def fake_run(argv, **kw):
        raise FileNotFoundError(2, "No such file", argv[0])

    monkeypatch.setattr(subprocess, "run", fake_run)
    res = ToolInvoker().invoke("doctl", ["version"])

    assert res.returncode == 127
    assert res.outcome is Outcome.RECOVERABLE
    assert "docs.digitalocean.com" in res.remediation


def test_timeout_uses_tool_timeout_outcome(monkeypatch):
    def fake_run(argv, **kw):
        raise subprocess.TimeoutExpired(argv, kw["timeout"])

    monkeypatch.setattr(subprocess, "run", fake_run)
    res = ToolInvoker().invoke("openclaw", ["chat"], timeout=30)

    assert res.returncode == 124
    assert res.outcome is Outcome.RECOVERABLE


def test_already_exists_is_normalized_to_success():
    runner = FakeRunner((1, "label with name \"claude-incremental\" already exists; use `--force`"))
    res = ToolInvoker(runner=runner).invoke("gh", ["label", "create", "claude-incremental"])
    assert res.ok
    assert res.raise_for_outcome() is res


def test_openclaw_already_configured_is_success():
    runner = FakeRunner((1, "Telegram channel already configured"))
    res = ToolInvoker(runner=runner).invoke("openclaw", ["channels", "add", "--channel", "telegram"])
    assert res.outcome is Outcome.SUCCESS


def test_unrecognized_nonzero_output_is_ambiguous():
    runner = FakeRunner((3, "something nobody has seen before"))
    res = ToolInvoker(runner=runner).invoke("doctl", ["compute", "droplet", "list"])

    assert res.outcome is Outcome.AMBIGUOUS
    assert not res.ok
    with pytest.raises(AmbiguousOutcome) as exc:
        res.raise_for_outcome()
    assert exc.value.command == "doctl compute droplet list"
    assert "nobody has seen" in exc.value.output


def test_zero_exit_without_expected_output_is_ambiguous():
    runner = FakeRunner((0, "   \n"))
    res = ToolInvoker(runner=runner).invoke("openclaw", ["chat"], expect=r"\S")
    assert res.outcome is Outcome.AMBIGUOUS


def test_error_in_output_is_recoverable_even_with_zero_exit():
    runner = FakeRunner((0, "Error: no API key configured"))
    res = ToolInvoker(runner=runner).invoke("openclaw", ["chat"], expect=r"\S")
    assert res.outcome is Outcome.RECOVERABLE
    assert res.remediation == "openclaw onboard"
    with pytest.raises(RecoverableToolFailure):
        res.raise_for_outcome()


@pytest.mark.parametrize("reply", [
    "No error here, hello friend!\n",
    "Hello from room 401\n",
    "Unauthorized visitors? Hello anyway.\n",
])
def test_chat_reply_mentioning_error_words_is_success(reply):
    runner = FakeRunner((0, reply))
    res = ToolInvoker(runner=runner).invoke("openclaw", ["chat"], expect=r"\S")
    assert res.outcome is Outcome.SUCCESS
    assert res.remediation is None


def test_error_words_still_fail_a_nonzero_exit():
    runner = FakeRunner((1, "gateway: request failed with 401 Unauthorized\n"), (1, "fatal error in gateway\n"))
    inv = ToolInvoker(runner=runner)

    first = inv.invoke("openclaw", ["chat"])
    second = inv.invoke("openclaw", ["status"])

    assert (first.outcome, first.remediation) == (Outcome.RECOVERABLE, "openclaw onboard")
    assert (second.outcome, second.remediation) == (Outcome.RECOVERABLE, "openclaw logs --follow")


def test_nonzero_rule_is_ignored_on_zero_exit():
    spec = ToolSpec(
        name="thing",
        rules=[PatternRule(pattern=r"warning", outcome=Outcome.RECOVERABLE, nonzero=True)],
    )
    assert classify(spec, 0, "warning: cache is cold")[0] is Outcome.SUCCESS
    assert classify(spec, 2, "warning: cache is cold")[0] is Outcome.RECOVERABLE


def test_fatal_rule_raises_fatal():
    runner = FakeRunner((1, "Error: droplet limit exceeded for this team"))
    res = ToolInvoker(runner=runner).invoke("doctl", ["compute", "droplet", "create", "x"])
    assert res.outcome is Outcome.FATAL
    with pytest.raises(FatalToolFailure):
        res.raise_for_outcome()


def test_droplet_ids_do_not_look_like_auth_errors():
    runner = FakeRunner((0, "340140123   openclaw   203.0.113.10\n"))
    res = ToolInvoker(runner=runner).invoke("doctl", ["compute", "droplet", "list"])
    assert res.ok


def test_exit_code_scoped_rule_only_applies_to_its_codes():
    spec = ToolSpec(name="t", rules=[PatternRule(pattern="boom", outcome=Outcome.FATAL, exit_codes=[2])])
    assert classify(spec, 1, "boom")[0] is Outcome.AMBIGUOUS
    assert classify(spec, 2, "boom")[0] is Outcome.FATAL


def test_invoker_never_retries():
    runner = FakeRunner((1, "unknown failure"), (0, "ok"))
    inv = ToolInvoker(runner=runner)
    res = inv.invoke("gh", ["issue", "create"])
    assert not res.ok
    assert len(runner.calls) == 1


def test_secrets_are_masked_in_display_and_events():
    rec = Recorder()
    runner = FakeRunner((1, "bad token 123:ABC rejected, 401"))
    inv = ToolInvoker(runner=runner, bus=EventBus([rec]))
    res = inv.invoke(
        "openclaw",
        ["channels", "add", "--channel", "telegram", "--token", "123:ABC"],
        secrets=["123:ABC"],
    )

    assert "123:ABC" in runner.calls[0]["argv"]
    assert "123:ABC" not in res.display_command
    assert MASK in res.display_command
    assert "123:ABC" not in res.display_output
    ev = [e for e in rec.events if isinstance(e, ToolInvoked)][0]
    assert "123:ABC" not in ev.command
    with pytest.raises(RecoverableToolFailure) as exc:
        res.raise_for_outcome()
    assert "123:ABC" not in exc.value.command
    assert "123:ABC" not in exc.value.output


def test_on_switches_runner_but_keeps_table():
    first, second = FakeRunner(), FakeRunner((1, "already exists"))
    inv = ToolInvoker(runner=first)
    remote = inv.on(second)
    assert remote.tools is inv.tools
    assert remote.invoke("gcloud", ["x"]).ok
    assert not first.calls


def test_configured_overrides_go_in_front_of_defaults():
    table = build_tool_table([
        ToolSpec(
            name="openclaw",
            executable="/opt/openclaw/bin/openclaw",
            rules=[PatternRule(pattern="error: rate limited", outcome=Outcome.FATAL)],
        )
    ])
    spec = table["openclaw"]
    assert spec.command == "/opt/openclaw/bin/openclaw"
    assert classify(spec, 1, "error: rate limited")[0] is Outcome.FATAL
    # defaults survive behind the override
    assert classify(spec, 1, "already linked")[0] is Outcome.SUCCESS
    # other tools untouched
    assert table["gh"].command == "gh"


def test_unknown_tool_gets_a_default_spec():
    runner = FakeRunner((0, "fine"), (5, "odd"))
    inv = ToolInvoker(runner=runner)
    assert inv.invoke("whatever").ok
    assert inv.invoke("whatever").outcome is Outcome.AMBIGUOUS
