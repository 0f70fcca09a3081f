import types

import pytest
import requests

from foundry.checkpoint.models import ProvisioningSession
from foundry.config.models import FoundrySettings
from foundry.core.errors import FatalToolFailure, RecoverableToolFailure
from foundry.observers.dispatcher import EventBus
from foundry.observers.events import ToolInvoked
from foundry.prompts.scripted import ScriptedPrompter
from foundry.rigs import igor, registry
from foundry.steps.models import StepContext
from foundry.tools.invoker import ToolInvoker

API_KEY = "sk-ant-api03-secretvalue"


class FakeRunner:
    where = "local"

    def __init__(self, responses=None):
        self.responses = responses or {}
        self.calls = []

    def run(self, argv, *, input=None, env=None, timeout=None):
        line = " ".join(argv)
        self.calls.append({"argv": list(argv), "line": line, "input": input})
        for needle, resp in self.responses.items():
            if needle in line:
                return resp
        return 0, ""

    def lines(self, needle):
        return [c for c in self.calls if needle in c["line"]]


def _ctx(answers=None, responses=None, repo="octo/hello", events=None):
    bus = EventBus([types.SimpleNamespace(notify=events.append)] if events is not None else [])
    runner = FakeRunner(responses)
    ctx = StepContext(
        session=ProvisioningSession(session_id="t", rig="igor", target_resource_ref=repo),
        settings=FoundrySettings(),
        prompter=ScriptedPrompter(answers or {}),
        invoker=ToolInvoker(runner=runner, bus=bus),
    )
    return ctx, runner


def _step(name):
    return {s.name: s for s in igor.build_steps(FoundrySettings())}[name]


@pytest.mark.parametrize("url,expected", [
    ("https://github.com/octo/hello.git", "octo/hello"),
    ("https://github.com/octo/hello", "octo/hello"),
    ("git@github.com:octo/hello.git\n", "octo/hello"),
    ("ssh://git@github.com/octo/hello.js.git", "octo/hello.js"),
    ("https://gitlab.com/octo/hello.git", None),
    ("", None),
])
def test_parse_github_remote(url, expected):
    assert igor.parse_github_remote(url) == expected


def test_registry_knows_both_rigs():
    names = [r.name for r in registry.available()]
    assert names == ["droplet", "igor"]
    assert registry.get("igor").remote is False
    with pytest.raises(KeyError) as exc:
        registry.get("nope")
    assert "droplet" in str(exc.value)


def test_prereqs_need_gh_login():
    ctx, _ = _ctx(responses={
        "gh auth status": (1, "You are not logged into any GitHub hosts. Run gh auth login to authenticate."),
    })
    with pytest.raises(RecoverableToolFailure) as exc:
        _step("check-prereqs").body(ctx)
    assert exc.value.remediation == "gh auth login"


def test_resolve_repo_from_origin():
    ctx, runner = _ctx(
        {"igor.use_detected": True},
        {"git remote get-url origin": (0, "git@github.com:octo/hello.git\n"), "gh repo view": (0, '{"name":"hello"}')},
        repo=None,
    )
    step = _step("resolve-repo")
    assert step.check(ctx) is False

    step.body(ctx)

    assert ctx.session.target_resource_ref == "octo/hello"
    assert runner.lines("gh repo view octo/hello")
    assert step.check(ctx) is True


def test_resolve_repo_rejects_bad_name():
    ctx, _ = _ctx({"igor.repo": "not a repo"}, {"git remote": (2, "error: No such remote 'origin'")}, repo=None)
    with pytest.raises(RecoverableToolFailure):
        _step("resolve-repo").body(ctx)
    assert ctx.session.target_resource_ref is None


def test_resolve_repo_missing_on_github_is_fatal():
    ctx, _ = _ctx(
        {"igor.repo": "octo/missing"},
        {"git remote": (2, "error: No such remote 'origin'"),
         "gh repo view": (1, "GraphQL: Could not resolve to a Repository with the name 'octo/missing'.")},
        repo=None,
    )
    with pytest.raises(FatalToolFailure):
        _step("resolve-repo").body(ctx)


def test_download_files_into_repo_root(tmp_path, monkeypatch):
    fetched = []

    def fake_get(url, timeout):
        fetched.append(url)
        return types.SimpleNamespace(text=f"# from {url}\n", raise_for_status=lambda: None)

    monkeypatch.setattr(igor.requests, "get", fake_get)
    ctx, _ = _ctx(responses={"rev-parse --show-toplevel": (0, f"{tmp_path}\n")})
    step = _step("download-files")
    assert step.check(ctx) is False

    step.body(ctx)

    assert (tmp_path / igor.WORKFLOW_PATH).read_text().startswith("# from https://")
    assert (tmp_path / igor.TEMPLATE_PATH).is_file()
    assert fetched[0] == igor.UPSTREAM_WORKFLOW_URL
    assert step.check(ctx) is True


def test_template_download_failure_is_only_a_warning(tmp_path, monkeypatch):
    def fake_get(url, timeout):
        if url.endswith("issue-template.md"):
            raise requests.ConnectionError("offline")
        return types.SimpleNamespace(text="name: Igor\n", raise_for_status=lambda: None)

    monkeypatch.setattr(igor.requests, "get", fake_get)
    ctx, _ = _ctx(responses={"rev-parse --show-toplevel": (0, f"{tmp_path}\n")})

    _step("download-files").body(ctx)

    assert (tmp_path / igor.WORKFLOW_PATH).is_file()
    assert not (tmp_path / igor.TEMPLATE_PATH).exists()


def test_api_key_goes_over_stdin_and_is_masked():
    events = []
    ctx, runner = _ctx({"igor.anthropic_api_key": API_KEY}, events=events)

    _step("api-key-secret").body(ctx)

    call = runner.lines("gh secret set ANTHROPIC_API_KEY")[0]
    assert call["input"] == API_KEY
    assert API_KEY not in call["line"]
    assert all(API_KEY not in e.command for e in events if isinstance(e, ToolInvoked))
    assert ctx.configured == ["ANTHROPIC_API_KEY secret"]


def test_api_key_skipped_goes_to_manual_list():
    ctx, runner = _ctx({"igor.anthropic_api_key": ""})
    _step("api-key-secret").body(ctx)
    assert not runner.lines("gh secret set")
    assert ctx.manual and ctx.manual[0].startswith("ANTHROPIC_API_KEY")


def test_api_key_already_present_satisfies_check():
    ctx, _ = _ctx(responses={"gh secret list": (0, "ANTHROPIC_API_KEY\tUpdated 2026-10-01\n")})
    assert _step("api-key-secret").check(ctx) is True


def test_existing_label_satisfies_check():
    ctx, _ = _ctx(responses={"gh label list": (0, "claude-incremental\n")})
    assert _step("label").check(ctx) is True


def test_label_race_already_exists_is_success():
    ctx, _ = _ctx(responses={"gh label create": (1, "label with name \"claude-incremental\" already exists; use `--force`")})
    _step("label").body(ctx)
    assert ctx.configured == ["'claude-incremental' label"]


def test_actions_permissions_failure_points_at_settings_page():
    ctx, _ = _ctx(responses={"permissions/workflow": (1, "HTTP 403: Resource not accessible by integration")})
    with pytest.raises(RecoverableToolFailure) as exc:
        _step("actions-permissions").body(ctx)
    assert "https://github.com/octo/hello/settings/actions" in exc.value.remediation


def test_sample_issue_declined():
    ctx, runner = _ctx({"igor.sample_issue": False})
    _step("sample-issue").body(ctx)
    assert not runner.lines("gh issue create")


def test_sample_issue_created():
    ctx, runner = _ctx(
        {"igor.sample_issue": True},
        {"gh issue create": (0, "https://github.com/octo/hello/issues/7\n")},
    )
    _step("sample-issue").body(ctx)
    assert "--label" in runner.lines("gh issue create")[0]["argv"]
    assert ctx.configured == ["sample tracking issue"]
