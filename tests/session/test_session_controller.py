import types

import pytest

from foundry.checkpoint.store import FileCheckpointStore, MemoryCheckpointStore
from foundry.config.models import FoundrySettings
from foundry.core.errors import CheckpointLocked, RecoverableToolFailure, SessionAborted
from foundry.observers.dispatcher import EventBus
from foundry.observers.events import SessionCompleted, SessionStarted
from foundry.prompts.scripted import ScriptedPrompter
from foundry.rigs.registry import Rig
from foundry.session.controller import SessionController
from foundry.steps.models import Step, StepKind


def _rig(calls, fail_at=None, remote=False):
    """Three local steps; optionally one that keeps failing recoverably."""

    def body(name):
        def _run(ctx):
            calls.append(name)
            if name == fail_at:
                raise RecoverableToolFailure(f"{name} broke")
            if name == "second":
                ctx.configured.append("Thing")
                ctx.session.target_host = "203.0.113.9"
        return _run

    return Rig(
        name="demo",
        title="Demo rig",
        description="for tests",
        build=lambda settings: [
            Step("first", "First", StepKind.LOCAL, body("first")),
            Step("second", "Second", StepKind.LOCAL, body("second")),
            Step("third", "Third", StepKind.LOCAL, body("third")),
        ],
        remote=remote,
        epilogue=lambda ctx: ["all done"],
    )


def _controller(rig, store, prompter=None, events=None, **kw):
    bus = EventBus([types.SimpleNamespace(notify=events.append)] if events is not None else [])
    return SessionController(rig, store, prompter or ScriptedPrompter(), FoundrySettings(), bus=bus, **kw)


def test_completed_run_clears_checkpoint_and_reports(capsys):
    store = MemoryCheckpointStore()
    calls, events = [], []

    summary = _controller(_rig(calls), store, events=events).run()

    assert calls == ["first", "second", "third"]
    assert store.raw is None
    assert summary.configured == ["Thing"]
    assert summary.target == "203.0.113.9"
    assert summary.notes == ["all done"]
    assert any(isinstance(e, SessionCompleted) for e in events)
    assert all(e.session_id == "memory" for e in events if isinstance(e, SessionStarted))
    out = capsys.readouterr().out
    assert "Setup complete!" in out
    assert "Thing" in out


def test_aborted_run_keeps_checkpoint_for_resume():
    store = MemoryCheckpointStore()
    calls = []
    prompter = ScriptedPrompter({"failure.second": "abort"})

    with pytest.raises(SessionAborted):
        _controller(_rig(calls, fail_at="second"), store, prompter).run()

    saved = store.load()
    assert saved.rig == "demo"
    assert saved.current_step == 1

    calls.clear()
    _controller(_rig(calls), store).run()
    assert calls == ["second", "third"]


def test_reset_starts_from_scratch():
    store = MemoryCheckpointStore()
    session = store.new_session("demo")
    session.current_step = 2
    store.save(session)
    calls = []

    _controller(_rig(calls), store).run(reset=True)

    assert calls == ["first", "second", "third"]


def test_checkpoint_of_another_rig_is_ignored():
    store = MemoryCheckpointStore()
    other = store.new_session("igor")
    other.current_step = 5
    store.save(other)
    calls = []

    _controller(_rig(calls), store).run()

    assert calls == ["first", "second", "third"]


def test_second_controller_cannot_take_the_lock(tmp_path):
    path = tmp_path / "foundry-demo-checkpoint.json"
    holder = FileCheckpointStore(path)
    calls = []

    with holder.lock():
        with pytest.raises(CheckpointLocked):
            _controller(_rig(calls), FileCheckpointStore(path)).run()

    assert calls == []


def test_remote_rig_bridge_is_closed_even_on_abort():
    store = MemoryCheckpointStore()
    closed = []
    bridge = types.SimpleNamespace(connected=False, close=lambda: closed.append(True))
    prompter = ScriptedPrompter({"failure.first": "abort"})

    with pytest.raises(SessionAborted):
        _controller(_rig([], fail_at="first", remote=True), store, prompter, bridge_factory=lambda: bridge).run()

    assert closed == [True]
