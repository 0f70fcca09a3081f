import logging
from pathlib import Path

import pytest
from typer.testing import CliRunner

from foundry.checkpoint.store import FileCheckpointStore
from foundry.cli.app import app
from foundry.config.loader import load_settings
from foundry.core.errors import SessionAborted
from foundry.session.controller import SessionController

runner = CliRunner()


@pytest.fixture
def config(tmp_path: Path, monkeypatch) -> Path:
    monkeypatch.delenv("FOUNDRY_CONFIG", raising=False)
    f = tmp_path / "config.yaml"
    f.write_text(f"state_dir: {tmp_path / 'state'}\ncheckpoint_dir: {tmp_path / 'ckpt'}\n")
    yield f
    # CliRunner swaps stderr; drop handlers bound to it
    logger = logging.getLogger("foundry")
    for h in list(logger.handlers):
        h.close()
    logger.handlers.clear()


def _store(config: Path, rig: str = "droplet") -> FileCheckpointStore:
    return FileCheckpointStore(load_settings(config).checkpoint_path(rig))


def test_rigs_lists_both_rigs(config):
    result = runner.invoke(app, ["rigs", "--config", str(config)])
    assert result.exit_code == 0
    assert "droplet: OpenClaw on DigitalOcean" in result.output
    assert "igor:" in result.output
    assert "[remote-delegated]" in result.output


def test_status_without_session(config):
    result = runner.invoke(app, ["status", "droplet", "--config", str(config)])
    assert result.exit_code == 0
    assert "No droplet session in progress." in result.output


def test_status_shows_progress_and_target(config):
    store = _store(config)
    session = store.new_session("droplet")
    session.current_step = 3
    session.target_host = "203.0.113.4"
    session.target_resource_ref = "987654321"
    store.save(session)

    result = runner.invoke(app, ["status", "--config", str(config)])

    assert result.exit_code == 0
    assert "Progress   : 3/" in result.output
    assert "root@203.0.113.4" in result.output
    assert "987654321" in result.output


def test_reset_clears_only_that_rig(config):
    droplet, igor = _store(config, "droplet"), _store(config, "igor")
    droplet.save(droplet.new_session("droplet"))
    igor.save(igor.new_session("igor"))

    result = runner.invoke(app, ["reset", "droplet", "--config", str(config)])

    assert result.exit_code == 0
    assert "Checkpoint cleared for droplet." in result.output
    assert not droplet.path.exists()
    assert igor.path.exists()


def test_unknown_rig_is_a_usage_error(config):
    result = runner.invoke(app, ["status", "nosuchrig", "--config", str(config)])
    assert result.exit_code == 2


def test_bad_config_exits_one(tmp_path: Path):
    f = tmp_path / "config.yaml"
    f.write_text("script_source: ftp://example.com/x.sh\n")
    result = runner.invoke(app, ["status", "--config", str(f)])
    assert result.exit_code == 1
    assert "Could not load settings" in result.output


def test_run_passes_reset_through(config, monkeypatch):
    seen = {}

    def fake_run(self, reset=False):
        seen["rig"] = self.rig.name
        seen["reset"] = reset

    monkeypatch.setattr(SessionController, "run", fake_run)
    result = runner.invoke(app, ["run", "igor", "--reset", "--config", str(config)])

    assert result.exit_code == 0
    assert seen == {"rig": "igor", "reset": True}
    assert "Run ID" in result.output


def test_run_abort_exits_one_with_resume_hint(config, monkeypatch):
    def fake_run(self, reset=False):
        raise SessionAborted("Aborted at step 3/10 (Uploading)", remediation="Re-run to resume")

    monkeypatch.setattr(SessionController, "run", fake_run)
    result = runner.invoke(app, ["run", "droplet", "--config", str(config)])

    assert result.exit_code == 1
    assert "foundry run droplet" in result.output


def test_run_interrupt_exits_130(config, monkeypatch):
    def fake_run(self, reset=False):
        raise KeyboardInterrupt

    monkeypatch.setattr(SessionController, "run", fake_run)
    result = runner.invoke(app, ["run", "--config", str(config)])

    assert result.exit_code == 130
    assert "Interrupted" in result.output


def test_run_writes_event_log(config, monkeypatch):
    monkeypatch.setattr(SessionController, "run", lambda self, reset=False: None)
    runner.invoke(app, ["run", "igor", "--config", str(config)])
    logs = load_settings(config).log_dir
    assert list(logs.glob("foundry-*.log"))
