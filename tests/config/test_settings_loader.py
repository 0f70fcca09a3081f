from pathlib import Path
import textwrap

import pytest
from pydantic import ValidationError

from foundry.config import loader
from foundry.config.loader import load_settings
from foundry.config.models import FoundrySettings


@pytest.fixture(autouse=True)
def _no_ambient_config(monkeypatch, tmp_path):
    monkeypatch.delenv("FOUNDRY_CONFIG", raising=False)
    monkeypatch.setattr(loader, "DEFAULT_CONFIG", tmp_path / "absent" / "config.yaml")


def test_defaults_without_any_file():
    s = load_settings()
    assert s == FoundrySettings()
    assert s.droplet.region == "nyc1"
    assert s.script_source == "bundled"
    assert "~" not in str(s.state_dir)


def test_load_settings_minimal_ok(tmp_path: Path, monkeypatch):
    monkeypatch.setenv("FOUNDRY_TEST_REGION", "sfo3")
    cfg_text = textwrap.dedent("""
        state_dir: ~/custom-foundry
        checkpoint_dir: %s
        connect_retries: 2
        droplet:
          region: ${FOUNDRY_TEST_REGION}
          ssh_key_ids: ["1234"]
        tools:
          - name: doctl
            executable: /opt/bin/doctl
    """ % (tmp_path / "ckpt"))
    f = tmp_path / "config.yaml"
    f.write_text(cfg_text)

    s = load_settings(f)

    assert s.connect_retries == 2
    assert s.droplet.region == "sfo3"
    assert s.droplet.ssh_key_ids == ["1234"]
    assert s.state_dir == Path("~/custom-foundry").expanduser()
    assert s.log_dir == s.state_dir / "logs"
    assert s.checkpoint_path("droplet") == tmp_path / "ckpt" / "foundry-droplet-checkpoint.json"
    assert s.tools[0].command == "/opt/bin/doctl"


def test_env_var_points_at_config(tmp_path: Path, monkeypatch):
    f = tmp_path / "other.yaml"
    f.write_text("ssh_port: 2222\n")
    monkeypatch.setenv("FOUNDRY_CONFIG", str(f))
    assert load_settings().ssh_port == 2222


def test_missing_explicit_config_is_an_error(tmp_path: Path):
    with pytest.raises(FileNotFoundError):
        load_settings(tmp_path / "nope.yaml")


def test_missing_env_config_is_an_error(tmp_path: Path, monkeypatch):
    monkeypatch.setenv("FOUNDRY_CONFIG", str(tmp_path / "nope.yaml"))
    with pytest.raises(FileNotFoundError):
        load_settings()


def test_script_source_must_be_bundled_or_url(tmp_path: Path):
    f = tmp_path / "config.yaml"
    f.write_text("script_source: /etc/passwd\n")
    with pytest.raises(ValidationError):
        load_settings(f)


def test_top_level_must_be_mapping(tmp_path: Path):
    f = tmp_path / "config.yaml"
    f.write_text("- a\n- b\n")
    with pytest.raises(ValueError):
        load_settings(f)


def test_empty_file_means_defaults(tmp_path: Path):
    f = tmp_path / "config.yaml"
    f.write_text("")
    assert load_settings(f) == FoundrySettings()
