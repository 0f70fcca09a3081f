# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/foundry/config/loader.py

import logging
import os
from pathlib import Path

import yaml

from .models import FoundrySettings

log = logging.getLogger("foundry")

DEFAULT_CONFIG = Path("~/.foundry/config.yaml")


def _load_yaml(path: Path) -> dict:
    """Load a YAML file, expanding ${ENV_VAR} references."""
    raw = path.read_text()
    expanded = os.path.expandvars(raw)
    return yaml.safe_load(expanded) or {}


def find_config(path: str | Path | None = None) -> Path | None:
    """
    Locate the settings file using this priority:

    1. explicit path (--config); must exist
    2. FOUNDRY_CONFIG environment variable; must exist
    3. ~/.foundry/config.yaml, if present
    """
    if path:
        p = Path(path).expanduser()
        if not p.is_file():
            raise FileNotFoundError(f"config file not found: {p}")
        return p

    env = os.environ.get("FOUNDRY_CONFIG")
    if env:
        p = Path(env).expanduser()
        if not p.is_file():
            raise FileNotFoundError(f"FOUNDRY_CONFIG={env} does not exist")
        return p

    p = DEFAULT_CONFIG.expanduser()
    if p.is_file():
        return p
    return None


def load_settings(path: str | Path | None = None) -> FoundrySettings:
    """
    Load and validate foundry settings. With no file anywhere, the
    defaults are used as-is.
    """
    found = find_config(path)
    if found is None:
        log.debug("No config file found, using defaults")
        return FoundrySettings()

    log.debug("Loading settings from %s", found)
    data = _load_yaml(found)
    if not isinstance(data, dict):
        raise ValueError(f"{found}: expected a mapping at the top level")
    return FoundrySettings.model_validate(data)
