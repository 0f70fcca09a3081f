# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/foundry/rigs/renderer.py

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, Optional

import requests
from jinja2 import Environment, FileSystemLoader, StrictUndefined

from ..config.models import FoundrySettings
from ..core.errors import RecoverableToolFailure

log = logging.getLogger("foundry")

TEMPLATES_DIR = Path(__file__).parent / "templates"

FOUNDRY_VERSION = "0.3.0"
BOOTSTRAP_VERSION = "1.2.0"


class TemplateRenderer:
    def __init__(self, templates_dir: Path = TEMPLATES_DIR):
        # bash scripts, not HTML; a missing variable is a bug, not an empty string
        self.env = Environment(
            loader=FileSystemLoader(str(templates_dir)),
            autoescape=False,
            undefined=StrictUndefined,
            keep_trailing_newline=True,
        )

    def render(self, template_name: str, context: Dict[str, Any]) -> str:
        tmpl = self.env.get_template(template_name)
        return tmpl.render(**context)


def bootstrap_context(settings: FoundrySettings) -> Dict[str, Any]:
    return {
        "foundry_version": FOUNDRY_VERSION,
        "script_version": BOOTSTRAP_VERSION,
        "script_path": settings.remote_script_path,
        "checkpoint_path": settings.remote_checkpoint_path,
        "marker_path": done_marker(settings),
        "ubuntu_version": "24.04",
        "swap_threshold_mb": 2048,
        "swap_size": "2G",
        "node_major": 22,
        "node_heap_mb": 768,
        "gog_version": "0.9.0",
    }


def done_marker(settings: FoundrySettings) -> str:
    """Written by the bootstrap script once every sub-step has finished."""
    return f"{settings.remote_checkpoint_path}.done"


def load_bootstrap_script(
    settings: FoundrySettings,
    renderer: Optional[TemplateRenderer] = None,
    session: Optional[requests.Session] = None,
) -> str:
    """
    The script body to upload: rendered from the bundled template, or
    fetched as-is from `script_source` when that is a URL.
    """
    if settings.script_source == "bundled":
        return (renderer or TemplateRenderer()).render("droplet-setup.sh.j2", bootstrap_context(settings))

    url = settings.script_source
    http = session or requests.Session()
    log.debug("fetching bootstrap script from %s", url)
    try:
        resp = http.get(url, timeout=30)
        resp.raise_for_status()
    except requests.RequestException as exc:
        raise RecoverableToolFailure(
            f"Could not download the bootstrap script: {exc}",
            command=f"GET {url}",
            remediation="Check the URL, or set script_source: bundled in your config",
        ) from exc
    if not resp.text.strip():
        raise RecoverableToolFailure(
            "Downloaded bootstrap script is empty",
            command=f"GET {url}",
            remediation="Set script_source: bundled in your config",
        )
    return resp.text
