# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/foundry/rigs/registry.py
from __future__ import annotations

import importlib
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

from ..config.models import FoundrySettings
from ..steps.models import Step, StepContext

# A simple global rig registry. Built-in rigs register themselves on import.
_RIGS: Dict[str, "Rig"] = {}

BUILTIN = ("droplet", "igor")


@dataclass
class Rig:
    name: str
    title: str
    description: str
    build: Callable[[FoundrySettings], List[Step]]
    remote: bool = False                       # needs a RemoteBridge
    epilogue: Optional[Callable[[StepContext], List[str]]] = None


def register(rig: Rig) -> Rig:
    _RIGS[rig.name] = rig
    return rig


def _load_builtin() -> None:
    for mod in BUILTIN:
        importlib.import_module(f"{__package__}.{mod}")


def get(name: str) -> Rig:
    """Fetch a rig by name. Raises KeyError listing the known rigs."""
    _load_builtin()
    try:
        return _RIGS[name]
    except KeyError:
        raise KeyError(f"unknown rig {name!r}; available: {', '.join(sorted(_RIGS))}") from None


def available() -> List[Rig]:
    _load_builtin()
    return [_RIGS[n] for n in sorted(_RIGS)]
