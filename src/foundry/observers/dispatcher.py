# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/foundry/observers/dispatcher.py
from __future__ import annotations
import dataclasses
import logging
from typing import Any, Dict, List, Optional
from .events import BaseEvent

log = logging.getLogger("foundry")


class EventBus:
    def __init__(self, observers: List = None, ctx: Optional[Dict[str, Any]] = None):
        self._observers = observers or []
        self.ctx = dict(ctx or {})

    def bind(self, **ctx: Any) -> None:
        """Attach run-wide fields (run_id, rig, session_id) to every event."""
        self.ctx.update(ctx)

    def emit(self, event: BaseEvent) -> None:
        if self.ctx:
            missing = {k: v for k, v in self.ctx.items() if not getattr(event, k, None)}
            if missing:
                event = dataclasses.replace(event, **missing)
        for ob in self._observers:
            try:
                ob.notify(event)
            except Exception:
                # observers must not break provisioning
                log.debug("observer %r failed", ob, exc_info=True)
