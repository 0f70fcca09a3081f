# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/foundry/checkpoint/store.py
from __future__ import annotations

import contextlib
import logging
import os
import tempfile
from pathlib import Path
from typing import ContextManager, List, Optional, Protocol

from pydantic import ValidationError

from .lock import CheckpointLock
from .models import ProvisioningSession, session_id_for

log = logging.getLogger("foundry")


class CheckpointStore(Protocol):
    """
    Durable record of how far one provisioning session got.

    Contract:
      - load() never raises for bad data: unreadable or corrupt -> None
      - save() replaces the single record atomically
      - clear() is the only intentional discard
    """

    session_id: str

    def load(self) -> Optional[ProvisioningSession]: ...

    def save(self, session: ProvisioningSession) -> None: ...

    def clear(self) -> None: ...

    def new_session(self, rig: str, principal: str = "root") -> ProvisioningSession: ...

    def lock(self) -> ContextManager: ...


class FileCheckpointStore:
    """
    JSON checkpoint at a fixed local path, written temp-then-rename.
    """

    def __init__(self, path: str | Path):
        self.path = Path(path).expanduser()
        self.session_id = session_id_for(self.path)
        self._lock = CheckpointLock(self.path)

    # ---------------- locking ----------------

    def lock(self) -> CheckpointLock:
        return self._lock

    # ---------------- contract ----------------

    def new_session(self, rig: str, principal: str = "root") -> ProvisioningSession:
        return ProvisioningSession(session_id=self.session_id, rig=rig, target_principal=principal)

    def load(self) -> Optional[ProvisioningSession]:
        if not self.path.exists():
            return None
        try:
            raw = self.path.read_text(encoding="utf-8")
            session = ProvisioningSession.model_validate_json(raw)
        except (OSError, UnicodeDecodeError, ValidationError, ValueError) as exc:
            log.warning("Ignoring unreadable checkpoint %s: %s", self.path, exc)
            return None

        if session.session_id != self.session_id:
            log.warning(
                "Ignoring checkpoint %s: it belongs to session %s, not %s",
                self.path, session.session_id, self.session_id,
            )
            return None
        if session.current_step < 0:
            session.current_step = 0
        return session

    def save(self, session: ProvisioningSession) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        payload = session.model_dump_json(indent=2)

        fd, tmp = tempfile.mkstemp(
            prefix=f".{self.path.name}.", suffix=".tmp", dir=str(self.path.parent)
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(payload)
                f.flush()
                os.fsync(f.fileno())
            os.chmod(tmp, 0o600)
            os.replace(tmp, self.path)
        except BaseException:
            try:
                os.unlink(tmp)
            except FileNotFoundError:
                pass
            raise
        log.debug("checkpoint saved: %s step=%s", self.path, session.current_step)

    def clear(self) -> None:
        try:
            self.path.unlink()
            log.debug("checkpoint cleared: %s", self.path)
        except FileNotFoundError:
            pass


class MemoryCheckpointStore:
    """
    In-memory store for tests. Keeps the serialized form, exactly as the
    file store would write it, plus every version ever saved.
    """

    def __init__(self, session_id: str = "memory"):
        self.session_id = session_id
        self.raw: Optional[str] = None
        self.history: List[str] = []

    def lock(self) -> ContextManager:
        return contextlib.nullcontext()

    def new_session(self, rig: str, principal: str = "root") -> ProvisioningSession:
        return ProvisioningSession(session_id=self.session_id, rig=rig, target_principal=principal)

    def load(self) -> Optional[ProvisioningSession]:
        if self.raw is None:
            return None
        try:
            return ProvisioningSession.model_validate_json(self.raw)
        except (ValidationError, ValueError):
            return None

    def save(self, session: ProvisioningSession) -> None:
        self.raw = session.model_dump_json()
        self.history.append(self.raw)

    def clear(self) -> None:
        self.raw = None
