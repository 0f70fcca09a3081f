# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/foundry/prompts/scripted.py

from __future__ import annotations

from collections import deque
from typing import Any, Deque, Dict, List, Mapping, Optional, Sequence

from .interface import SKIPPED, Option, SecretValue


class ScriptedPrompter:
    """
    Pre-recorded answers keyed by question key. A list queues answers for a
    question asked several times. Invalid answers are rejected and the next
    queued one is tried, the same way the terminal prompter loops.
    """

    def __init__(self, answers: Optional[Mapping[str, Any]] = None):
        self._answers: Dict[str, Deque[Any]] = {}
        for key, value in (answers or {}).items():
            self._answers[key] = deque(value if isinstance(value, list) else [value])
        self.asked: List[str] = []
        self.rejected: List[tuple] = []

    def _next(self, key: str) -> Any:
        self.asked.append(key)
        queue = self._answers.get(key)
        if not queue:
            raise LookupError(f"No scripted answer left for prompt {key!r}")
        return queue.popleft() if len(queue) > 1 else queue[0]

    def _remaining(self, key: str) -> int:
        return len(self._answers.get(key, ()))

    def _reject(self, key: str, answer: Any, last: bool) -> None:
        self.rejected.append((key, answer))
        if last:
            raise LookupError(f"No valid scripted answer for prompt {key!r}: {answer!r}")

    def choose(self, key: str, label: str, options: Sequence[Option]) -> str:
        keys = [k for k, _ in options]
        while True:
            last = self._remaining(key) <= 1
            answer = str(self._next(key))
            if answer in keys:
                return answer
            self._reject(key, answer, last)

    def choose_many(self, key: str, label: str, options: Sequence[Option]) -> List[str]:
        keys = [k for k, _ in options]
        while True:
            last = self._remaining(key) <= 1
            answer = self._next(key)
            picked = [str(a) for a in (answer if isinstance(answer, (list, tuple)) else str(answer).split(",")) if str(a).strip()]
            if all(p in keys for p in picked):
                return picked
            self._reject(key, answer, last)

    def confirm(self, key: str, label: str, default: bool = False) -> bool:
        return bool(self._next(key))

    def ask(self, key: str, label: str, default: Optional[str] = None) -> str:
        answer = self._next(key)
        return default if answer in (None, "") and default is not None else str(answer)

    def secret(self, key: str, label: str) -> SecretValue:
        answer = self._next(key)
        return SKIPPED if answer in (None, "", SKIPPED) else str(answer)

    def pause(self, key: str, label: str = "Press Enter to continue...") -> None:
        self.asked.append(key)
