# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/foundry/prompts/interface.py

from __future__ import annotations
from typing import List, Optional, Protocol, Sequence, Tuple, Union


class Skipped:
    """
    What secret() returns when the operator just presses Enter.
    Not an error: the caller falls back to its manual path.
    """

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __bool__(self) -> bool:
        return False

    def __repr__(self) -> str:
        return "SKIPPED"


SKIPPED = Skipped()

Option = Tuple[str, str]          # (key, label shown to the operator)
SecretValue = Union[str, Skipped]


class Prompter(Protocol):
    """
    Every operator decision goes through here; steps never call input().
    `key` is a stable identifier for the question, used by scripted
    answers and logs. Answers are never persisted.
    """

    def choose(self, key: str, label: str, options: Sequence[Option]) -> str: ...

    def choose_many(self, key: str, label: str, options: Sequence[Option]) -> List[str]: ...

    def confirm(self, key: str, label: str, default: bool = False) -> bool: ...

    def ask(self, key: str, label: str, default: Optional[str] = None) -> str: ...

    def secret(self, key: str, label: str) -> SecretValue: ...

    def pause(self, key: str, label: str = "Press Enter to continue...") -> None: ...
