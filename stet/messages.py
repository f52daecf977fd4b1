from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import ClassVar


class PageID(enum.Enum):
    TODAY = "today"
    JOURNAL = "journal"
    OURA = "oura"
    PLANTA = "planta"
    HISTORY = "history"
    TASK_CONFIG = "task_config"


@dataclass(frozen=True)
class Message:
    """Immutable event fed into the runtime loop."""


@dataclass(frozen=True)
class KeyPress(Message):
    key: str
    text: str = ""

    @property
    def printable(self) -> bool:
        return bool(self.text) and self.text.isprintable()


@dataclass(frozen=True)
class Resize(Message):
    width: int
    height: int


@dataclass(frozen=True)
class InvalidatePage(Message):
    page_id: PageID


@dataclass(frozen=True)
class EffectFailed(Message):
    """An effect raised instead of returning its message."""
    name: str
    error: str


@dataclass(frozen=True)
class PageMessage(Message):
    """Result message owned by one page; `target` names the page."""
    target: ClassVar[PageID]
