from __future__ import annotations

from dataclasses import dataclass
from typing import ClassVar, Dict, Hashable, List, Optional, Tuple, Type

from stet.effects import Effect
from stet.messages import KeyPress, Message, PageID, PageMessage
from stet.render import Fragments, Theme


@dataclass(frozen=True)
class Title:
    text: str
    style: str  # theme class name


@dataclass(frozen=True)
class KeyHelp:
    keys: Tuple[str, ...]
    label: str
    desc: str

    def matches(self, key: str) -> bool:
        return key in self.keys


class Page:
    """One screen of the dashboard.

    Subclasses declare `page_id`, `title` and `message_base` (the root of the
    page's own result messages) and map every concrete message class under
    `message_base` to a handler method name in `HANDLERS`. The mapping is
    checked when the page is built so an unhandled result message type is an
    error at startup rather than a silently dropped update.
    """

    page_id: ClassVar[PageID]
    title: ClassVar[Title]
    message_base: ClassVar[Type[PageMessage]]
    HANDLERS: ClassVar[Dict[Type[Message], str]] = {}

    def __init__(self):
        self.width = 0
        self.height = 0
        self.check_handlers()

    @classmethod
    def message_types(cls) -> List[Type[Message]]:
        out: List[Type[Message]] = []
        todo = list(cls.message_base.__subclasses__())
        while todo:
            sub = todo.pop()
            out.append(sub)
            todo.extend(sub.__subclasses__())
        return out

    @classmethod
    def check_handlers(cls) -> None:
        missing = [t.__name__ for t in cls.message_types() if t not in cls.HANDLERS]
        if missing:
            raise TypeError(f"{cls.__name__} has no handler for {', '.join(sorted(missing))}")
        for name in cls.HANDLERS.values():
            if not callable(getattr(cls, name, None)):
                raise TypeError(f"{cls.__name__}.{name} is not a method")

    def resize(self, width: int, height: int) -> List[Effect]:
        self.width, self.height = width, height
        return []

    def update(self, msg: Message) -> List[Effect]:
        if isinstance(msg, KeyPress):
            return self.on_key(msg)
        name = self.HANDLERS.get(type(msg))
        if name is None:
            raise TypeError(f"{type(self).__name__} cannot handle {type(msg).__name__}")
        return getattr(self, name)(msg)

    def on_key(self, key: KeyPress) -> List[Effect]:
        return []

    def render(self, theme: Theme) -> Fragments:
        raise NotImplementedError

    def key_help(self) -> List[KeyHelp]:
        return []

    def close(self) -> None:
        """Release anything that would outlive the UI (pending auth flows)."""


# -----------------------------
# Optional capabilities
# -----------------------------
class AsyncInit:
    """Page loads its data through effects the first time it becomes active."""

    def init_effects(self) -> List[Effect]:
        raise NotImplementedError


class NavigationCapture:
    """Page can temporarily take over page-switch (and global) keys."""

    def captures_navigation(self) -> bool:
        return False

    def captures_global_keys(self) -> bool:
        return False


def captures_navigation(page: Page) -> bool:
    if not isinstance(page, NavigationCapture):
        return False
    return page.captures_global_keys() or page.captures_navigation()


def captures_global_keys(page: Page) -> bool:
    return isinstance(page, NavigationCapture) and page.captures_global_keys()


def error_text(exc: BaseException) -> str:
    return str(exc) or type(exc).__name__


class PendingWrites:
    """Keeps at most one boolean write in flight per entity key.

    A toggle made while its key is still being written is parked; only the
    newest parked value is sent once the in-flight write reports back. When a
    write fails with nothing parked, `finish` hands back the last value the
    store is known to hold so the page can roll its display back to it.
    """

    def __init__(self):
        self._confirmed: Dict[Hashable, bool] = {}
        self._parked: Dict[Hashable, bool] = {}

    def begin(self, key: Hashable, value: bool, before: bool) -> bool:
        """Record a write of `value`; True when the caller should send it now."""
        if key in self._confirmed:
            self._parked[key] = value
            return False
        self._confirmed[key] = before
        return True

    def finish(self, key: Hashable, value: bool, ok: bool) -> Tuple[Optional[bool], Optional[bool]]:
        """Settle the in-flight write of `value`.

        Returns `(send_next, rollback)`: the parked value to write next, and
        the value to restore on screen. At most one of them is not None.
        """
        if ok:
            self._confirmed[key] = value
        if key in self._parked:
            return self._parked.pop(key), None
        confirmed = self._confirmed.pop(key, None)
        if ok:
            return None, None
        return None, (not value) if confirmed is None else confirmed
