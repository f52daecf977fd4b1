from __future__ import annotations

import dataclasses
import datetime as dt
import logging
from dataclasses import dataclass
from typing import Callable, List, Optional, Tuple

from stet.effects import Effect, task, write
from stet.messages import KeyPress, PageID, PageMessage
from stet.pages.base import AsyncInit, KeyHelp, NavigationCapture, Page, PendingWrites, Title, error_text
from stet.render import Fragments, Theme, pad_display, truncate, visible_range
from stet.store import Store, Task

logger = logging.getLogger('stet')


@dataclass(frozen=True)
class TodayMsg(PageMessage):
    target = PageID.TODAY


@dataclass(frozen=True)
class TasksLoaded(TodayMsg):
    tasks: Tuple[Task, ...]


@dataclass(frozen=True)
class TasksLoadFailed(TodayMsg):
    error: str


@dataclass(frozen=True)
class CompletionSaved(TodayMsg):
    task_id: str
    completed: bool


@dataclass(frozen=True)
class CompletionSaveFailed(TodayMsg):
    task_id: str
    completed: bool
    error: str


def sort_incomplete_first(tasks: List[Task]) -> List[Task]:
    # sorted() is stable, so creation order is kept inside each group
    return sorted(tasks, key=lambda t: t.completed)


class TodayPage(Page, AsyncInit, NavigationCapture):
    page_id = PageID.TODAY
    title = Title("Today", "title.today")
    message_base = TodayMsg
    HANDLERS = {
        TasksLoaded: "_on_loaded",
        TasksLoadFailed: "_on_load_failed",
        CompletionSaved: "_on_saved",
        CompletionSaveFailed: "_on_save_failed",
    }

    def __init__(self, store: Store, today: Callable[[], dt.date] = dt.date.today):
        super().__init__()
        self.store = store
        self.today = today
        self.tasks: List[Task] = []
        self.cursor = 0
        self.loading = False
        self.error: Optional[str] = None
        self.status = ""
        self.filter_text = ""
        self.filtering = False
        self.writes = PendingWrites()

    # --- capabilities ---
    def init_effects(self) -> List[Effect]:
        self.loading = True
        day = self.today()
        store = self.store

        def load():
            try:
                return TasksLoaded(tuple(store.load_today_tasks(day)))
            except Exception as exc:
                logger.error("loading today's tasks failed: %s", exc)
                return TasksLoadFailed(error_text(exc))
        return [task("today.load", load)]

    def captures_global_keys(self) -> bool:
        return self.filtering

    # --- handlers ---
    def _on_loaded(self, msg: TasksLoaded) -> List[Effect]:
        self.loading = False
        self.error = None
        self.tasks = sort_incomplete_first(list(msg.tasks))
        self.cursor = min(self.cursor, max(0, len(self.visible()) - 1))
        return []

    def _on_load_failed(self, msg: TasksLoadFailed) -> List[Effect]:
        self.loading = False
        self.error = msg.error
        return []

    def _on_saved(self, msg: CompletionSaved) -> List[Effect]:
        self.status = "marked completed" if msg.completed else "marked incomplete"
        send_next, _ = self.writes.finish(msg.task_id, msg.completed, ok=True)
        if send_next is not None:
            return [self._save(msg.task_id, send_next)]
        return []

    def _on_save_failed(self, msg: CompletionSaveFailed) -> List[Effect]:
        self.status = f"save failed: {msg.error}"
        send_next, rollback = self.writes.finish(msg.task_id, msg.completed, ok=False)
        if send_next is not None:
            return [self._save(msg.task_id, send_next)]
        for i, t in enumerate(self.tasks):
            if t.id == msg.task_id:
                self.tasks[i] = dataclasses.replace(t, completed=rollback)
                break
        return []

    # --- view helpers ---
    def visible(self) -> List[Task]:
        if not self.filter_text:
            return self.tasks
        needle = self.filter_text.lower()
        return [t for t in self.tasks if needle in t.title.lower()]

    def selected(self) -> Optional[Task]:
        items = self.visible()
        if 0 <= self.cursor < len(items):
            return items[self.cursor]
        return None

    def toggle_selected(self) -> List[Effect]:
        current = self.selected()
        if current is None:
            return []
        new_value = not current.completed
        idx = next(i for i, t in enumerate(self.tasks) if t.id == current.id)
        self.tasks[idx] = dataclasses.replace(current, completed=new_value)
        if not self.filter_text:
            self.tasks = sort_incomplete_first(self.tasks)
            self.cursor = next(i for i, t in enumerate(self.tasks) if t.id == current.id)
        if not self.writes.begin(current.id, new_value, current.completed):
            return []
        return [self._save(current.id, new_value)]

    def _save(self, task_id: str, completed: bool) -> Effect:
        store, day = self.store, self.today()

        def save():
            try:
                store.set_completion(task_id, day, completed)
            except Exception as exc:
                logger.error("saving completion for %s failed: %s", task_id, exc)
                return CompletionSaveFailed(task_id, completed, error_text(exc))
            return CompletionSaved(task_id, completed)
        return write("today.toggle", save)

    # --- keys ---
    def on_key(self, key: KeyPress) -> List[Effect]:
        if self.filtering:
            return self._filter_key(key)
        k = key.key
        count = len(self.visible())
        if k in ("down", "j"):
            self.cursor = min(self.cursor + 1, max(0, count - 1))
        elif k in ("up", "k"):
            self.cursor = max(0, self.cursor - 1)
        elif k in ("home", "g"):
            self.cursor = 0
        elif k in ("end", "G"):
            self.cursor = max(0, count - 1)
        elif k == "space":
            return self.toggle_selected()
        elif k == "/":
            self.filtering = True
        elif k == "esc" and self.filter_text:
            self.filter_text = ""
            self.tasks = sort_incomplete_first(self.tasks)
            self.cursor = 0
        return []

    def _filter_key(self, key: KeyPress) -> List[Effect]:
        if key.key == "enter":
            self.filtering = False
        elif key.key == "esc":
            self.filtering = False
            self.filter_text = ""
            self.tasks = sort_incomplete_first(self.tasks)
        elif key.key == "backspace":
            self.filter_text = self.filter_text[:-1]
        elif key.printable:
            self.filter_text += key.text
        self.cursor = 0
        return []

    def key_help(self) -> List[KeyHelp]:
        if self.filtering:
            return [KeyHelp(("enter",), "enter", "apply filter"), KeyHelp(("esc",), "esc", "clear filter")]
        return [
            KeyHelp(("up", "k"), "↑/k", "up"),
            KeyHelp(("down", "j"), "↓/j", "down"),
            KeyHelp(("space",), "space", "toggle done"),
            KeyHelp(("/",), "/", "filter"),
        ]

    # --- render ---
    def render(self, theme: Theme) -> Fragments:
        frags: Fragments = [(theme.cls('header'), "  Hit List")]
        items = self.visible()
        done = sum(1 for t in self.tasks if t.completed)
        frags.append((theme.cls('muted'), f"  {done}/{len(self.tasks)} done"))
        if self.filtering or self.filter_text:
            frags.append((theme.cls('accent'), f"   filter: {self.filter_text}"))
            if self.filtering:
                frags.append((theme.cls('cursor'), " "))
        frags.append(("", "\n\n"))
        if self.error:
            frags.append((theme.cls('error'), f"  Error: {self.error}\n"))
        if self.loading and not self.tasks:
            frags.append((theme.cls('muted'), "  Loading..."))
            return frags
        if not items:
            hint = "No matching tasks." if self.filter_text else "No tasks yet. Add some on the Configure page."
            frags.append((theme.cls('muted'), f"  {hint}"))
        width = max(20, self.width - 8)
        # two rows per task, plus header and status rows
        rows = max(1, (self.height - 4) // 2)
        start, end = visible_range(len(items), self.cursor, rows)
        for i in range(start, end):
            t = items[i]
            mark = "[x]" if t.completed else "[ ]"
            style = theme.cls('done') if t.completed else theme.cls('todo')
            pointer = "> " if i == self.cursor else "  "
            line_style = theme.cls('cursor') if i == self.cursor else style
            frags.append((style, f"  {pointer}{mark} "))
            frags.append((line_style, pad_display(t.title, width)))
            frags.append(("", "\n"))
            frags.append((theme.cls('muted'), f"        {truncate(t.description, width)}\n"))
        if self.status:
            frags.append(("", "\n"))
            style = 'error' if self.status.startswith("save failed") else 'status'
            frags.append((theme.cls(style), f"  {self.status}"))
        return frags
