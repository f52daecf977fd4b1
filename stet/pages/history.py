from __future__ import annotations

import datetime as dt
import logging
from dataclasses import dataclass
from typing import Callable, Dict, FrozenSet, List, Optional, Set, Tuple

from stet.effects import Effect, task, write
from stet.messages import KeyPress, PageID, PageMessage
from stet.pages.base import AsyncInit, KeyHelp, NavigationCapture, Page, PendingWrites, Title, error_text
from stet.render import Fragments, Theme, box, join_columns, pad_display, truncate, visible_range, wrap_lines
from stet.store import JournalEntry, Store, Task

logger = logging.getLogger('stet')

MIN_DAYS, MAX_DAYS, DEFAULT_DAYS = 7, 90, 30
TITLE_WIDTH = 20
# margins + title column + gap around the heat-map
HEATMAP_CHROME = 30

TASKS, JOURNAL = "tasks", "journal"
TABLE, PAGER = "table", "pager"

DONE_CELL, MISSED_CELL = "■", "□"


def days_for_width(width: int) -> int:
    return min(MAX_DAYS, max(MIN_DAYS, width - HEATMAP_CHROME))


def date_range(today: dt.date, days: int) -> List[dt.date]:
    """`days` dates ending yesterday, newest first."""
    yesterday = today - dt.timedelta(days=1)
    return [yesterday - dt.timedelta(days=i) for i in range(days)]


def same_day_entries(entries: List[JournalEntry], day: dt.date) -> List[JournalEntry]:
    """Entries sharing day's month and day across all years, newest year first."""
    out = [e for e in entries if (e.date.month, e.date.day) == (day.month, day.day)]
    return sorted(out, key=lambda e: e.date, reverse=True)


@dataclass(frozen=True)
class HistoryMsg(PageMessage):
    target = PageID.HISTORY


@dataclass(frozen=True)
class HistoryLoaded(HistoryMsg):
    tasks: Tuple[Task, ...]
    completions: Dict[str, FrozenSet[str]]
    dates: Tuple[dt.date, ...]


@dataclass(frozen=True)
class HistoryLoadFailed(HistoryMsg):
    error: str


@dataclass(frozen=True)
class JournalHistoryLoaded(HistoryMsg):
    entries: Tuple[JournalEntry, ...]


@dataclass(frozen=True)
class JournalHistoryLoadFailed(HistoryMsg):
    error: str


@dataclass(frozen=True)
class CellSaved(HistoryMsg):
    task_id: str
    day: str
    completed: bool


@dataclass(frozen=True)
class CellSaveFailed(HistoryMsg):
    task_id: str
    day: str
    completed: bool
    error: str


class HistoryPage(Page, AsyncInit, NavigationCapture):
    page_id = PageID.HISTORY
    title = Title("History", "title.history")
    message_base = HistoryMsg
    HANDLERS = {
        HistoryLoaded: "_on_history",
        HistoryLoadFailed: "_on_history_failed",
        JournalHistoryLoaded: "_on_journal",
        JournalHistoryLoadFailed: "_on_journal_failed",
        CellSaved: "_on_cell_saved",
        CellSaveFailed: "_on_cell_failed",
    }

    def __init__(self, store: Store, today: Callable[[], dt.date] = dt.date.today):
        super().__init__()
        self.store = store
        self.today = today
        self.days_to_show = DEFAULT_DAYS
        self.dates: List[dt.date] = []
        self.tasks: List[Task] = []
        self.completions: Dict[str, Set[str]] = {}
        self.entries: List[JournalEntry] = []
        self.focus = TASKS
        self.mode = TABLE
        self.row = 0
        self.cell = 0  # 0 = leftmost column = newest day
        self.journal_cursor = 0
        self.pager_lines: List[str] = []
        self.pager_offset = 0
        self.loaded = False
        self.error: Optional[str] = None
        self.status = ""
        self.writes = PendingWrites()

    # --- loading ---
    def _load_history(self) -> Effect:
        store, dates = self.store, date_range(self.today(), self.days_to_show)

        def load():
            try:
                tasks = store.load_active_tasks()
                done = store.load_completions(dates[-1], dates[0])
            except Exception as exc:
                logger.error("loading history failed: %s", exc)
                return HistoryLoadFailed(error_text(exc))
            return HistoryLoaded(tuple(tasks), {k: frozenset(v) for k, v in done.items()}, tuple(dates))
        return task("history.load", load)

    def _load_journal(self) -> Effect:
        store = self.store

        def load():
            try:
                return JournalHistoryLoaded(tuple(store.load_journal_entries()))
            except Exception as exc:
                logger.error("loading journal history failed: %s", exc)
                return JournalHistoryLoadFailed(error_text(exc))
        return task("history.journal", load)

    def init_effects(self) -> List[Effect]:
        self.loaded = True
        return [self._load_history(), self._load_journal()]

    def resize(self, width: int, height: int) -> List[Effect]:
        super().resize(width, height)
        days = days_for_width(width)
        if days == self.days_to_show:
            return []
        self.days_to_show = days
        self.cell = min(self.cell, days - 1)
        if self.pager_lines:
            self._build_pager()
        return [self._load_history()] if self.loaded else []

    def captures_navigation(self) -> bool:
        return self.mode == PAGER

    def captures_global_keys(self) -> bool:
        return self.mode == PAGER

    # --- handlers ---
    def _on_history(self, msg: HistoryLoaded) -> List[Effect]:
        self.error = None
        self.tasks = list(msg.tasks)
        self.completions = {k: set(v) for k, v in msg.completions.items()}
        self.dates = list(msg.dates)
        self.row = min(self.row, max(0, len(self.tasks) - 1))
        self.cell = min(self.cell, max(0, len(self.dates) - 1))
        return []

    def _on_history_failed(self, msg: HistoryLoadFailed) -> List[Effect]:
        self.error = msg.error
        return []

    def _on_journal(self, msg: JournalHistoryLoaded) -> List[Effect]:
        self.entries = sorted(msg.entries, key=lambda e: e.entry_date, reverse=True)
        self.journal_cursor = min(self.journal_cursor, max(0, len(self.entries) - 1))
        return []

    def _on_journal_failed(self, msg: JournalHistoryLoadFailed) -> List[Effect]:
        self.error = msg.error
        return []

    def _on_cell_saved(self, msg: CellSaved) -> List[Effect]:
        self.status = f"{msg.day}: {'done' if msg.completed else 'not done'}"
        send_next, _ = self.writes.finish((msg.task_id, msg.day), msg.completed, ok=True)
        if send_next is not None:
            return [self._save_cell(msg.task_id, msg.day, send_next)]
        return []

    def _on_cell_failed(self, msg: CellSaveFailed) -> List[Effect]:
        self.status = f"save failed: {msg.error}"
        send_next, rollback = self.writes.finish((msg.task_id, msg.day), msg.completed, ok=False)
        if send_next is not None:
            return [self._save_cell(msg.task_id, msg.day, send_next)]
        if not any(t.id == msg.task_id for t in self.tasks):
            return []
        self._set_cell(msg.task_id, msg.day, rollback)
        return []

    # --- cell toggle ---
    def is_done(self, task_id: str, day: dt.date) -> bool:
        return day.isoformat() in self.completions.get(task_id, set())

    def toggle_cell(self) -> List[Effect]:
        if not (0 <= self.row < len(self.tasks)) or not (0 <= self.cell < len(self.dates)):
            return []
        t = self.tasks[self.row]
        day = self.dates[self.cell]
        before = self.is_done(t.id, day)
        key = day.isoformat()
        self._set_cell(t.id, key, not before)
        if not self.writes.begin((t.id, key), not before, before):
            return []
        return [self._save_cell(t.id, key, not before)]

    def _set_cell(self, task_id: str, key: str, done: bool) -> None:
        days = self.completions.setdefault(task_id, set())
        if done:
            days.add(key)
        else:
            days.discard(key)

    def _save_cell(self, task_id: str, key: str, done: bool) -> Effect:
        store, day = self.store, dt.date.fromisoformat(key)

        def save():
            try:
                store.set_completion(task_id, day, done)
            except Exception as exc:
                logger.error("saving history cell %s %s failed: %s", task_id, key, exc)
                return CellSaveFailed(task_id, key, done, error_text(exc))
            return CellSaved(task_id, key, done)
        return write("history.toggle", save)

    # --- journal browsing ---
    def selected_entry(self) -> Optional[JournalEntry]:
        if 0 <= self.journal_cursor < len(self.entries):
            return self.entries[self.journal_cursor]
        return None

    def comparison(self) -> List[Tuple[str, str]]:
        """(title, content) for this year, last year and two years ago."""
        entry = self.selected_entry()
        day = entry.date if entry else self.today()
        by_year = {e.date.year: e.content for e in same_day_entries(self.entries, day)}
        labels = ["This Year", "Last Year", "2 Years Ago"]
        return [(f"{labels[i]} ({day.year - i})", by_year.get(day.year - i, "")) for i in range(3)]

    def _build_pager(self) -> None:
        entry = self.selected_entry()
        day = entry.date if entry else self.today()
        heading = f"{day:%B} {day.day}"
        matches = same_day_entries(self.entries, day)
        width = max(20, self.width - 6)
        if not matches:
            self.pager_lines = [f"No journal entries for {heading}"]
            return
        lines = [f"Journal Entries for {heading}", ""]
        for i, e in enumerate(matches):
            if i:
                lines += ["", "─" * min(40, width), ""]
            lines += [str(e.date.year), ""]
            lines += wrap_lines(e.content, width)
        self.pager_lines = lines

    def open_pager(self) -> None:
        self.mode = PAGER
        self.pager_offset = 0
        self._build_pager()

    # --- keys ---
    def on_key(self, key: KeyPress) -> List[Effect]:
        if self.mode == PAGER:
            return self._pager_key(key)
        if key.key == "tab":
            self.focus = JOURNAL if self.focus == TASKS else TASKS
            return []
        if self.focus == TASKS:
            return self._task_key(key)
        return self._journal_key(key)

    def _task_key(self, key: KeyPress) -> List[Effect]:
        k = key.key
        if k in ("down", "j"):
            if self.row >= len(self.tasks) - 1:
                if self.entries:
                    self.focus = JOURNAL
            else:
                self.row += 1
        elif k in ("up", "k"):
            self.row = max(0, self.row - 1)
        elif k == "[":
            self.cell = max(0, self.cell - 1)
        elif k == "]":
            self.cell = min(max(0, len(self.dates) - 1), self.cell + 1)
        elif k == "space":
            return self.toggle_cell()
        return []

    def _journal_key(self, key: KeyPress) -> List[Effect]:
        k = key.key
        if k in ("down", "j"):
            self.journal_cursor = min(self.journal_cursor + 1, max(0, len(self.entries) - 1))
        elif k in ("up", "k"):
            if self.journal_cursor == 0:
                self.focus = TASKS
            else:
                self.journal_cursor -= 1
        elif k == "enter" and self.entries:
            self.open_pager()
        return []

    def _pager_key(self, key: KeyPress) -> List[Effect]:
        k = key.key
        page = max(1, self.height - 4)
        bottom = max(0, len(self.pager_lines) - page)
        if k in ("esc", "q"):
            self.mode = TABLE
        elif k in ("down", "j"):
            self.pager_offset = min(bottom, self.pager_offset + 1)
        elif k in ("up", "k"):
            self.pager_offset = max(0, self.pager_offset - 1)
        elif k in ("pagedown", "space", "f"):
            self.pager_offset = min(bottom, self.pager_offset + page)
        elif k in ("pageup", "b"):
            self.pager_offset = max(0, self.pager_offset - page)
        elif k == "g":
            self.pager_offset = 0
        elif k == "G":
            self.pager_offset = bottom
        return []

    def key_help(self) -> List[KeyHelp]:
        if self.mode == PAGER:
            return [KeyHelp(("up", "k", "down", "j"), "↑↓/jk", "scroll"), KeyHelp(("esc", "q"), "esc/q", "back")]
        helps = [KeyHelp(("up", "k", "down", "j"), "↑↓/jk", "move"), KeyHelp(("tab",), "tab", "switch table")]
        if self.focus == TASKS:
            helps += [KeyHelp(("[", "]"), "[/]", "move day"), KeyHelp(("space",), "space", "toggle")]
        else:
            helps.append(KeyHelp(("enter",), "enter", "read entries"))
        return helps

    # --- render ---
    def render(self, theme: Theme) -> Fragments:
        if self.mode == PAGER:
            return self._render_pager(theme)
        frags: Fragments = []
        if self.error:
            frags.append((theme.cls('error'), f"  Error: {self.error}\n\n"))
        frags.extend(self._render_heatmap(theme))
        frags.append(("", "\n"))
        frags.extend(self._render_journal(theme))
        return frags

    def _render_heatmap(self, theme: Theme) -> Fragments:
        head = 'header' if self.focus == TASKS else 'muted'
        frags: Fragments = [(theme.cls(head), f"  Task History ({self.days_to_show} days)\n")]
        if not self.tasks:
            frags.append((theme.cls('muted'), "  No active tasks.\n"))
            return frags
        rows = max(3, (self.height - 12) // 2)
        start, end = visible_range(len(self.tasks), self.row, rows)
        for i in range(start, end):
            t = self.tasks[i]
            selected = i == self.row and self.focus == TASKS
            frags.append((theme.cls('cursor') if selected else theme.cls('text'),
                          "  " + pad_display(t.title, TITLE_WIDTH)))
            frags.append(("", "  "))
            for j, day in enumerate(self.dates):
                done = self.is_done(t.id, day)
                if selected and j == self.cell:
                    style = 'heat.cursor'
                else:
                    style = 'heat.done' if done else 'heat.missed'
                frags.append((theme.cls(style), DONE_CELL if done else MISSED_CELL))
            frags.append(("", "\n"))
        if self.dates and self.focus == TASKS and 0 <= self.cell < len(self.dates):
            day = self.dates[self.cell]
            frags.append((theme.cls('muted'), f"  {day.isoformat()} ({day:%a})"))
            if self.status:
                style = 'error' if self.status.startswith("save failed") else 'status'
                frags.append((theme.cls(style), f"   {self.status}"))
            frags.append(("", "\n"))
        return frags

    def _render_journal(self, theme: Theme) -> Fragments:
        head = 'header' if self.focus == JOURNAL else 'muted'
        frags: Fragments = [(theme.cls(head), "  Journal\n")]
        if not self.entries:
            frags.append((theme.cls('muted'), "  No journal entries yet.\n"))
            return frags
        width = max(20, self.width - 18)
        start, end = visible_range(len(self.entries), self.journal_cursor, 5)
        for i in range(start, end):
            e = self.entries[i]
            selected = i == self.journal_cursor and self.focus == JOURNAL
            preview = truncate(e.content.split("\n", 1)[0], width)
            frags.append((theme.cls('cursor') if selected else theme.cls('accent'), f"  {e.entry_date}"))
            frags.append((theme.cls('text'), f"  {preview}\n"))
        frags.append(("", "\n"))
        boxes = self.comparison()
        if self.width >= 3 * 26 + 4:
            bw = (self.width - 6) // 3
            columns = [box(theme, t, self._preview_lines(c, bw - 4), bw) for t, c in boxes]
            frags.append(("", "  "))
            for style, text in join_columns(columns):
                frags.append((style, "\n  " if text == "\n" else text))
        else:
            bw = max(20, self.width - 4)
            for t, c in boxes:
                for row in box(theme, t, self._preview_lines(c, bw - 4), bw):
                    frags.append(("", "  "))
                    frags.extend(row)
                    frags.append(("", "\n"))
        return frags

    @staticmethod
    def _preview_lines(content: str, width: int) -> List[str]:
        if not content:
            return ["No entry", ""]
        lines = content.split("\n")
        out = [truncate(line, width) for line in lines[:2]]
        if len(lines) > 2:
            out[-1] = "..."
        return out + [""] * (2 - len(out))

    def _render_pager(self, theme: Theme) -> Fragments:
        frags: Fragments = [(theme.cls('done'), "  Journal Entry Viewer"),
                            (theme.cls('muted'), " (press esc or q to return)\n\n")]
        page = max(1, self.height - 4)
        shown = self.pager_lines[self.pager_offset:self.pager_offset + page]
        for line in shown:
            frags.append((theme.cls('text'), f"  {line}\n"))
        total = max(1, len(self.pager_lines) - page)
        pct = 100 if len(self.pager_lines) <= page else int(100 * self.pager_offset / total)
        frags.append((theme.cls('muted'), f"\n  {pct}%"))
        return frags
