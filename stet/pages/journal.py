from __future__ import annotations

import datetime as dt
import logging
from dataclasses import dataclass
from typing import Callable, List, Optional

from prompt_toolkit.buffer import Buffer
from prompt_toolkit.document import Document

from stet.effects import Effect, after, emit, task, write
from stet.messages import InvalidatePage, KeyPress, PageID, PageMessage
from stet.pages.base import AsyncInit, KeyHelp, NavigationCapture, Page, Title, error_text
from stet.render import Fragments, Theme, display_width, visible_range
from stet.store import JournalEntry, Store

logger = logging.getLogger('stet')

VIEW, NORMAL, INSERT = "view", "normal", "insert"


@dataclass(frozen=True)
class JournalMsg(PageMessage):
    target = PageID.JOURNAL


@dataclass(frozen=True)
class EntryLoaded(JournalMsg):
    entry: JournalEntry


@dataclass(frozen=True)
class EntryLoadFailed(JournalMsg):
    error: str


@dataclass(frozen=True)
class DebounceTick(JournalMsg):
    version: int


@dataclass(frozen=True)
class EntrySaved(JournalMsg):
    content: str


@dataclass(frozen=True)
class EntrySaveFailed(JournalMsg):
    error: str


class JournalPage(Page, AsyncInit, NavigationCapture):
    """Today's journal entry with a small vim-style editor and debounced autosave."""

    page_id = PageID.JOURNAL
    title = Title("Journal", "title.journal")
    message_base = JournalMsg
    HANDLERS = {
        EntryLoaded: "_on_loaded",
        EntryLoadFailed: "_on_load_failed",
        DebounceTick: "_on_debounce",
        EntrySaved: "_on_saved",
        EntrySaveFailed: "_on_save_failed",
    }

    def __init__(self, store: Store, today: Callable[[], dt.date] = dt.date.today,
                 debounce: float = 0.5):
        super().__init__()
        self.store = store
        self.today = today
        self.debounce = debounce
        self.buffer = Buffer(multiline=True)
        self.mode = VIEW
        self.entry_id: Optional[str] = None
        self.entry_date: Optional[dt.date] = None
        self.version = 0
        self.last_saved = ""
        self.saving = False
        self.pending_key = ""
        self.loading = False
        self.error: Optional[str] = None

    @property
    def content(self) -> str:
        return self.buffer.text

    @property
    def modified(self) -> bool:
        return self.buffer.text != self.last_saved

    # --- capabilities ---
    def init_effects(self) -> List[Effect]:
        self.loading = True
        store, day = self.store, self.today()

        def load():
            try:
                return EntryLoaded(store.load_or_create_journal_entry(day))
            except Exception as exc:
                logger.error("loading journal entry failed: %s", exc)
                return EntryLoadFailed(error_text(exc))
        return [task("journal.load", load)]

    def captures_navigation(self) -> bool:
        return self.mode != VIEW

    def captures_global_keys(self) -> bool:
        return self.mode == INSERT

    # --- handlers ---
    def _on_loaded(self, msg: EntryLoaded) -> List[Effect]:
        self.loading = False
        self.error = None
        self.entry_id = msg.entry.id
        self.entry_date = msg.entry.date
        self.last_saved = msg.entry.content
        self.buffer.set_document(Document(msg.entry.content, 0), bypass_readonly=True)
        return []

    def _on_load_failed(self, msg: EntryLoadFailed) -> List[Effect]:
        self.loading = False
        self.error = msg.error
        return []

    def _on_debounce(self, msg: DebounceTick) -> List[Effect]:
        if msg.version != self.version or not self.modified:
            return []
        return self.save()

    def _on_saved(self, msg: EntrySaved) -> List[Effect]:
        self.saving = False
        self.error = None
        self.last_saved = msg.content
        effects = [emit(InvalidatePage(PageID.HISTORY))]
        if self.modified:
            # edits made while that write was in flight
            effects += self.save()
        return effects

    def _on_save_failed(self, msg: EntrySaveFailed) -> List[Effect]:
        self.saving = False
        self.error = f"save failed: {msg.error}"
        return []

    # --- persistence ---
    def save(self) -> List[Effect]:
        """Write the buffer; a no-op while a write is in flight, `_on_saved` follows up."""
        if self.entry_id is None or self.saving:
            return []
        self.saving = True
        store, entry_id, content = self.store, self.entry_id, self.buffer.text

        def save_entry():
            try:
                store.update_journal_content(entry_id, content)
            except Exception as exc:
                logger.error("saving journal entry failed: %s", exc)
                return EntrySaveFailed(error_text(exc))
            return EntrySaved(content)
        return [write("journal.save", save_entry)]

    def close(self) -> None:
        """Flush unsaved text; pending debounce timers do not survive quitting."""
        if self.entry_id is None or not self.modified:
            return
        try:
            self.store.update_journal_content(self.entry_id, self.buffer.text)
        except Exception:
            logger.exception("saving journal entry on exit failed")
            return
        self.last_saved = self.buffer.text
        logger.debug("journal entry flushed on exit")

    def _changed(self) -> List[Effect]:
        self.version += 1
        version = self.version
        return [after(self.debounce, "journal.debounce", lambda: DebounceTick(version))]

    def status_text(self) -> str:
        if self.saving:
            return "Saving..."
        if self.modified:
            return "Modified"
        return "Saved"

    # --- keys ---
    def on_key(self, key: KeyPress) -> List[Effect]:
        if self.entry_id is None:
            return []
        if self.mode == INSERT:
            return self._insert_key(key)
        if self.mode == NORMAL:
            return self._normal_key(key)
        if key.key == "ctrl+v":
            self.mode = NORMAL
        return []

    def _insert_key(self, key: KeyPress) -> List[Effect]:
        b = self.buffer
        k = key.key
        if k == "esc":
            self.mode = NORMAL
            if b.document.cursor_position_col > 0:
                b.cursor_left()
            return self.save() if self.modified else []
        if k == "enter":
            b.insert_text("\n")
        elif k == "tab":
            b.insert_text("    ")
        elif k == "backspace":
            if not b.delete_before_cursor(1):
                return []
        elif k == "delete":
            if not b.delete(1):
                return []
        elif k == "left":
            b.cursor_left()
            return []
        elif k == "right":
            b.cursor_right()
            return []
        elif k == "up":
            b.cursor_up()
            return []
        elif k == "down":
            b.cursor_down()
            return []
        elif k == "home":
            b.cursor_position += b.document.get_start_of_line_position()
            return []
        elif k == "end":
            b.cursor_position += b.document.get_end_of_line_position()
            return []
        elif k == "paste" or key.printable:
            b.insert_text(key.text)
        else:
            return []
        return self._changed()

    def _normal_key(self, key: KeyPress) -> List[Effect]:
        b = self.buffer
        doc = b.document
        k = key.key
        if self.pending_key:
            pending, self.pending_key = self.pending_key, ""
            if pending == "g" and k == "g":
                b.cursor_position = 0
                return []
            if pending == "d" and k == "d":
                return self.delete_line()
            return []
        if k == "ctrl+v":
            self.mode = VIEW
            return self.save() if self.modified else []
        if k in ("h", "left"):
            if doc.cursor_position_col > 0:
                b.cursor_left()
        elif k in ("l", "right"):
            if doc.get_end_of_line_position() > 1:
                b.cursor_right()
        elif k in ("j", "down"):
            b.cursor_down()
        elif k in ("k", "up"):
            b.cursor_up()
        elif k == "w":
            b.cursor_position += doc.find_next_word_beginning() or doc.get_end_of_document_position()
        elif k == "b":
            b.cursor_position += doc.find_previous_word_beginning() or 0
        elif k == "0":
            b.cursor_position += doc.get_start_of_line_position()
        elif k == "$":
            b.cursor_position += max(0, doc.get_end_of_line_position() - 1)
        elif k == "G":
            last_row = max(0, doc.line_count - 1)
            b.cursor_position = doc.translate_row_col_to_index(last_row, 0)
        elif k in ("g", "d"):
            self.pending_key = k
        elif k == "x":
            if doc.current_char and doc.current_char != "\n":
                b.delete(1)
                return self._changed()
        elif k == "i":
            self.mode = INSERT
        elif k == "I":
            b.cursor_position += doc.get_start_of_line_position(after_whitespace=True)
            self.mode = INSERT
        elif k == "a":
            if doc.get_end_of_line_position() > 0:
                b.cursor_right()
            self.mode = INSERT
        elif k == "A":
            b.cursor_position += doc.get_end_of_line_position()
            self.mode = INSERT
        elif k == "o":
            b.cursor_position += doc.get_end_of_line_position()
            b.insert_text("\n")
            self.mode = INSERT
            return self._changed()
        elif k == "O":
            b.cursor_position += doc.get_start_of_line_position()
            b.insert_text("\n")
            b.cursor_up()
            b.cursor_position += b.document.get_start_of_line_position()
            self.mode = INSERT
            return self._changed()
        return []

    def delete_line(self) -> List[Effect]:
        doc = self.buffer.document
        lines = list(doc.lines)
        row = doc.cursor_position_row
        del lines[row]
        text = "\n".join(lines)
        row = min(row, max(0, len(lines) - 1))
        new_doc = Document(text, 0)
        self.buffer.set_document(
            Document(text, new_doc.translate_row_col_to_index(row, 0)), bypass_readonly=True)
        return self._changed()

    def key_help(self) -> List[KeyHelp]:
        if self.mode == VIEW:
            return [KeyHelp(("ctrl+v",), "ctrl+v", "edit")]
        if self.mode == NORMAL:
            return [
                KeyHelp(("i", "a"), "i/a", "insert"),
                KeyHelp(("o", "O"), "o/O", "open line"),
                KeyHelp(("h", "j", "k", "l"), "hjkl", "move"),
                KeyHelp(("w", "b"), "w/b", "word"),
                KeyHelp(("g", "G"), "gg/G", "top/bottom"),
                KeyHelp(("d", "x"), "dd/x", "delete"),
                KeyHelp(("ctrl+v",), "ctrl+v", "view"),
            ]
        return [KeyHelp(("esc",), "esc", "normal mode")]

    # --- render ---
    def render(self, theme: Theme) -> Fragments:
        day = self.entry_date or self.today()
        frags: Fragments = [(theme.cls('header'), f"  {day:%A, %B} {day.day}, {day.year}  ")]
        frags.append((theme.cls(f'mode.{self.mode}'), f"[{self.mode.upper()}]"))
        status = self.status_text()
        status_style = {'Saving...': 'status.saving', 'Modified': 'status.modified'}.get(status, 'status')
        frags.append((theme.cls(status_style), f"  {status}"))
        frags.append(("", "\n\n"))
        if self.error:
            frags.append((theme.cls('error'), f"  {self.error}\n\n"))
        if self.loading and self.entry_id is None:
            frags.append((theme.cls('muted'), "  Loading..."))
            return frags
        doc = self.buffer.document
        lines = doc.lines or [""]
        height = max(1, self.height - 4)
        row, col = doc.cursor_position_row, doc.cursor_position_col
        start, end = visible_range(len(lines), row, height)
        editing = self.mode != VIEW
        if not self.buffer.text and not editing:
            frags.append((theme.cls('muted'), "  Nothing written today. Press ctrl+v to start."))
            return frags
        border = theme.cls('mode.insert' if self.mode == INSERT else 'box.border')
        for i in range(start, end):
            line = lines[i]
            frags.append((border, "  │ "))
            if editing and i == row:
                before, at, rest = line[:col], line[col:col + 1] or " ", line[col + 1:]
                frags.append((theme.cls('text'), before))
                frags.append((theme.cls('cursor'), at))
                frags.append((theme.cls('text'), rest))
            else:
                frags.append((theme.cls('text'), line))
            frags.append(("", "\n"))
        words = len(self.buffer.text.split())
        frags.append((theme.cls('muted'), f"\n  {words} words, {display_width(self.buffer.text)} chars"))
        return frags
