from __future__ import annotations

import dataclasses
import logging
from dataclasses import dataclass
from typing import List, Optional, Tuple

from prompt_toolkit.buffer import Buffer
from prompt_toolkit.document import Document

from stet.effects import Effect, emit, task, write
from stet.messages import InvalidatePage, KeyPress, PageID, PageMessage
from stet.pages.base import AsyncInit, KeyHelp, NavigationCapture, Page, PendingWrites, Title, error_text
from stet.render import Fragments, Theme, pad_display, truncate, visible_range
from stet.store import Store, TaskDefinition

logger = logging.getLogger('stet')

LIST, TITLE_INPUT, DESC_INPUT, CONFIRM_DELETE = "list", "title", "description", "confirm"
TITLE_LIMIT = 100
DESC_LIMIT = 200

# Pages whose cached view depends on task definitions.
DEPENDENT_PAGES = (PageID.TODAY, PageID.HISTORY)


@dataclass(frozen=True)
class TaskConfigMsg(PageMessage):
    target = PageID.TASK_CONFIG


@dataclass(frozen=True)
class DefinitionsLoaded(TaskConfigMsg):
    definitions: Tuple[TaskDefinition, ...]


@dataclass(frozen=True)
class DefinitionsLoadFailed(TaskConfigMsg):
    error: str


@dataclass(frozen=True)
class DefinitionAdded(TaskConfigMsg):
    definition: TaskDefinition


@dataclass(frozen=True)
class DefinitionEdited(TaskConfigMsg):
    task_id: str
    title: str
    description: str


@dataclass(frozen=True)
class DefinitionDeleted(TaskConfigMsg):
    task_id: str


@dataclass(frozen=True)
class ActiveSaved(TaskConfigMsg):
    task_id: str
    active: bool


@dataclass(frozen=True)
class ActiveSaveFailed(TaskConfigMsg):
    task_id: str
    active: bool
    error: str


@dataclass(frozen=True)
class MutationFailed(TaskConfigMsg):
    action: str
    error: str


def _invalidate_dependents() -> List[Effect]:
    return [emit(InvalidatePage(p)) for p in DEPENDENT_PAGES]


class TaskConfigPage(Page, AsyncInit, NavigationCapture):
    page_id = PageID.TASK_CONFIG
    title = Title("Configure", "title.task_config")
    message_base = TaskConfigMsg
    HANDLERS = {
        DefinitionsLoaded: "_on_loaded",
        DefinitionsLoadFailed: "_on_load_failed",
        DefinitionAdded: "_on_added",
        DefinitionEdited: "_on_edited",
        DefinitionDeleted: "_on_deleted",
        ActiveSaved: "_on_active_saved",
        ActiveSaveFailed: "_on_active_failed",
        MutationFailed: "_on_mutation_failed",
    }

    def __init__(self, store: Store):
        super().__init__()
        self.store = store
        self.definitions: List[TaskDefinition] = []
        self.cursor = 0
        self.mode = LIST
        self.field = Buffer(multiline=False)
        self.draft_title = ""
        self.editing_id: Optional[str] = None
        self.loading = False
        self.error: Optional[str] = None
        self.status = ""
        self.writes = PendingWrites()

    def init_effects(self) -> List[Effect]:
        self.loading = True
        store = self.store

        def load():
            try:
                return DefinitionsLoaded(tuple(store.load_task_definitions()))
            except Exception as exc:
                logger.error("loading task definitions failed: %s", exc)
                return DefinitionsLoadFailed(error_text(exc))
        return [task("task_config.load", load)]

    def captures_navigation(self) -> bool:
        return self.mode != LIST

    def captures_global_keys(self) -> bool:
        return self.mode in (TITLE_INPUT, DESC_INPUT)

    def selected(self) -> Optional[TaskDefinition]:
        if 0 <= self.cursor < len(self.definitions):
            return self.definitions[self.cursor]
        return None

    def _index_of(self, task_id: str) -> Optional[int]:
        for i, d in enumerate(self.definitions):
            if d.id == task_id:
                return i
        return None

    # --- handlers ---
    def _on_loaded(self, msg: DefinitionsLoaded) -> List[Effect]:
        self.loading = False
        self.error = None
        self.definitions = list(msg.definitions)
        self.cursor = min(self.cursor, max(0, len(self.definitions) - 1))
        return []

    def _on_load_failed(self, msg: DefinitionsLoadFailed) -> List[Effect]:
        self.loading = False
        self.error = msg.error
        return []

    def _on_added(self, msg: DefinitionAdded) -> List[Effect]:
        self.definitions.append(msg.definition)
        self.cursor = len(self.definitions) - 1
        self.status = f"added {msg.definition.title}"
        return _invalidate_dependents()

    def _on_edited(self, msg: DefinitionEdited) -> List[Effect]:
        idx = self._index_of(msg.task_id)
        if idx is not None:
            self.definitions[idx] = dataclasses.replace(
                self.definitions[idx], title=msg.title, description=msg.description)
        self.status = f"updated {msg.title}"
        return _invalidate_dependents()

    def _on_deleted(self, msg: DefinitionDeleted) -> List[Effect]:
        idx = self._index_of(msg.task_id)
        if idx is not None:
            removed = self.definitions.pop(idx)
            self.status = f"deleted {removed.title}"
        self.cursor = min(self.cursor, max(0, len(self.definitions) - 1))
        return _invalidate_dependents()

    def _on_active_saved(self, msg: ActiveSaved) -> List[Effect]:
        self.status = "activated" if msg.active else "deactivated"
        send_next, _ = self.writes.finish(msg.task_id, msg.active, ok=True)
        if send_next is not None:
            return [self._save_active(msg.task_id, send_next)]
        return _invalidate_dependents()

    def _on_active_failed(self, msg: ActiveSaveFailed) -> List[Effect]:
        self.status = f"save failed: {msg.error}"
        send_next, rollback = self.writes.finish(msg.task_id, msg.active, ok=False)
        if send_next is not None:
            return [self._save_active(msg.task_id, send_next)]
        idx = self._index_of(msg.task_id)
        if idx is not None:
            self.definitions[idx] = dataclasses.replace(self.definitions[idx], active=rollback)
        return []

    def _on_mutation_failed(self, msg: MutationFailed) -> List[Effect]:
        self.status = f"{msg.action} failed: {msg.error}"
        return []

    # --- mutations ---
    def toggle_active(self) -> List[Effect]:
        current = self.selected()
        if current is None:
            return []
        new_value = not current.active
        self.definitions[self.cursor] = dataclasses.replace(current, active=new_value)
        if not self.writes.begin(current.id, new_value, current.active):
            return []
        return [self._save_active(current.id, new_value)]

    def _save_active(self, task_id: str, active: bool) -> Effect:
        store = self.store

        def save():
            try:
                store.set_task_active(task_id, active)
            except Exception as exc:
                logger.error("toggling task %s failed: %s", task_id, exc)
                return ActiveSaveFailed(task_id, active, error_text(exc))
            return ActiveSaved(task_id, active)
        return write("task_config.toggle", save)

    def _submit(self, title: str, description: str) -> List[Effect]:
        store, editing_id = self.store, self.editing_id

        def add():
            try:
                return DefinitionAdded(store.add_task_definition(title, description))
            except Exception as exc:
                logger.error("adding task failed: %s", exc)
                return MutationFailed("add", error_text(exc))

        def edit():
            try:
                store.update_task_definition(editing_id, title, description)
            except Exception as exc:
                logger.error("editing task %s failed: %s", editing_id, exc)
                return MutationFailed("edit", error_text(exc))
            return DefinitionEdited(editing_id, title.strip(), description.strip())

        if editing_id is None:
            return [write("task_config.add", add)]
        return [write("task_config.edit", edit)]

    def _delete(self, task_id: str) -> List[Effect]:
        store = self.store

        def delete():
            try:
                store.delete_task_definition(task_id)
            except Exception as exc:
                logger.error("deleting task %s failed: %s", task_id, exc)
                return MutationFailed("delete", error_text(exc))
            return DefinitionDeleted(task_id)
        return [write("task_config.delete", delete)]

    # --- keys ---
    def _start_form(self, definition: Optional[TaskDefinition]) -> None:
        self.editing_id = definition.id if definition else None
        self.draft_title = ""
        self.mode = TITLE_INPUT
        self._set_field(definition.title if definition else "")
        self.status = ""

    def _set_field(self, text: str) -> None:
        self.field.set_document(Document(text, len(text)), bypass_readonly=True)

    def on_key(self, key: KeyPress) -> List[Effect]:
        if self.mode in (TITLE_INPUT, DESC_INPUT):
            return self._form_key(key)
        if self.mode == CONFIRM_DELETE:
            return self._confirm_key(key)
        k = key.key
        if k in ("down", "j"):
            self.cursor = min(self.cursor + 1, max(0, len(self.definitions) - 1))
        elif k in ("up", "k"):
            self.cursor = max(0, self.cursor - 1)
        elif k == "a":
            self._start_form(None)
        elif k == "e" and self.selected():
            self._start_form(self.selected())
        elif k == "space":
            return self.toggle_active()
        elif k == "d" and self.selected():
            self.mode = CONFIRM_DELETE
        return []

    def _form_key(self, key: KeyPress) -> List[Effect]:
        k = key.key
        limit = TITLE_LIMIT if self.mode == TITLE_INPUT else DESC_LIMIT
        if k == "esc":
            self.mode = LIST
            self.editing_id = None
            return []
        if k == "enter":
            text = self.field.text.strip()
            if self.mode == TITLE_INPUT:
                if not text:
                    self.status = "title is required"
                    return []
                self.draft_title = text
                self.mode = DESC_INPUT
                current = self._index_of(self.editing_id) if self.editing_id else None
                self._set_field(self.definitions[current].description if current is not None else "")
                return []
            self.mode = LIST
            effects = self._submit(self.draft_title, text)
            self.editing_id = None
            return effects
        b = self.field
        if k == "backspace":
            b.delete_before_cursor(1)
        elif k == "delete":
            b.delete(1)
        elif k == "left":
            b.cursor_left()
        elif k == "right":
            b.cursor_right()
        elif k in ("home", "ctrl+a"):
            b.cursor_position = 0
        elif k in ("end", "ctrl+e"):
            b.cursor_position = len(b.text)
        elif k == "ctrl+u":
            self._set_field("")
        elif k == "paste" or key.printable:
            text = key.text.replace("\n", " ")
            room = limit - len(b.text)
            if room > 0:
                b.insert_text(text[:room])
        return []

    def _confirm_key(self, key: KeyPress) -> List[Effect]:
        if key.key in ("y", "Y"):
            self.mode = LIST
            current = self.selected()
            return self._delete(current.id) if current else []
        if key.key in ("n", "N", "esc"):
            self.mode = LIST
        return []

    def key_help(self) -> List[KeyHelp]:
        if self.mode in (TITLE_INPUT, DESC_INPUT):
            return [KeyHelp(("enter",), "enter", "next" if self.mode == TITLE_INPUT else "save"),
                    KeyHelp(("esc",), "esc", "cancel")]
        if self.mode == CONFIRM_DELETE:
            return [KeyHelp(("y",), "y", "delete"), KeyHelp(("n", "esc"), "n/esc", "keep")]
        return [
            KeyHelp(("up", "k", "down", "j"), "↑↓/jk", "move"),
            KeyHelp(("a",), "a", "add"),
            KeyHelp(("e",), "e", "edit"),
            KeyHelp(("space",), "space", "toggle active"),
            KeyHelp(("d",), "d", "delete"),
        ]

    # --- render ---
    def _render_field(self, theme: Theme, label: str, placeholder: str, limit: int) -> Fragments:
        b = self.field
        frags: Fragments = [(theme.cls('header'), f"  {label}\n  ")]
        if not b.text:
            frags.append((theme.cls('cursor'), " "))
            frags.append((theme.cls('muted'), placeholder))
        else:
            pos = b.cursor_position
            frags.append((theme.cls('input'), b.text[:pos]))
            frags.append((theme.cls('cursor'), b.text[pos:pos + 1] or " "))
            frags.append((theme.cls('input'), b.text[pos + 1:]))
        frags.append((theme.cls('muted'), f"\n  {len(b.text)}/{limit}\n"))
        return frags

    def render(self, theme: Theme) -> Fragments:
        frags: Fragments = []
        if self.mode in (TITLE_INPUT, DESC_INPUT):
            verb = "Edit task" if self.editing_id else "New task"
            frags.append((theme.cls('accent'), f"  {verb}\n\n"))
            if self.mode == TITLE_INPUT:
                frags.extend(self._render_field(theme, "Title", "Task title...", TITLE_LIMIT))
            else:
                frags.append((theme.cls('text'), f"  Title: {self.draft_title}\n\n"))
                frags.extend(self._render_field(
                    theme, "Description", "Description (optional, press enter to skip)...", DESC_LIMIT))
            if self.status:
                frags.append((theme.cls('warning'), f"\n  {self.status}"))
            return frags
        frags.append((theme.cls('header'), f"  Task definitions ({len(self.definitions)})\n\n"))
        if self.error:
            frags.append((theme.cls('error'), f"  Error: {self.error}\n"))
        if self.loading and not self.definitions:
            frags.append((theme.cls('muted'), "  Loading..."))
            return frags
        if not self.definitions:
            frags.append((theme.cls('muted'), "  No tasks defined. Press a to add one.\n"))
        width = max(20, self.width - 40)
        start, end = visible_range(len(self.definitions), self.cursor, max(1, self.height - 6))
        for i in range(start, end):
            d = self.definitions[i]
            mark = "●" if d.active else "○"
            style = theme.cls('done') if d.active else theme.cls('muted')
            frags.append((style, f"  {mark} "))
            frags.append((theme.cls('cursor') if i == self.cursor else theme.cls('text'), pad_display(d.title, 30)))
            frags.append((theme.cls('muted'), f"  {truncate(d.description, width)}\n"))
        if self.mode == CONFIRM_DELETE and self.selected():
            frags.append((theme.cls('warning'), f"\n  Delete '{self.selected().title}'? (y/n)"))
        elif self.status:
            failed = "failed" in self.status
            frags.append((theme.cls('error' if failed else 'status'), f"\n  {self.status}"))
        return frags
