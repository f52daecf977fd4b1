from __future__ import annotations

import logging
from typing import Dict, List, Optional, Sequence, Set

from stet.effects import Effect
from stet.messages import EffectFailed, InvalidatePage, KeyPress, Message, PageID, PageMessage, Resize
from stet.pages.base import AsyncInit, KeyHelp, Page, captures_global_keys, captures_navigation
from stet.render import Fragments, Theme, display_width, pad_display

logger = logging.getLogger('stet')

QUIT_KEYS = ("q", "ctrl+c")
FORCE_QUIT_KEYS = ("ctrl+c",)
HELP_KEYS = ("?",)
PREV_KEYS = ("left",)
NEXT_KEYS = ("right",)

GLOBAL_HELP = [
    KeyHelp(PREV_KEYS + NEXT_KEYS, "←/→", "switch page"),
    KeyHelp(HELP_KEYS, "?", "help"),
    KeyHelp(QUIT_KEYS, "q", "quit"),
]

# Rows taken by the title, short help and paginator around a page body.
CHROME_ROWS = 7


class Runtime:
    """Owns the pages, the active index and global keys.

    `dispatch` is only ever called from the UI loop, one message at a time.
    """

    def __init__(self, pages: Sequence[Page]):
        if not pages:
            raise ValueError("at least one page is required")
        self.pages: List[Page] = list(pages)
        self.by_id: Dict[PageID, Page] = {p.page_id: p for p in self.pages}
        if len(self.by_id) != len(self.pages):
            raise ValueError("page ids must be unique")
        self.active = 0
        self.initialized: Set[PageID] = set()
        self.show_help = False
        self.quitting = False
        self.width = 0
        self.height = 0
        self.failures: List[str] = []

    @property
    def active_page(self) -> Page:
        return self.pages[self.active]

    def start(self) -> List[Effect]:
        return self._init_active()

    def _init_active(self) -> List[Effect]:
        page = self.active_page
        if not isinstance(page, AsyncInit) or page.page_id in self.initialized:
            return []
        self.initialized.add(page.page_id)
        logger.debug("init %s", page.page_id.value)
        return list(page.init_effects())

    def _content_size(self):
        help_rows = self._help_rows() if self.show_help else 1
        return self.width, max(1, self.height - CHROME_ROWS - help_rows + 1)

    def _resize_pages(self) -> List[Effect]:
        w, h = self._content_size()
        effects: List[Effect] = []
        for page in self.pages:
            effects.extend(page.resize(w, h))
        return effects

    def go_to(self, index: int) -> List[Effect]:
        index = min(max(0, index), len(self.pages) - 1)
        if index == self.active:
            return []
        self.active = index
        return self._init_active()

    def dispatch(self, msg: Message) -> List[Effect]:
        if isinstance(msg, Resize):
            self.width, self.height = msg.width, msg.height
            return self._resize_pages()
        if isinstance(msg, InvalidatePage):
            self.initialized.discard(msg.page_id)
            return []
        if isinstance(msg, EffectFailed):
            self.failures = (self.failures + [f"{msg.name}: {msg.error}"])[-3:]
            return []
        if isinstance(msg, PageMessage):
            owner = self.by_id.get(msg.target)
            if owner is None:
                logger.warning("dropping %s for unknown page %s", type(msg).__name__, msg.target)
                return []
            return list(owner.update(msg))
        if isinstance(msg, KeyPress):
            return self._dispatch_key(msg)
        logger.warning("unhandled message %r", msg)
        return []

    def _dispatch_key(self, msg: KeyPress) -> List[Effect]:
        page = self.active_page
        if msg.key in FORCE_QUIT_KEYS:
            self.quitting = True
            return []
        if not captures_global_keys(page):
            if msg.key in QUIT_KEYS:
                self.quitting = True
                return []
            if msg.key in HELP_KEYS:
                self.show_help = not self.show_help
                return self._resize_pages()
        if not captures_navigation(page):
            if msg.key in PREV_KEYS:
                return self.go_to(self.active - 1)
            if msg.key in NEXT_KEYS:
                return self.go_to(self.active + 1)
        return list(page.update(msg))

    # -----------------------------
    # Render
    # -----------------------------
    def _help_entries(self) -> List[KeyHelp]:
        return list(self.active_page.key_help()) + GLOBAL_HELP

    def _help_rows(self) -> int:
        return (len(self._help_entries()) + 3) // 4

    def _render_help(self, theme: Theme) -> Fragments:
        entries = self._help_entries()
        frags: Fragments = []
        if not self.show_help:
            for i, kh in enumerate(entries):
                if i:
                    frags.append((theme.cls('help.desc'), " • "))
                frags.append((theme.cls('help.key'), kh.label))
                frags.append((theme.cls('help.desc'), f" {kh.desc}"))
            return frags
        col_w = max((display_width(f"{kh.label} {kh.desc}") for kh in entries), default=0) + 4
        for row_start in range(0, len(entries), 4):
            if row_start:
                frags.append(("", "\n"))
            for kh in entries[row_start:row_start + 4]:
                frags.append((theme.cls('help.key'), kh.label))
                frags.append((theme.cls('help.desc'), pad_display(f" {kh.desc}", col_w - display_width(kh.label))))
        return frags

    def render(self, theme: Theme) -> Fragments:
        page = self.active_page
        frags: Fragments = [("", "\n  "), (theme.cls(page.title.style), f" {page.title.text} "), ("", "\n\n")]
        for style, text in page.render(theme):
            frags.append((style, text))
        frags.append(("", "\n\n  "))
        frags.extend(self._render_help(theme))
        frags.append(("", "\n\n  "))
        for i in range(len(self.pages)):
            name = 'paginator.active' if i == self.active else 'paginator.inactive'
            frags.append((theme.cls(name), "•" if i == self.active else "◦"))
        for failure in self.failures:
            frags.append(("", "\n  "))
            frags.append((theme.cls('error'), f"! {failure}"))
        return frags

    def close(self) -> None:
        for page in self.pages:
            page.close()
