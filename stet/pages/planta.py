from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Optional, Tuple

from stet.clients import ACTION_LABELS, PlantaClient, PlantTask
from stet.effects import Effect, task
from stet.messages import KeyPress, PageID, PageMessage
from stet.pages.base import KeyHelp, Title
from stet.pages.integration import IntegrationPage, describe_failure, local_now
from stet.render import Fragments, Theme, pad_display, visible_range

logger = logging.getLogger('stet')

DUE_WITHIN_DAYS = 3


@dataclass(frozen=True)
class PlantaMsg(PageMessage):
    target = PageID.PLANTA


@dataclass(frozen=True)
class PlantaTick(PlantaMsg):
    pass


@dataclass(frozen=True)
class PlantaAuthChecked(PlantaMsg):
    authenticated: bool


@dataclass(frozen=True)
class PlantaTasksFetched(PlantaMsg):
    tasks: Tuple[PlantTask, ...]


@dataclass(frozen=True)
class PlantaFetchFailed(PlantaMsg):
    error: str
    needs_auth: bool = False


@dataclass(frozen=True)
class PlantaActionCompleted(PlantaMsg):
    plant_id: str
    action_type: str
    plant_name: str


@dataclass(frozen=True)
class PlantaActionFailed(PlantaMsg):
    error: str


class PlantaPage(IntegrationPage):
    page_id = PageID.PLANTA
    title = Title("Planta", "title.planta")
    message_base = PlantaMsg
    service = "Planta"
    HANDLERS = {
        PlantaTick: "_on_tick",
        PlantaAuthChecked: "_on_auth_checked",
        PlantaTasksFetched: "_on_fetched",
        PlantaFetchFailed: "_on_fetch_failed",
        PlantaActionCompleted: "_on_completed",
        PlantaActionFailed: "_on_complete_failed",
    }

    def __init__(self, client: PlantaClient, poll_interval: float = 4 * 60 * 60, now=local_now):
        super().__init__(client.auth, poll_interval, now=now)
        self.client = client
        self.tasks: List[PlantTask] = []
        self.cursor = 0
        self.completing = False
        self.status = ""

    def busy(self) -> bool:
        return self.completing

    def make_tick(self) -> PlantaTick:
        return PlantaTick()

    def check_auth_effect(self) -> Effect:
        auth = self.client.auth

        def check():
            # With an app code the fetch itself exchanges it for a token.
            return PlantaAuthChecked(auth.has_credentials())
        return task("planta.check_auth", check)

    def fetch_effect(self) -> Effect:
        client, today = self.client, self.now().date()

        def fetch():
            try:
                return PlantaTasksFetched(tuple(client.due_tasks(today, DUE_WITHIN_DAYS)))
            except Exception as exc:
                text, needs_auth = describe_failure("Planta", exc)
                logger.error("planta fetch failed: %s", exc)
                return PlantaFetchFailed(text, needs_auth)
        return task("planta.fetch", fetch)

    def selected(self) -> Optional[PlantTask]:
        if 0 <= self.cursor < len(self.tasks):
            return self.tasks[self.cursor]
        return None

    def complete_selected(self) -> List[Effect]:
        current = self.selected()
        if current is None or self.completing:
            return []
        if not current.completable:
            self.status = f"{ACTION_LABELS.get(current.action_type, current.action_type)} must be completed in the Planta app"
            return []
        self.completing = True
        self.status = ""
        client = self.client

        def complete():
            try:
                client.complete_action(current.plant_id, current.action_type)
            except Exception as exc:
                text, _ = describe_failure("Planta", exc)
                logger.error("planta complete %s failed: %s", current.action_type, exc)
                return PlantaActionFailed(text)
            return PlantaActionCompleted(current.plant_id, current.action_type, current.plant_name)
        return [task("planta.complete", complete)]

    # --- handlers ---
    def _on_auth_checked(self, msg: PlantaAuthChecked) -> List[Effect]:
        return self._auth_checked(msg.authenticated)

    def _on_fetched(self, msg: PlantaTasksFetched) -> List[Effect]:
        self.loading = False
        self.error = None
        self.needs_auth = False
        self.tasks = list(msg.tasks)
        self.cursor = min(self.cursor, max(0, len(self.tasks) - 1))
        return []

    def _on_fetch_failed(self, msg: PlantaFetchFailed) -> List[Effect]:
        return self._fetch_failed(msg.error, msg.needs_auth)

    def _on_completed(self, msg: PlantaActionCompleted) -> List[Effect]:
        self.completing = False
        self.tasks = [t for t in self.tasks
                      if not (t.plant_id == msg.plant_id and t.action_type == msg.action_type)]
        self.cursor = min(self.cursor, max(0, len(self.tasks) - 1))
        self.status = f"{ACTION_LABELS.get(msg.action_type, msg.action_type)} done for {msg.plant_name}"
        return []

    def _on_complete_failed(self, msg: PlantaActionFailed) -> List[Effect]:
        self.completing = False
        self.status = f"complete failed: {msg.error}"
        return []

    # --- keys ---
    def on_key(self, key: KeyPress) -> List[Effect]:
        k = key.key
        if k in ("down", "j"):
            self.cursor = min(self.cursor + 1, max(0, len(self.tasks) - 1))
        elif k in ("up", "k"):
            self.cursor = max(0, self.cursor - 1)
        elif k in ("enter", "c"):
            return self.complete_selected()
        elif k == "r":
            return self.refresh()
        return []

    def key_help(self) -> List[KeyHelp]:
        return [
            KeyHelp(("up", "k", "down", "j"), "↑↓/jk", "move"),
            KeyHelp(("enter", "c"), "enter/c", "complete"),
            KeyHelp(("r",), "r", "refresh"),
        ]

    # --- render ---
    def render(self, theme: Theme) -> Fragments:
        frags: Fragments = []
        if self.needs_auth:
            if not self.client.auth.has_credentials():
                frags.append((theme.cls('warning'), "  Planta is not configured.\n"))
                frags.append((theme.cls('muted'), "  Set PLANTA_APP_CODE (environment or .env) from the Planta app.\n"))
            else:
                frags.append((theme.cls('warning'), "  Planta rejected the stored credentials.\n"))
                frags.append((theme.cls('muted'), "  Generate a new app code in the Planta app and restart.\n"))
            return frags
        if self.error:
            frags.append((theme.cls('error'), f"  {self.error}\n\n"))
        if self.loading and not self.tasks:
            frags.append((theme.cls('muted'), "  Loading plants...\n"))
            return frags
        today = self.now().date()
        frags.append((theme.cls('header'), f"  Plant care due in the next {DUE_WITHIN_DAYS} days ({len(self.tasks)})\n\n"))
        if not self.tasks:
            frags.append((theme.cls('done'), "  Nothing due. Your plants are happy.\n"))
        else:
            frags.append((theme.cls('header'), "  " + pad_display("Plant", 28) + pad_display("Action", 16) + "Due\n"))
            start, end = visible_range(len(self.tasks), self.cursor, max(3, self.height - 8))
            for i in range(start, end):
                t = self.tasks[i]
                if t.overdue:
                    due, due_style = f"{(today - t.due_date).days}d overdue", 'error'
                elif t.is_today:
                    due, due_style = "today", 'warning'
                else:
                    due, due_style = t.due_date.isoformat(), 'text'
                row_style = theme.cls('cursor') if i == self.cursor else theme.cls('text')
                label = ACTION_LABELS.get(t.action_type, t.action_type)
                if not t.completable:
                    label += " *"
                frags.append((row_style, "  " + pad_display(t.plant_name, 28) + pad_display(label, 16)))
                frags.append((theme.cls(due_style), due))
                frags.append(("", "\n"))
            frags.append((theme.cls('muted'), "\n  * complete in the Planta app\n"))
        if self.completing:
            frags.append((theme.cls('status.saving'), "\n  Completing...\n"))
        elif self.status:
            style = 'error' if "failed" in self.status else 'status'
            frags.append((theme.cls(style), f"\n  {self.status}\n"))
        frags.append(("", "\n"))
        frags.extend(self.render_poll_status(theme))
        return frags
