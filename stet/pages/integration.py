from __future__ import annotations

import datetime as dt
import logging
from typing import Callable, List, Optional, Tuple

import requests

from stet.effects import Effect, after
from stet.errors import AuthRequired, Forbidden, RateLimited
from stet.messages import Message
from stet.oauth import OAuthManager
from stet.pages.base import AsyncInit, Page, error_text
from stet.render import Fragments, Theme

logger = logging.getLogger('stet')


def local_now() -> dt.datetime:
    return dt.datetime.now().astimezone()


def describe_failure(service: str, exc: BaseException) -> Tuple[str, bool]:
    """User-facing text for a failed call and whether it means "needs auth"."""
    if isinstance(exc, AuthRequired):
        return f"{service}: authentication required", True
    if isinstance(exc, Forbidden):
        return f"Subscription expired - {service} data not available", False
    if isinstance(exc, RateLimited):
        if exc.retry_after:
            return f"Rate limited - retry in {exc.retry_after}s", False
        return "Rate limited - please wait", False
    if isinstance(exc, requests.Timeout):
        return f"{service} did not respond in time", False
    if isinstance(exc, requests.ConnectionError):
        return f"cannot reach {service}", False
    return error_text(exc), False


class IntegrationPage(Page, AsyncInit):
    """Shared polling/auth state for pages backed by an external API.

    The tick chain starts once on init and always re-arms itself; while the
    page needs auth, is authorizing or is busy a tick only re-arms.
    """

    service = "integration"

    def __init__(self, auth: OAuthManager, poll_interval: float,
                 now: Callable[[], dt.datetime] = local_now):
        super().__init__()
        self.auth = auth
        self.poll_interval = poll_interval
        self.now = now
        self.poll_count = 0
        self.last_poll: Optional[dt.datetime] = None
        self.loading = False
        self.needs_auth = False
        self.auth_pending = False
        self.error: Optional[str] = None

    # --- hooks ---
    def make_tick(self) -> Message:
        raise NotImplementedError

    def fetch_effect(self) -> Effect:
        raise NotImplementedError

    def check_auth_effect(self) -> Effect:
        raise NotImplementedError

    def busy(self) -> bool:
        return False

    # --- shared flow ---
    def tick(self) -> Effect:
        return after(self.poll_interval, f"{self.service.lower()}.tick", self.make_tick)

    def init_effects(self) -> List[Effect]:
        self.loading = True
        return [self.check_auth_effect(), self.tick()]

    def poll(self) -> List[Effect]:
        self.poll_count += 1
        self.last_poll = self.now()
        self.loading = True
        return [self.fetch_effect()]

    def _on_tick(self, msg: Message) -> List[Effect]:
        if self.needs_auth or self.auth_pending or self.busy():
            return [self.tick()]
        return self.poll() + [self.tick()]

    def _auth_checked(self, authenticated: bool) -> List[Effect]:
        self.loading = False
        self.needs_auth = not authenticated
        if authenticated:
            return self.poll()
        return []

    def _fetch_failed(self, error: str, needs_auth: bool) -> List[Effect]:
        self.loading = False
        if needs_auth:
            self.needs_auth = True
            self.error = None
        else:
            self.error = error
        return []

    def refresh(self) -> List[Effect]:
        if self.needs_auth or self.auth_pending or self.loading:
            return []
        return self.poll()

    def close(self) -> None:
        self.auth.cancel_flow()

    # --- render helpers ---
    def render_poll_status(self, theme: Theme) -> Fragments:
        if self.last_poll is None:
            return [(theme.cls('muted'), "  not polled yet")]
        text = f"  polls: {self.poll_count}  last: {self.last_poll:%H:%M:%S}"
        if self.loading:
            text += "  (refreshing...)"
        return [(theme.cls('muted'), text)]
