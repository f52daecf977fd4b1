from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Optional, Tuple

from stet.clients import CONTRIBUTOR_LABELS, HeartRateSample, OuraClient, Readiness
from stet.effects import Effect, task
from stet.errors import AuthFlowPending, AuthRequired, StetError
from stet.messages import KeyPress, PageID, PageMessage
from stet.pages.base import KeyHelp, Title, error_text
from stet.pages.integration import IntegrationPage, describe_failure, local_now
from stet.render import Fragments, Theme, pad_display, visible_range

logger = logging.getLogger('stet')

SPARK_BLOCKS = "▁▂▃▄▅▆▇█"


@dataclass(frozen=True)
class OuraMsg(PageMessage):
    target = PageID.OURA


@dataclass(frozen=True)
class OuraTick(OuraMsg):
    pass


@dataclass(frozen=True)
class OuraAuthChecked(OuraMsg):
    authenticated: bool


@dataclass(frozen=True)
class OuraDataFetched(OuraMsg):
    readiness: Optional[Readiness]
    heart_rate: Optional[Tuple[HeartRateSample, ...]]


@dataclass(frozen=True)
class OuraFetchFailed(OuraMsg):
    error: str
    needs_auth: bool = False


@dataclass(frozen=True)
class OuraAuthCompleted(OuraMsg):
    pass


@dataclass(frozen=True)
class OuraAuthFailed(OuraMsg):
    error: str


def sparkline(values: List[int], width: int) -> List[Tuple[int, str]]:
    """Bucket values into at most `width` columns; returns (first index, glyph) per column."""
    if not values or width <= 0:
        return []
    per = max(1, -(-len(values) // width))
    buckets = [(i, values[i:i + per]) for i in range(0, len(values), per)]
    means = [sum(b) / len(b) for _, b in buckets]
    lo, hi = min(means), max(means)
    span = (hi - lo) or 1.0
    top = len(SPARK_BLOCKS) - 1
    return [(start, SPARK_BLOCKS[int(round((m - lo) / span * top))]) for (start, _), m in zip(buckets, means)]


class OuraPage(IntegrationPage):
    page_id = PageID.OURA
    title = Title("Oura", "title.oura")
    message_base = OuraMsg
    service = "Oura"
    HANDLERS = {
        OuraTick: "_on_tick",
        OuraAuthChecked: "_on_auth_checked",
        OuraDataFetched: "_on_fetched",
        OuraFetchFailed: "_on_fetch_failed",
        OuraAuthCompleted: "_on_auth_completed",
        OuraAuthFailed: "_on_auth_failed",
    }

    def __init__(self, client: OuraClient, poll_interval: float = 20.0,
                 auth_timeout: float = 300.0, now=local_now):
        super().__init__(client.auth, poll_interval, now=now)
        self.client = client
        self.auth_timeout = auth_timeout
        self.readiness: Optional[Readiness] = None
        self.samples: List[HeartRateSample] = []
        self.cursor = 0

    # --- effects ---
    def make_tick(self) -> OuraTick:
        return OuraTick()

    def check_auth_effect(self) -> Effect:
        auth = self.client.auth

        def check():
            try:
                return OuraAuthChecked(auth.is_authenticated())
            except (OSError, ValueError, KeyError) as exc:
                logger.error("reading oura token failed: %s", exc)
                return OuraAuthChecked(False)
        return task("oura.check_auth", check)

    def fetch_effect(self) -> Effect:
        client, now = self.client, self.now()

        def fetch():
            try:
                readiness = client.daily_readiness(now.date())
            except Exception as exc:
                text, needs_auth = describe_failure("Oura", exc)
                logger.error("oura readiness fetch failed: %s", exc)
                return OuraFetchFailed(text, needs_auth)
            start = now.replace(hour=0, minute=0, second=0, microsecond=0)
            try:
                samples: Optional[Tuple[HeartRateSample, ...]] = tuple(client.heart_rate(start, now))
            except AuthRequired:
                return OuraFetchFailed("Oura: authentication required", True)
            except (StetError, OSError, ValueError, KeyError) as exc:
                # heart rate is optional; readiness alone is still worth showing
                logger.warning("oura heart rate fetch failed: %s", exc)
                samples = None
            return OuraDataFetched(readiness, samples)
        return task("oura.fetch", fetch)

    def authenticate(self) -> List[Effect]:
        if self.auth_pending:
            return []
        if not self.client.auth.has_credentials():
            self.error = "Set OURA_CLIENT_ID and OURA_CLIENT_SECRET to connect Oura"
            return []
        self.auth_pending = True
        self.error = None
        auth, timeout = self.client.auth, self.auth_timeout

        def flow():
            try:
                auth.start_authorization_flow(timeout)
            except AuthFlowPending as exc:
                return OuraAuthFailed(error_text(exc))
            except Exception as exc:
                logger.error("oura authorization failed: %s", exc)
                return OuraAuthFailed(error_text(exc))
            return OuraAuthCompleted()
        return [task("oura.authorize", flow)]

    # --- handlers ---
    def _on_auth_checked(self, msg: OuraAuthChecked) -> List[Effect]:
        return self._auth_checked(msg.authenticated)

    def _on_fetched(self, msg: OuraDataFetched) -> List[Effect]:
        self.loading = False
        self.error = None
        self.needs_auth = False
        self.readiness = msg.readiness
        if msg.heart_rate is not None:
            self.samples = sorted(msg.heart_rate, key=lambda s: s.timestamp)
            self.cursor = min(self.cursor, max(0, len(self.samples) - 1))
        return []

    def _on_fetch_failed(self, msg: OuraFetchFailed) -> List[Effect]:
        return self._fetch_failed(msg.error, msg.needs_auth)

    def _on_auth_completed(self, msg: OuraAuthCompleted) -> List[Effect]:
        self.auth_pending = False
        self.needs_auth = False
        self.error = None
        return self.poll()

    def _on_auth_failed(self, msg: OuraAuthFailed) -> List[Effect]:
        self.auth_pending = False
        self.error = f"Authorization failed: {msg.error}"
        return []

    # --- keys ---
    def on_key(self, key: KeyPress) -> List[Effect]:
        k = key.key
        if k == "a":
            return self.authenticate()
        if k == "r":
            return self.refresh()
        if k in ("down", "j"):
            self.cursor = min(self.cursor + 1, max(0, len(self.samples) - 1))
        elif k in ("up", "k"):
            self.cursor = max(0, self.cursor - 1)
        elif k == "G":
            self.cursor = max(0, len(self.samples) - 1)
        elif k == "g":
            self.cursor = 0
        return []

    def key_help(self) -> List[KeyHelp]:
        helps = [KeyHelp(("a",), "a", "authenticate"), KeyHelp(("r",), "r", "refresh")]
        if self.samples:
            helps.append(KeyHelp(("up", "k", "down", "j"), "↑↓/jk", "samples"))
        return helps

    # --- render ---
    def render(self, theme: Theme) -> Fragments:
        frags: Fragments = []
        if self.auth_pending:
            frags.append((theme.cls('warning'), "  Waiting for authorization in your browser...\n"))
            frags.append((theme.cls('muted'), "  Complete the sign-in, then return here.\n"))
            return frags
        if self.needs_auth:
            if not self.client.auth.has_credentials():
                frags.append((theme.cls('warning'), "  Oura is not configured.\n"))
                frags.append((theme.cls('muted'), "  Set OURA_CLIENT_ID and OURA_CLIENT_SECRET (environment or .env).\n"))
            else:
                frags.append((theme.cls('warning'), "  Oura needs authorization.\n"))
                frags.append((theme.cls('muted'), "  Press a to open the browser and sign in.\n"))
            if self.error:
                frags.append((theme.cls('error'), f"\n  {self.error}\n"))
            return frags
        if self.error:
            frags.append((theme.cls('error'), f"  {self.error}\n\n"))
        if self.loading and self.readiness is None and not self.samples:
            frags.append((theme.cls('muted'), "  Loading...\n"))
            return frags
        frags.extend(self._render_readiness(theme))
        frags.append(("", "\n"))
        frags.extend(self._render_heart_rate(theme))
        frags.append(("", "\n"))
        frags.extend(self.render_poll_status(theme))
        return frags

    def _render_readiness(self, theme: Theme) -> Fragments:
        r = self.readiness
        if r is None:
            return [(theme.cls('muted'), "  No readiness score yet today.\n")]
        style = 'done' if r.score >= 85 else ('warning' if r.score >= 70 else 'error')
        frags: Fragments = [(theme.cls('header'), "  Readiness "), (theme.cls(style), f"{r.score}"),
                            (theme.cls('muted'), f"   temp {r.temperature_deviation:+.2f}°C   {r.day}\n")]
        items = [(label, r.contributors.get(key)) for key, label in CONTRIBUTOR_LABELS]
        items = [(label, v) for label, v in items if v is not None]
        for i in range(0, len(items), 2):
            frags.append(("", "  "))
            for label, value in items[i:i + 2]:
                bar = "█" * (value // 10) + "░" * (10 - value // 10)
                frags.append((theme.cls('text'), pad_display(label, 18)))
                frags.append((theme.cls('accent'), bar))
                frags.append((theme.cls('muted'), f" {value:>3}   "))
            frags.append(("", "\n"))
        return frags

    def _render_heart_rate(self, theme: Theme) -> Fragments:
        if not self.samples:
            return [(theme.cls('muted'), "  No heart rate samples today.\n")]
        bpms = [s.bpm for s in self.samples]
        avg = sum(bpms) / len(bpms)
        frags: Fragments = [
            (theme.cls('header'), "  Heart rate "),
            (theme.cls('muted'), f"min {min(bpms)}  avg {avg:.0f}  max {max(bpms)}  ({len(bpms)} samples)\n  "),
        ]
        columns = sparkline(bpms, max(10, self.width - 6))
        for n, (start, glyph) in enumerate(columns):
            end = columns[n + 1][0] if n + 1 < len(columns) else len(bpms)
            selected = start <= self.cursor < end
            frags.append((theme.cls('chart.cursor' if selected else 'chart.bar'), glyph))
        frags.append(("", "\n\n"))
        frags.append((theme.cls('header'), f"  {'Time':<10}{'BPM':>5}  Source\n"))
        rows = max(3, self.height - 16)
        start, end = visible_range(len(self.samples), self.cursor, rows)
        for i in range(start, end):
            s = self.samples[i]
            style = theme.cls('cursor') if i == self.cursor else theme.cls('text')
            local = s.timestamp.astimezone()
            frags.append((style, f"  {local:%H:%M:%S}  {s.bpm:>5}  {s.source}"))
            frags.append(("", "\n"))
        return frags
