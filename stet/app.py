from __future__ import annotations

import asyncio
import logging
from typing import Dict, Iterable, List, Optional

from prompt_toolkit import Application
from prompt_toolkit.key_binding import KeyBindings
from prompt_toolkit.key_binding.key_processor import KeyPressEvent
from prompt_toolkit.keys import Keys
from prompt_toolkit.layout import HSplit, Layout, Window
from prompt_toolkit.layout.controls import FormattedTextControl

from stet.clients import OuraClient, PlantaClient
from stet.config import Config
from stet.effects import Effect, EffectScheduler
from stet.messages import KeyPress, Message, Resize
from stet.oauth import OuraAuth, PlantaAuth
from stet.pages import HistoryPage, JournalPage, OuraPage, Page, PlantaPage, TaskConfigPage, TodayPage
from stet.render import Theme, load_theme
from stet.runtime import Runtime
from stet.store import Store
from stet.tokens import TokenStore

logger = logging.getLogger('stet')

# prompt_toolkit key names -> stet key names
KEY_NAMES: Dict[str, str] = {
    Keys.ControlM.value: "enter",
    Keys.ControlJ.value: "enter",
    Keys.ControlI.value: "tab",
    Keys.BackTab.value: "shift+tab",
    Keys.ControlH.value: "backspace",
    Keys.Escape.value: "esc",
    Keys.Delete.value: "delete",
    Keys.PageUp.value: "pageup",
    Keys.PageDown.value: "pagedown",
    Keys.BracketedPaste.value: "paste",
}
IGNORED_KEYS = {Keys.CPRResponse.value, Keys.Vt100MouseEvent.value, Keys.WindowsMouseEvent.value,
                Keys.ScrollUp.value, Keys.ScrollDown.value, Keys.Ignore.value}


def key_press(key: str, data: str) -> Optional[KeyPress]:
    """Normalise one prompt_toolkit key press; None for non-keyboard events."""
    if key in IGNORED_KEYS:
        return None
    if key in KEY_NAMES:
        name = KEY_NAMES[key]
        if name == "enter":
            return KeyPress(name, "\n")
        if name == "tab":
            return KeyPress(name, "\t")
        if name == "paste":
            return KeyPress(name, data.replace("\r\n", "\n").replace("\r", "\n"))
        return KeyPress(name)
    if key.startswith("c-") and len(key) == 3:
        return KeyPress(f"ctrl+{key[2:]}")
    if key == " ":
        return KeyPress("space", " ")
    if len(key) == 1:
        return KeyPress(key, key)
    return KeyPress(key)


class Program:
    """Runs a Runtime inside a prompt_toolkit Application.

    Every message goes through one asyncio queue consumed by `_pump`, so
    `Runtime.dispatch` never runs concurrently with itself.
    """

    def __init__(self, runtime: Runtime, theme: Theme):
        self.runtime = runtime
        self.theme = theme
        self.queue: Optional[asyncio.Queue] = None
        self.scheduler: Optional[EffectScheduler] = None
        self._size = (0, 0)
        self.app = self._build_app()

    def _build_app(self) -> Application:
        kb = KeyBindings()

        @kb.add(Keys.Any)
        def _(event: KeyPressEvent):
            for kp in event.key_sequence:
                msg = key_press(kp.key.value if isinstance(kp.key, Keys) else kp.key, kp.data)
                if msg is not None:
                    self.post(msg)

        body = Window(FormattedTextControl(lambda: self.runtime.render(self.theme), focusable=True),
                      wrap_lines=False)
        app = Application(layout=Layout(HSplit([body])), key_bindings=kb, full_screen=True,
                          style=self.theme.pt_style(), mouse_support=False)
        # Make Esc responsive instead of waiting for a possible escape sequence.
        app.ttimeoutlen = 0.05
        app.before_render += self._check_size
        return app

    def post(self, msg: Message) -> None:
        if self.queue is not None:
            self.queue.put_nowait(msg)

    def _check_size(self, _app) -> None:
        size = self.app.output.get_size()
        current = (size.columns, size.rows)
        if current != self._size:
            self._size = current
            self.post(Resize(size.columns, size.rows))

    def _spawn(self, effects: Iterable[Effect]) -> None:
        for effect in effects:
            self.scheduler.spawn(effect)

    async def _pump(self) -> None:
        while True:
            msg = await self.queue.get()
            try:
                effects = self.runtime.dispatch(msg)
            except Exception:
                # reported in the footer; the loop keeps running
                logger.exception("dispatch of %s failed", type(msg).__name__)
                self.runtime.failures = (self.runtime.failures + [f"internal error on {type(msg).__name__}"])[-3:]
                effects = []
            self._spawn(effects)
            if self.runtime.quitting:
                # writes already issued land before pages flush their own state
                await self.scheduler.drain()
                self.runtime.close()
                await self.scheduler.close()
                self.app.exit()
                return
            self.app.invalidate()

    def _pre_run(self) -> None:
        self.queue = asyncio.Queue()
        self.scheduler = EffectScheduler(self.post)
        self._check_size(self.app)
        self._spawn(self.runtime.start())
        self.app.create_background_task(self._pump())

    def run(self) -> None:
        try:
            self.app.run(pre_run=self._pre_run)
        finally:
            if self.scheduler is not None:
                self.scheduler.shutdown()
            if not self.runtime.quitting:
                self.runtime.close()


def build_pages(cfg: Config, store: Store) -> List[Page]:
    """Pages in paginator order."""
    oura = OuraClient(OuraAuth(cfg.oura_client_id, cfg.oura_client_secret,
                               TokenStore(cfg.oura_token_path), callback_port=cfg.callback_port))
    planta = PlantaClient(PlantaAuth(cfg.planta_app_code, TokenStore(cfg.planta_token_path)))
    return [
        TodayPage(store),
        JournalPage(store, debounce=cfg.journal_debounce_seconds),
        OuraPage(oura, poll_interval=cfg.oura_poll_seconds, auth_timeout=cfg.auth_timeout_seconds),
        PlantaPage(planta, poll_interval=cfg.planta_poll_seconds),
        HistoryPage(store),
        TaskConfigPage(store),
    ]


def run_ui(cfg: Config, store: Store) -> None:
    theme = load_theme(cfg.theme)
    runtime = Runtime(build_pages(cfg, store))
    Program(runtime, theme).run()
