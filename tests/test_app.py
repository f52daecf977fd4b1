import logging
import time
from dataclasses import dataclass

import pytest
from prompt_toolkit.application import create_app_session
from prompt_toolkit.input import create_pipe_input
from prompt_toolkit.keys import Keys
from prompt_toolkit.output import DummyOutput

from stet.app import Program, build_pages, key_press
from stet.cli import setup_logging
from stet.config import Config
from stet.effects import emit, write
from stet.messages import KeyPress, Message, PageID, Resize
from stet.render import load_theme


@pytest.mark.parametrize('key,data,expected', [
    (Keys.ControlM.value, "\r", KeyPress("enter", "\n")),
    (Keys.ControlJ.value, "\n", KeyPress("enter", "\n")),
    (Keys.ControlI.value, "\t", KeyPress("tab", "\t")),
    (Keys.ControlH.value, "\x7f", KeyPress("backspace")),
    (Keys.Escape.value, "\x1b", KeyPress("esc")),
    (Keys.ControlC.value, "\x03", KeyPress("ctrl+c")),
    (Keys.ControlV.value, "\x16", KeyPress("ctrl+v")),
    (Keys.Left.value, "", KeyPress("left")),
    (Keys.PageDown.value, "", KeyPress("pagedown")),
    (" ", " ", KeyPress("space", " ")),
    ("q", "q", KeyPress("q", "q")),
    ("?", "?", KeyPress("?", "?")),
    (Keys.BracketedPaste.value, "a\r\nb", KeyPress("paste", "a\nb")),
])
def test_key_press_normalises(key, data, expected):
    assert key_press(key, data) == expected


def test_non_keyboard_events_are_dropped():
    assert key_press(Keys.CPRResponse.value, "\x1b[1;1R") is None
    assert key_press(Keys.Vt100MouseEvent.value, "") is None


def test_build_pages_in_paginator_order(tmp_path, store):
    cfg = Config(data_dir=str(tmp_path))
    pages = build_pages(cfg, store)
    assert [p.page_id for p in pages] == [
        PageID.TODAY, PageID.JOURNAL, PageID.OURA, PageID.PLANTA, PageID.HISTORY, PageID.TASK_CONFIG,
    ]


def test_setup_logging_writes_at_requested_level(tmp_path):
    log_path = tmp_path / "logs" / "debug.log"
    logger = setup_logging(str(log_path), "info")
    try:
        logger.debug("hidden")
        logger.info("visible")
        for h in logger.handlers:
            h.flush()
        text = log_path.read_text(encoding="utf-8")
        assert "INFO visible" in text
        assert "hidden" not in text
        assert len(logger.handlers) == 1
        setup_logging(str(log_path), "not-a-level")
        assert logger.handlers[0].level == logging.ERROR
    finally:
        for h in list(logger.handlers):
            logger.removeHandler(h)
            h.close()
        logger.propagate = True
        logger.setLevel(logging.NOTSET)


@dataclass(frozen=True)
class Note(Message):
    text: str


class RecordingRuntime:
    """Stands in for Runtime: records messages, fails on x, quits on q."""

    def __init__(self):
        self.seen = []
        self.failures = []
        self.quitting = False
        self.written = []
        self.closes = []

    def start(self):
        return [emit(Note("started"))]

    def dispatch(self, msg):
        self.seen.append(msg)
        if isinstance(msg, KeyPress):
            if msg.key == "x":
                raise RuntimeError("boom")
            if msg.key == "b":
                return [write("test.write", self._slow_write)]
            if msg.key == "q":
                self.quitting = True
        return []

    def _slow_write(self):
        time.sleep(0.05)
        self.written.append("b")
        return Note("written")

    def render(self, theme):
        return [("", "stet")]

    def close(self):
        self.closes.append(list(self.written))


def test_program_runs_keys_through_the_runtime_and_quits(caplog):
    runtime = RecordingRuntime()
    with create_pipe_input() as inp, create_app_session(input=inp, output=DummyOutput()):
        program = Program(runtime, load_theme())
        inp.send_text("abxq")
        program.run()

    assert runtime.seen[0] == Resize(80, 40)
    assert Note("started") in runtime.seen
    assert [m.key for m in runtime.seen if isinstance(m, KeyPress)] == ["a", "b", "x", "q"]
    assert runtime.seen[-1] == KeyPress("q", "q")
    # the dispatch error is shown and later keys still arrive
    assert runtime.failures == ["internal error on KeyPress"]
    assert "dispatch of KeyPress failed" in caplog.text
    # the write issued before quitting lands before pages are closed, once
    assert runtime.closes == [["b"]]
    assert program.scheduler.pending == 0
    assert program.scheduler.pending_writes == 0
