from __future__ import annotations

import unicodedata
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Dict, List, Mapping, Optional, Tuple

from prompt_toolkit.styles import Style
from prompt_toolkit.utils import get_cwidth

Fragments = List[Tuple[str, str]]


# -----------------------------
# Themes
# -----------------------------
BASE_THEME_STYLE: Dict[str, str] = {
    'title.today': 'bold #ffffff bg:#04B575',
    'title.journal': 'bold #ffffff bg:#00CED1',
    'title.oura': 'bold #ffffff bg:#8B5CF6',
    'title.planta': 'bold #ffffff bg:#22C55E',
    'title.history': 'bold #ffffff bg:ansiblue',
    'title.task_config': 'bold #ffffff bg:#FF6B6B',
    'header': 'bold #ffd75f',
    'text': '#f0f0f0',
    'muted': '#767676',
    'accent': '#87d7ff',
    'cursor': 'reverse',
    'done': '#87ff5f',
    'todo': '#d0d0d0',
    'status': '#5fd7af',
    'status.saving': '#ffd75f',
    'status.modified': '#ff8787',
    'error': 'bold #ff8787',
    'warning': '#ffd787',
    'help.key': 'bold #909090',
    'help.desc': '#626262',
    'paginator.active': 'bold #f0f0f0',
    'paginator.inactive': '#4e4e4e',
    'mode.view': 'bold #87d7ff',
    'mode.normal': 'bold #87ff5f',
    'mode.insert': 'bold #ffd75f',
    'heat.done': 'bold #04B575',
    'heat.missed': '#3a3a3a',
    'heat.cursor': 'reverse bold #04B575',
    'box.border': '#5f5f5f',
    'box.title': 'bold #87d7ff',
    'chart.bar': '#8B5CF6',
    'chart.cursor': 'bold #ffd75f',
    'input': 'bg:#303030 #ffffff',
}


@dataclass(frozen=True)
class Theme:
    name: str = "Default"
    style: Mapping[str, str] = field(default_factory=lambda: MappingProxyType(dict(BASE_THEME_STYLE)))

    def cls(self, name: str) -> str:
        return f"class:{name}" if name in self.style else ""

    def pt_style(self) -> Style:
        return Style.from_dict(dict(self.style))


def load_theme(overrides: Optional[Mapping[str, str]] = None, name: str = "Default") -> Theme:
    style_dict = dict(BASE_THEME_STYLE)
    for key, value in (overrides or {}).items():
        if isinstance(key, str) and isinstance(value, str):
            style_dict[key] = value
    return Theme(name=name, style=MappingProxyType(style_dict))


# -----------------------------
# Width-aware text helpers
# -----------------------------
def char_width(ch: str) -> int:
    """Return printable cell width for a single character."""
    if unicodedata.combining(ch) or unicodedata.category(ch) == "Cf":
        return 0
    width = get_cwidth(ch)
    return width if width > 0 else 1


def display_width(text: str) -> int:
    return sum(char_width(ch) for ch in text)


def _sanitize_cell_text(s: Optional[str]) -> str:
    return (s or "").replace("\n", " ").replace("\r", " ")


def truncate(s: Optional[str], maxlen: int) -> str:
    """Truncate string to a maximum display width, preserving whole glyphs."""
    s = _sanitize_cell_text(s)
    if maxlen <= 0:
        return ""
    if display_width(s) <= maxlen:
        return s
    ellipsis = "…"
    out: List[str] = []
    width = 0
    for ch in s:
        ch_w = char_width(ch)
        if width + ch_w + 1 > maxlen:
            break
        out.append(ch)
        width += ch_w
    return "".join(out) + ellipsis


def pad_display(text: Optional[str], width: int, align: str = "left") -> str:
    """Pad/truncate text to an exact display width using spaces."""
    raw = truncate(text, width)
    pad = max(0, width - display_width(raw))
    if align == "right":
        return " " * pad + raw
    if align == "center":
        left = pad // 2
        return (" " * left) + raw + (" " * (pad - left))
    return raw + (" " * pad)


def visible_range(count: int, cursor: int, height: int) -> Tuple[int, int]:
    """Slice bounds of a list window of `height` rows that keeps `cursor` visible."""
    if height <= 0 or count <= height:
        return 0, count
    start = min(max(0, cursor - height // 2), count - height)
    return start, start + height


def wrap_lines(text: str, width: int) -> List[str]:
    """Hard-wrap text to a display width, keeping explicit line breaks."""
    if width <= 0:
        return text.split("\n")
    out: List[str] = []
    for line in text.split("\n"):
        current = ""
        current_w = 0
        for ch in line:
            w = char_width(ch)
            if current_w + w > width:
                out.append(current)
                current, current_w = "", 0
            current += ch
            current_w += w
        out.append(current)
    return out


def box(theme: Theme, title: str, lines: List[str], width: int) -> List[Fragments]:
    """Render a rounded border box; returns one fragment list per output row."""
    inner = max(1, width - 4)
    border = theme.cls('box.border')
    rows: List[Fragments] = []
    head = truncate(f" {title} ", inner)
    rows.append([(border, "╭─"), (theme.cls('box.title'), head),
                 (border, "─" * max(0, inner - display_width(head)) + "─╮")])
    for line in lines or [""]:
        rows.append([(border, "│ "), (theme.cls('text'), pad_display(line, inner)), (border, " │")])
    rows.append([(border, "╰" + "─" * (inner + 2) + "╯")])
    return rows


def join_columns(columns: List[List[Fragments]], gap: int = 1) -> Fragments:
    """Lay several row lists side by side (each row a fragment list of equal width per column)."""
    out: Fragments = []
    height = max((len(c) for c in columns), default=0)
    widths = [max((sum(display_width(t) for _, t in row) for row in col), default=0) for col in columns]
    for i in range(height):
        for j, col in enumerate(columns):
            if j:
                out.append(("", " " * gap))
            if i < len(col):
                out.extend(col[i])
            else:
                out.append(("", " " * widths[j]))
        out.append(("", "\n"))
    return out
