import pytest

from stet.render import (
    BASE_THEME_STYLE,
    box,
    display_width,
    join_columns,
    load_theme,
    pad_display,
    truncate,
    visible_range,
    wrap_lines,
)


def test_theme_overrides_and_unknown_classes():
    theme = load_theme({"header": "bold #ff0000", "bogus": 3})
    assert theme.style["header"] == "bold #ff0000"
    assert theme.style["text"] == BASE_THEME_STYLE["text"]
    assert "bogus" not in theme.style
    assert theme.cls("header") == "class:header"
    assert theme.cls("nope") == ""
    theme.pt_style()


def test_wide_characters_are_measured():
    assert display_width("abc") == 3
    assert display_width("日本") == 4
    assert pad_display("日本", 6) == "日本  "
    assert pad_display("ab", 4, align="right") == "  ab"


def test_truncate_uses_ellipsis():
    assert truncate("hello world", 8) == "hello w…"
    assert truncate("short", 8) == "short"
    assert display_width(truncate("日本語のテキスト", 7)) <= 7


@pytest.mark.parametrize('count,cursor,height,expected', [
    (5, 0, 10, (0, 5)),
    (20, 0, 5, (0, 5)),
    (20, 10, 5, (8, 13)),
    (20, 19, 5, (15, 20)),
])
def test_visible_range(count, cursor, height, expected):
    assert visible_range(count, cursor, height) == expected


def test_wrap_lines_keeps_breaks():
    assert wrap_lines("abcdef\ngh", 4) == ["abcd", "ef", "gh"]
    assert wrap_lines("", 4) == [""]


def test_box_rows_have_equal_width():
    rows = box(load_theme(), "Title", ["one", "two"], 16)
    widths = {sum(display_width(t) for _, t in row) for row in rows}
    assert widths == {16}
    assert len(rows) == 4


def test_join_columns_places_boxes_side_by_side():
    theme = load_theme()
    left = box(theme, "A", ["x"], 10)
    right = box(theme, "B", ["y", "z"], 10)
    text = "".join(t for _, t in join_columns([left, right]))
    lines = text.rstrip("\n").split("\n")
    assert len(lines) == 4
    assert all(display_width(line) == 21 for line in lines)
