import datetime as dt

import pytest

from stet.messages import KeyPress
from stet.pages.base import captures_global_keys
from stet.pages.history import (
    JOURNAL,
    PAGER,
    TABLE,
    TASKS,
    CellSaved,
    CellSaveFailed,
    HistoryPage,
    date_range,
    days_for_width,
    same_day_entries,
)
from stet.render import load_theme
from stet.store import JournalEntry

TODAY = dt.date(2024, 3, 15)
YESTERDAY = TODAY - dt.timedelta(days=1)


def press(page, *names):
    effects = []
    for name in names:
        text = " " if name == "space" else (name if len(name) == 1 else "")
        effects.extend(page.update(KeyPress(name, text)))
    return effects


def loaded_page(store, width=60, height=30):
    page = HistoryPage(store, today=lambda: TODAY)
    page.resize(width, height)
    for effect in page.init_effects():
        page.update(effect.run())
    return page


def rendered(page) -> str:
    return "".join(t for _, t in page.render(load_theme()))


def journal(store, day, content):
    entry = store.load_or_create_journal_entry(day)
    store.update_journal_content(entry.id, content)


@pytest.mark.parametrize('width,days', [(20, 7), (37, 7), (60, 30), (200, 90)])
def test_days_for_width(width, days):
    assert days_for_width(width) == days


def test_date_range_ends_yesterday_newest_first():
    dates = date_range(TODAY, 7)
    assert dates[0] == YESTERDAY
    assert dates[-1] == TODAY - dt.timedelta(days=7)
    assert len(dates) == 7


def test_same_day_entries_spans_years():
    entries = [
        JournalEntry("a", "2022-03-14", "two years"),
        JournalEntry("b", "2024-03-14", "this year"),
        JournalEntry("c", "2024-03-13", "other day"),
        JournalEntry("d", "2023-03-14", "last year"),
    ]
    got = same_day_entries(entries, dt.date(2024, 3, 14))
    assert [e.content for e in got] == ["this year", "last year", "two years"]


def test_heatmap_shows_completions_in_window(store):
    t = store.add_task_definition("Read")
    store.set_completion(t.id, YESTERDAY, True)
    store.set_completion(t.id, TODAY, True)
    page = loaded_page(store)
    assert len(page.dates) == 30
    assert page.is_done(t.id, YESTERDAY)
    assert not page.is_done(t.id, TODAY)
    assert "Read" in rendered(page)


def test_cell_toggle_is_optimistic_and_persists(store):
    t = store.add_task_definition("Read")
    page = loaded_page(store)
    press(page, "]", "]")
    day = page.dates[2]
    (save,) = press(page, "space")
    assert page.is_done(t.id, day)
    msg = save.run()
    assert msg == CellSaved(t.id, day.isoformat(), True)
    page.update(msg)
    assert store.load_completions(day, day) == {t.id: {day.isoformat()}}


def test_cell_toggle_failure_rolls_back(store):
    t = store.add_task_definition("Read")
    page = loaded_page(store)
    press(page, "space")
    assert page.is_done(t.id, YESTERDAY)
    page.update(CellSaveFailed(t.id, YESTERDAY.isoformat(), True, "locked"))
    assert not page.is_done(t.id, YESTERDAY)
    assert page.status == "save failed: locked"


def test_cell_cursor_clamps(store):
    store.add_task_definition("Read")
    page = loaded_page(store)
    press(page, "[")
    assert page.cell == 0
    for _ in range(40):
        press(page, "]")
    assert page.cell == 29


def test_resize_reloads_with_new_window(store):
    store.add_task_definition("Read")
    page = loaded_page(store, width=60)
    effects = page.resize(45, 30)
    assert page.days_to_show == 15
    (reload,) = effects
    page.update(reload.run())
    assert len(page.dates) == 15
    assert page.resize(45, 30) == []


def test_resize_before_init_does_not_load(store):
    page = HistoryPage(store, today=lambda: TODAY)
    assert page.resize(100, 30) == []


def test_focus_moves_between_tables(store):
    store.add_task_definition("Read")
    store.add_task_definition("Walk")
    journal(store, YESTERDAY, "entry")
    page = loaded_page(store)
    press(page, "j")
    assert (page.focus, page.row) == (TASKS, 1)
    press(page, "j")
    assert page.focus == JOURNAL
    press(page, "k")
    assert page.focus == TASKS
    press(page, "tab")
    assert page.focus == JOURNAL


def test_pager_lists_same_day_entries_and_captures_keys(store):
    journal(store, dt.date(2023, 3, 14), "last year's note")
    journal(store, YESTERDAY, "this year's note")
    page = loaded_page(store)
    press(page, "tab", "enter")
    assert page.mode == PAGER
    assert captures_global_keys(page)
    assert page.pager_lines[0] == "Journal Entries for March 14"
    text = "\n".join(page.pager_lines)
    assert text.index("this year's note") < text.index("last year's note")
    press(page, "q")
    assert page.mode == TABLE


def test_pager_scrolls_within_bounds(store):
    journal(store, YESTERDAY, "\n".join(f"line {i}" for i in range(50)))
    page = loaded_page(store, height=14)
    press(page, "tab", "enter")
    press(page, "G")
    bottom = page.pager_offset
    assert bottom == len(page.pager_lines) - 10
    press(page, "j")
    assert page.pager_offset == bottom
    press(page, "g", "k")
    assert page.pager_offset == 0
    press(page, "space")
    assert page.pager_offset == 10


def test_comparison_boxes_by_year(store):
    journal(store, dt.date(2022, 3, 14), "old")
    journal(store, YESTERDAY, "new")
    page = loaded_page(store)
    press(page, "tab")
    assert page.comparison() == [
        ("This Year (2024)", "new"),
        ("Last Year (2023)", ""),
        ("2 Years Ago (2022)", "old"),
    ]
    text = rendered(page)
    assert "This Year (2024)" in text


def test_empty_history_renders(store):
    page = loaded_page(store)
    assert press(page, "space") == []
    rendered(page)


def test_rapid_cell_toggles_land_in_order(store):
    t = store.add_task_definition("Read")
    store.set_completion(t.id, YESTERDAY, True)
    page = loaded_page(store)
    (first,) = press(page, "space")
    assert press(page, "space") == []
    assert page.is_done(t.id, YESTERDAY)

    (second,) = page.update(first.run())
    assert store.load_completions(YESTERDAY, YESTERDAY) == {}
    assert page.update(second.run()) == []
    assert page.is_done(t.id, YESTERDAY)
    assert store.load_completions(YESTERDAY, YESTERDAY) == {t.id: {YESTERDAY.isoformat()}}


def test_failed_cell_chain_restores_stored_state(store):
    t = store.add_task_definition("Read")
    store.set_completion(t.id, YESTERDAY, True)
    page = loaded_page(store)
    press(page, "space", "space", "space")
    (retry,) = page.update(CellSaveFailed(t.id, YESTERDAY.isoformat(), False, "locked"))
    assert retry.serial and not page.is_done(t.id, YESTERDAY)
    page.update(CellSaveFailed(t.id, YESTERDAY.isoformat(), False, "locked"))
    assert page.is_done(t.id, YESTERDAY)
    assert store.load_completions(YESTERDAY, YESTERDAY) == {t.id: {YESTERDAY.isoformat()}}
