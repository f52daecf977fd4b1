import datetime as dt

import pytest

from stet.messages import KeyPress
from stet.pages.today import (
    CompletionSaved,
    CompletionSaveFailed,
    TasksLoadFailed,
    TodayPage,
    sort_incomplete_first,
)
from stet.render import load_theme
from stet.store import Task

DAY = dt.date(2024, 3, 15)


def press(page, *names):
    effects = []
    for name in names:
        text = " " if name == "space" else (name if len(name) == 1 else "")
        effects.extend(page.update(KeyPress(name, text)))
    return effects


def loaded_page(store, *titles):
    for title in titles:
        store.add_task_definition(title)
    page = TodayPage(store, today=lambda: DAY)
    (load,) = page.init_effects()
    page.update(load.run())
    return page


def rendered(page) -> str:
    return "".join(t for _, t in page.render(load_theme()))


def test_sort_incomplete_first_is_stable():
    tasks = [Task("a", "A", "", True), Task("b", "B", ""), Task("c", "C", "", True), Task("d", "D", "")]
    assert [t.id for t in sort_incomplete_first(tasks)] == ["b", "d", "a", "c"]


def test_load_shows_tasks_in_creation_order(store):
    page = loaded_page(store, "Read", "Walk")
    assert [t.title for t in page.tasks] == ["Read", "Walk"]
    assert page.loading is False
    assert "Hit List" in rendered(page)


def test_toggle_is_optimistic_and_persists(store):
    page = loaded_page(store, "Read", "Walk")
    (save,) = press(page, "space")
    assert [(t.title, t.completed) for t in page.tasks] == [("Walk", False), ("Read", True)]
    # cursor follows the toggled task
    assert page.selected().title == "Read"

    msg = save.run()
    assert msg == CompletionSaved(page.tasks[1].id, True)
    page.update(msg)
    assert page.status == "marked completed"
    assert store.load_today_tasks(DAY)[0].completed is True


def test_toggle_twice_leaves_no_history(store):
    page = loaded_page(store, "Read")
    for _ in range(2):
        (save,) = press(page, "space")
        page.update(save.run())
    assert page.tasks[0].completed is False
    assert store.conn.execute("SELECT COUNT(*) FROM task_history").fetchone()[0] == 0


def test_failed_save_rolls_back(store):
    page = loaded_page(store, "Read")
    task_id = page.tasks[0].id
    press(page, "space")
    assert page.tasks[0].completed is True
    page.update(CompletionSaveFailed(task_id, True, "disk full"))
    assert page.tasks[0].completed is False
    assert "save failed: disk full" in rendered(page)


def test_failed_save_for_vanished_task_is_ignored(store):
    page = loaded_page(store, "Read")
    page.update(CompletionSaveFailed("gone", True, "disk full"))
    assert [t.completed for t in page.tasks] == [False]


def test_cursor_moves_and_clamps(store):
    page = loaded_page(store, "A", "B", "C")
    press(page, "j", "j", "j")
    assert page.cursor == 2
    press(page, "k", "g")
    assert page.cursor == 0
    press(page, "G")
    assert page.cursor == 2


def test_empty_list_toggle_is_noop(store):
    page = loaded_page(store)
    assert press(page, "space") == []
    assert "No tasks yet" in rendered(page)


def test_filter_captures_global_keys(store):
    page = loaded_page(store, "Read book", "Walk", "Read news")
    press(page, "/")
    assert page.captures_global_keys() is True
    press(page, "r", "e", "q")
    assert page.filter_text == "req"
    press(page, "backspace", "backspace", "enter")
    assert page.captures_global_keys() is False
    assert [t.title for t in page.visible()] == ["Read book", "Read news"]

    press(page, "j", "space")
    assert page.selected().title == "Read news"
    assert page.selected().completed is True
    # no resort while filtered
    assert [t.title for t in page.visible()] == ["Read book", "Read news"]

    press(page, "esc")
    assert page.filter_text == ""
    assert [t.title for t in page.tasks] == ["Read book", "Walk", "Read news"]


@pytest.mark.parametrize('error', ["database is locked"])
def test_load_failure_is_shown(store, error):
    page = TodayPage(store, today=lambda: DAY)
    page.init_effects()
    page.update(TasksLoadFailed(error))
    assert page.loading is False
    assert error in rendered(page)


def history_rows(store):
    return store.conn.execute("SELECT COUNT(*) FROM task_history").fetchone()[0]


def test_rapid_double_toggle_writes_in_order(store):
    page = loaded_page(store, "Read")
    task_id = page.tasks[0].id
    (first,) = press(page, "space")
    # the second toggle waits for the first write to report back
    assert press(page, "space") == []
    assert page.tasks[0].completed is False

    (second,) = page.update(first.run())
    assert history_rows(store) == 1
    assert page.update(second.run()) == []
    assert page.tasks[0].completed is False
    assert history_rows(store) == 0
    assert store.load_today_tasks(DAY)[0].completed is False


def test_failed_write_sends_the_parked_toggle(store):
    page = loaded_page(store, "Read")
    task_id = page.tasks[0].id
    press(page, "space")
    press(page, "space")
    (retry,) = page.update(CompletionSaveFailed(task_id, True, "locked"))
    assert page.tasks[0].completed is False
    page.update(retry.run())
    assert page.tasks[0].completed is False
    assert history_rows(store) == 0


def test_failed_chain_rolls_back_to_stored_value(store):
    page = loaded_page(store, "Read")
    task_id = page.tasks[0].id
    press(page, "space", "space")
    page.update(CompletionSaveFailed(task_id, True, "locked"))
    assert page.update(CompletionSaveFailed(task_id, False, "locked")) == []
    # nothing reached the store, so the task is still open
    assert page.tasks[0].completed is False
    assert page.status == "save failed: locked"
