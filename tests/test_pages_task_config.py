from stet.messages import InvalidatePage, KeyPress, PageID
from stet.pages.base import captures_global_keys, captures_navigation
from stet.pages.task_config import (
    CONFIRM_DELETE,
    DESC_INPUT,
    LIST,
    TITLE_INPUT,
    TITLE_LIMIT,
    ActiveSaveFailed,
    MutationFailed,
    TaskConfigPage,
)
from stet.render import load_theme


def press(page, *names):
    effects = []
    for name in names:
        text = " " if name == "space" else (name if len(name) == 1 else "")
        effects.extend(page.update(KeyPress(name, text)))
    return effects


def type_text(page, text):
    for ch in text:
        page.update(KeyPress("space" if ch == " " else ch, ch))


def loaded_page(store):
    page = TaskConfigPage(store)
    (load,) = page.init_effects()
    page.update(load.run())
    return page


def deliver(page, effects):
    """Run each effect and hand the result to the page; returns invalidations."""
    out = []
    for e in effects:
        msg = e.run()
        if isinstance(msg, InvalidatePage):
            out.append(msg.page_id)
        else:
            out.extend(deliver(page, page.update(msg)))
    return out


def rendered(page) -> str:
    return "".join(t for _, t in page.render(load_theme()))


def test_add_task_through_form(store):
    page = loaded_page(store)
    press(page, "a")
    assert page.mode == TITLE_INPUT
    assert captures_global_keys(page)
    type_text(page, "Read a book")
    press(page, "enter")
    assert page.mode == DESC_INPUT
    type_text(page, "20 pages")
    effects = press(page, "enter")
    assert page.mode == LIST

    invalidated = deliver(page, effects)
    assert invalidated == [PageID.TODAY, PageID.HISTORY]
    assert [d.title for d in page.definitions] == ["Read a book"]
    assert store.load_task_definitions()[0].description == "20 pages"
    assert page.status == "added Read a book"


def test_form_keys_q_and_question_mark_are_text(store):
    page = loaded_page(store)
    press(page, "a")
    type_text(page, "q?")
    assert page.field.text == "q?"


def test_empty_title_is_rejected(store):
    page = loaded_page(store)
    press(page, "a")
    type_text(page, "   ")
    assert press(page, "enter") == []
    assert page.mode == TITLE_INPUT
    assert "title is required" in rendered(page)


def test_title_limit_is_enforced(store):
    page = loaded_page(store)
    press(page, "a")
    type_text(page, "x" * (TITLE_LIMIT + 10))
    assert len(page.field.text) == TITLE_LIMIT
    page.update(KeyPress("paste", "more"))
    assert len(page.field.text) == TITLE_LIMIT


def test_escape_cancels_form(store):
    page = loaded_page(store)
    press(page, "a")
    type_text(page, "Nope")
    assert press(page, "esc") == []
    assert page.mode == LIST
    assert store.load_task_definitions() == []


def test_edit_prefills_and_updates(store):
    store.add_task_definition("Walk", "around the block")
    page = loaded_page(store)
    press(page, "e")
    assert page.field.text == "Walk"
    type_text(page, " fast")
    press(page, "enter")
    assert page.field.text == "around the block"
    press(page, "ctrl+u")
    type_text(page, "5k")
    invalidated = deliver(page, press(page, "enter"))
    assert invalidated == [PageID.TODAY, PageID.HISTORY]
    d = store.load_task_definitions()[0]
    assert (d.title, d.description) == ("Walk fast", "5k")
    assert page.definitions[0].title == "Walk fast"


def test_toggle_active_is_optimistic(store):
    store.add_task_definition("Walk")
    page = loaded_page(store)
    effects = press(page, "space")
    assert page.definitions[0].active is False
    assert deliver(page, effects) == [PageID.TODAY, PageID.HISTORY]
    assert store.load_active_tasks() == []
    assert page.status == "deactivated"


def test_toggle_active_failure_rolls_back(store):
    d = store.add_task_definition("Walk")
    page = loaded_page(store)
    press(page, "space")
    page.update(ActiveSaveFailed(d.id, False, "locked"))
    assert page.definitions[0].active is True
    assert page.status == "save failed: locked"


def test_delete_requires_confirmation(store):
    store.add_task_definition("Walk")
    store.add_task_definition("Run")
    page = loaded_page(store)
    press(page, "d")
    assert page.mode == CONFIRM_DELETE
    assert captures_navigation(page) and not captures_global_keys(page)
    assert "Delete 'Walk'?" in rendered(page)
    assert press(page, "n") == []
    assert page.mode == LIST

    press(page, "j", "d")
    invalidated = deliver(page, press(page, "y"))
    assert invalidated == [PageID.TODAY, PageID.HISTORY]
    assert [d.title for d in page.definitions] == ["Walk"]
    assert [d.title for d in store.load_task_definitions()] == ["Walk"]
    assert page.cursor == 0


def test_mutation_failure_is_reported(store):
    page = loaded_page(store)
    assert page.update(MutationFailed("delete", "task x not found")) == []
    assert "delete failed: task x not found" in rendered(page)


def test_edit_of_vanished_task_reports_failure(store):
    d = store.add_task_definition("Walk")
    page = loaded_page(store)
    press(page, "e")
    store.delete_task_definition(d.id)
    press(page, "enter")
    assert deliver(page, press(page, "enter")) == []
    assert page.status.startswith("edit failed")


def test_keys_on_empty_list_are_noops(store):
    page = loaded_page(store)
    assert press(page, "space", "e", "d", "j") == []
    assert page.mode == LIST


def test_rapid_active_toggles_land_in_order(store):
    store.add_task_definition("Walk")
    page = loaded_page(store)
    effects = press(page, "space")
    assert press(page, "space") == []
    assert page.definitions[0].active is True
    # dependents are refreshed once, after the last write
    assert deliver(page, effects) == [PageID.TODAY, PageID.HISTORY]
    assert [t.title for t in store.load_active_tasks()] == ["Walk"]
    assert page.status == "activated"


def test_failed_toggle_sends_the_parked_value(store):
    d = store.add_task_definition("Walk")
    page = loaded_page(store)
    press(page, "space", "space")
    retry = page.update(ActiveSaveFailed(d.id, False, "locked"))
    assert deliver(page, retry) == [PageID.TODAY, PageID.HISTORY]
    assert page.definitions[0].active is True
    assert [t.title for t in store.load_active_tasks()] == ["Walk"]
