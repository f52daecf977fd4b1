import datetime as dt
import os
import sqlite3
import stat

import pytest

from stet.errors import StoreError
from stet.store import Store

DAY = dt.date(2024, 3, 15)


def _table_names(conn) -> set:
    return {
        row[0]
        for row in conn.execute("SELECT name FROM sqlite_master WHERE type='table'")
    }


def _history_rows(conn) -> int:
    return conn.execute("SELECT COUNT(*) FROM task_history").fetchone()[0]


@pytest.mark.parametrize('db_path', [':memory:'])
def test_store_fresh_setup_creates_schema(db_path):
    s = Store(db_path)
    try:
        assert {'task_definitions', 'task_history', 'journal_entries'} <= _table_names(s.conn)
        assert {'active', 'deleted'} <= set(s._cols('task_definitions'))
        mode = s.conn.execute("PRAGMA journal_mode").fetchone()[0]
        assert str(mode).lower() in {'wal', 'memory'}
    finally:
        s.close()


def test_store_migrates_legacy_task_table(temp_db_path):
    conn = sqlite3.connect(temp_db_path)
    conn.execute(
        "CREATE TABLE task_definitions (id TEXT PRIMARY KEY, title TEXT NOT NULL, "
        "description TEXT NOT NULL DEFAULT '', created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP)"
    )
    conn.execute("INSERT INTO task_definitions (id, title) VALUES ('t1', 'Stretch')")
    conn.commit()
    conn.close()

    s = Store(str(temp_db_path))
    try:
        assert {'active', 'deleted'} <= set(s._cols('task_definitions'))
        tasks = s.load_today_tasks(DAY)
        assert [t.title for t in tasks] == ['Stretch']
        assert tasks[0].completed is False
    finally:
        s.close()


def test_store_open_creates_private_parent_dir(tmp_path):
    path = tmp_path / "nested" / "data.db"
    s = Store.open(str(path))
    try:
        assert path.exists()
        mode = stat.S_IMODE(os.stat(path.parent).st_mode)
        assert mode & 0o077 == 0
    finally:
        s.close()


def test_store_open_wraps_failures(tmp_path):
    blocker = tmp_path / "file"
    blocker.write_text("not a directory")
    with pytest.raises(StoreError):
        Store.open(str(blocker / "data.db"))


def test_today_tasks_follow_creation_order_and_skip_inactive(store):
    a = store.add_task_definition("Read", "20 pages")
    b = store.add_task_definition("Walk")
    c = store.add_task_definition("Floss")
    store.set_task_active(b.id, False)
    store.delete_task_definition(c.id)

    tasks = store.load_today_tasks(DAY)
    assert [t.id for t in tasks] == [a.id]
    assert tasks[0].description == "20 pages"


def test_toggle_twice_leaves_no_rows(store):
    t = store.add_task_definition("Read")
    store.set_completion(t.id, DAY, True)
    store.set_completion(t.id, DAY, True)
    assert _history_rows(store.conn) == 1
    assert store.load_today_tasks(DAY)[0].completed is True

    store.set_completion(t.id, DAY, False)
    assert _history_rows(store.conn) == 0
    assert store.load_today_tasks(DAY)[0].completed is False


def test_completions_are_per_day(store):
    t = store.add_task_definition("Read")
    yesterday = DAY - dt.timedelta(days=1)
    store.set_completion(t.id, yesterday, True)
    store.set_completion(t.id, DAY - dt.timedelta(days=40), True)

    assert store.load_today_tasks(DAY)[0].completed is False
    got = store.load_completions(DAY - dt.timedelta(days=30), yesterday)
    assert got == {t.id: {yesterday.isoformat()}}


def test_definition_crud(store):
    t = store.add_task_definition("  Meditate  ", " 10 minutes ")
    assert t.title == "Meditate"
    assert t.description == "10 minutes"
    assert t.active is True

    store.update_task_definition(t.id, "Meditate daily", "")
    store.set_task_active(t.id, False)
    defs = store.load_task_definitions()
    assert [(d.title, d.description, d.active) for d in defs] == [("Meditate daily", "", False)]

    store.delete_task_definition(t.id)
    assert store.load_task_definitions() == []


def test_definition_errors(store):
    with pytest.raises(ValueError):
        store.add_task_definition("   ")
    with pytest.raises(LookupError):
        store.set_task_active("missing", True)
    t = store.add_task_definition("Run")
    store.delete_task_definition(t.id)
    with pytest.raises(LookupError):
        store.delete_task_definition(t.id)


def test_soft_delete_keeps_history(store):
    t = store.add_task_definition("Run")
    store.set_completion(t.id, DAY, True)
    store.delete_task_definition(t.id)
    assert _history_rows(store.conn) == 1
    assert store.load_active_tasks() == []


def test_journal_load_or_create_is_idempotent(store):
    first = store.load_or_create_journal_entry(DAY)
    second = store.load_or_create_journal_entry(DAY)
    assert first.id == second.id
    assert first.content == ""
    assert first.date == DAY
    count = store.conn.execute("SELECT COUNT(*) FROM journal_entries").fetchone()[0]
    assert count == 1


def test_journal_update_and_listing(store):
    old = store.load_or_create_journal_entry(DAY - dt.timedelta(days=2))
    new = store.load_or_create_journal_entry(DAY)
    store.update_journal_content(old.id, "older")
    store.update_journal_content(new.id, "newer")

    entries = store.load_journal_entries()
    assert [e.content for e in entries] == ["newer", "older"]
    assert store.load_or_create_journal_entry(DAY).content == "newer"

    with pytest.raises(LookupError):
        store.update_journal_content("missing", "x")
