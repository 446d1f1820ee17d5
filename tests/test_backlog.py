"""
Tests for the backlog core: schema, ordering, both store backends, config.
"""
import json
import sqlite3

import pytest

from pkg.backlog import file_store as file_store_module
from pkg.backlog import store as store_module
from pkg.backlog.config import Config, ConfigError, open_store
from pkg.backlog.file_store import JsonFileStore
from pkg.backlog.ordering import next_position, normalize_columns, plan_reorder
from pkg.backlog.schema import (
    BacklogItem,
    ItemStatus,
    NotFoundError,
    Project,
    STATUS_ORDER,
    ValidationError,
    group_by_status,
    parse_status,
)
from pkg.backlog.store import SQLiteBacklogStore


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Schema Tests
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


def test_status_order_is_fixed():
    assert STATUS_ORDER == ["backlog", "in_progress", "review", "done"]
    assert ItemStatus.default() == ItemStatus.BACKLOG
    assert ItemStatus.IN_PROGRESS.label == "In Progress"


def test_parse_status_rejects_unknown():
    assert parse_status("review") == ItemStatus.REVIEW
    with pytest.raises(ValidationError, match="Invalid status: blocked"):
        parse_status("blocked")


def test_project_to_dict_hides_secret():
    project = Project(name="Test Project", secret_key="super-secret")
    data = project.to_dict()
    assert "secretKey" not in data
    assert data["id"] == project.id
    assert project.to_dict(include_secret=True)["secretKey"] == "super-secret"


def test_item_from_dict_defaults_missing_position_to_zero():
    item = BacklogItem.from_dict({"id": "a", "projectId": "p", "title": "t", "status": "done"})
    assert item.position == 0
    assert item.status == ItemStatus.DONE
    assert item.description == ""


def test_group_by_status_has_all_columns_in_position_order():
    items = [
        BacklogItem(project_id="p", title="b", position=2, id="b"),
        BacklogItem(project_id="p", title="a", position=1, id="a"),
        BacklogItem(project_id="p", title="r", status=ItemStatus.REVIEW, position=7, id="r"),
    ]
    columns = group_by_status(items)
    assert list(columns) == STATUS_ORDER
    assert [i["id"] for i in columns["backlog"]] == ["a", "b"]
    assert [i["id"] for i in columns["review"]] == ["r"]
    assert columns["in_progress"] == []
    assert columns["done"] == []


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Ordering Tests
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


def test_next_position_empty_column_is_one():
    assert next_position([], "p", ItemStatus.BACKLOG) == 1


def test_next_position_is_max_plus_one_per_project_and_status():
    items = [
        BacklogItem(project_id="p", title="x", position=3),
        BacklogItem(project_id="p", title="y", position=9, status=ItemStatus.DONE),
        BacklogItem(project_id="other", title="z", position=40),
        BacklogItem(project_id="p", title="w", position=1),
    ]
    assert next_position(items, "p", ItemStatus.BACKLOG) == 4
    assert next_position(items, "p", ItemStatus.DONE) == 10
    assert next_position(items, "p", ItemStatus.REVIEW) == 1


def test_normalize_columns_fills_missing_statuses():
    normalized = normalize_columns({"review": ["a", "b"]})
    assert normalized[ItemStatus.REVIEW] == ["a", "b"]
    assert normalized[ItemStatus.BACKLOG] == []
    assert set(normalized) == set(ItemStatus)


@pytest.mark.parametrize("payload", [
    ["not", "a", "dict"],
    {"blocked": []},
    {"backlog": "a"},
    {"backlog": [1]},
    {"backlog": ["a"], "done": ["a"]},
])
def test_normalize_columns_rejects_bad_payloads(payload):
    with pytest.raises(ValidationError):
        normalize_columns(payload)


def test_plan_reorder_assigns_one_based_positions_in_column_order():
    plan = list(plan_reorder(normalize_columns({"done": ["d"], "backlog": ["b2", "b1"]})))
    assert plan == [
        ("b2", ItemStatus.BACKLOG, 1),
        ("b1", ItemStatus.BACKLOG, 2),
        ("d", ItemStatus.DONE, 1),
    ]


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Store contract (runs against both backends)
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


def test_create_project_trims_and_looks_up_by_secret(store):
    project = store.create_project("  Test Project ", " super-secret ")
    assert project.name == "Test Project"
    assert project.secret_key == "super-secret"
    assert store.get_project(project.id) == project
    assert store.get_project_by_secret("super-secret").id == project.id
    assert store.get_project_by_secret("  super-secret  ").id == project.id
    assert store.get_project_by_secret("") is None
    assert store.get_project_by_secret("nope") is None


def test_duplicate_secret_rejected_regardless_of_name(store):
    store.create_project("Project A", "dup-key")
    with pytest.raises(ValidationError, match="Secret key already exists"):
        store.create_project("Project B", "dup-key")
    assert len(store.list_projects()) == 1


@pytest.mark.parametrize("name,secret,message", [
    ("", "key", "Project name is required."),
    ("   ", "key", "Project name is required."),
    ("Name", "", "Secret key is required."),
    ("Name", None, "Secret key is required."),
])
def test_create_project_requires_fields(store, name, secret, message):
    with pytest.raises(ValidationError, match=message):
        store.create_project(name, secret)


def test_created_items_append_to_their_column(store):
    project = store.create_project("Board", "k")
    first = store.create_item(project.id, "First task")
    second = store.create_item(project.id, "Second task", description="  more  ")
    review = store.create_item(project.id, "Review me", status="review")

    assert first.status == ItemStatus.BACKLOG
    assert (first.position, second.position) == (1, 2)
    assert second.description == "more"
    assert review.position == 1


def test_new_item_position_exceeds_existing_after_gaps(store):
    project = store.create_project("Board", "k")
    a = store.create_item(project.id, "a")
    b = store.create_item(project.id, "b")
    store.create_item(project.id, "c")
    store.delete_item(project.id, b.id)
    store.reorder_items(project.id, {"backlog": [a.id]})
    # "c" was left at position 3; max+1 must clear it
    d = store.create_item(project.id, "d")
    positions = [i["position"] for i in store.get_board(project.id)["backlog"] if i["id"] != d.id]
    assert all(d.position > p for p in positions)


def test_create_item_validation(store):
    project = store.create_project("Board", "k")
    with pytest.raises(ValidationError, match="Item title is required."):
        store.create_item(project.id, "   ")
    with pytest.raises(ValidationError, match="Invalid status"):
        store.create_item(project.id, "x", status="blocked")
    with pytest.raises(NotFoundError, match="Project not found."):
        store.create_item("missing", "x")


def test_status_change_appends_to_destination_and_leaves_gap(store):
    project = store.create_project("Board", "k")
    a = store.create_item(project.id, "a")
    b = store.create_item(project.id, "b")
    store.create_item(project.id, "wip", status="in_progress")

    moved = store.update_item(project.id, a.id, {"status": "in_progress"})
    assert moved.status == ItemStatus.IN_PROGRESS
    assert moved.position == 2

    board = store.get_board(project.id)
    assert [(i["id"], i["position"]) for i in board["backlog"]] == [(b.id, 2)]


def test_title_edit_keeps_position(store):
    project = store.create_project("Board", "k")
    store.create_item(project.id, "a")
    b = store.create_item(project.id, "b")
    updated = store.update_item(project.id, b.id, {"title": " renamed ", "status": "backlog"})
    assert updated.title == "renamed"
    assert updated.position == 2


def test_update_item_rejects_empty_title_and_unknown_item(store):
    project = store.create_project("Board", "k")
    item = store.create_item(project.id, "a")
    with pytest.raises(ValidationError, match="Item title cannot be empty."):
        store.update_item(project.id, item.id, {"title": "  "})
    with pytest.raises(NotFoundError, match="Item not found."):
        store.update_item(project.id, "missing", {"title": "x"})
    assert store.list_items(project.id)[0].title == "a"


def test_items_are_scoped_to_their_project(store):
    one = store.create_project("One", "k1")
    two = store.create_project("Two", "k2")
    item = store.create_item(one.id, "a")
    with pytest.raises(NotFoundError):
        store.delete_item(two.id, item.id)
    assert store.create_item(two.id, "b").position == 1


def test_delete_project_cascades_items(store):
    project = store.create_project("Board", "k")
    other = store.create_project("Other", "k2")
    store.create_item(project.id, "a")
    store.create_item(other.id, "b")

    assert store.delete_project(project.id) is True
    assert store.get_project(project.id) is None
    assert store.list_items(project.id) == []
    assert len(store.list_items(other.id)) == 1
    assert store.delete_project(project.id) is False


def test_reorder_rewrites_positions_and_statuses(store):
    project = store.create_project("Board", "k")
    a = store.create_item(project.id, "a")
    b = store.create_item(project.id, "b")
    c = store.create_item(project.id, "c")

    board = store.reorder_items(project.id, {
        "backlog": [c.id, a.id],
        "in_progress": [],
        "review": [],
        "done": [b.id],
    })
    assert [i["id"] for i in board["backlog"]] == [c.id, a.id]
    assert [i["position"] for i in board["backlog"]] == [1, 2]
    assert [(i["id"], i["status"], i["position"]) for i in board["done"]] == [(b.id, "done", 1)]


def test_reorder_is_idempotent(store):
    project = store.create_project("Board", "k")
    ids = [store.create_item(project.id, t).id for t in "abc"]
    payload = {"backlog": [ids[2]], "review": [ids[0], ids[1]]}
    first = store.reorder_items(project.id, payload)
    second = store.reorder_items(project.id, payload)
    strip = lambda cols: {s: [(i["id"], i["position"]) for i in items] for s, items in cols.items()}
    assert strip(first) == strip(second)


def test_reorder_skips_unknown_ids_and_leaves_unlisted_items(store):
    project = store.create_project("Board", "k")
    other = store.create_project("Other", "k2")
    a = store.create_item(project.id, "a")
    b = store.create_item(project.id, "b", status="review")
    foreign = store.create_item(other.id, "x")

    board = store.reorder_items(project.id, {"done": ["ghost", foreign.id, a.id]})
    assert [(i["id"], i["position"]) for i in board["done"]] == [(a.id, 3)]
    assert [i["id"] for i in board["review"]] == [b.id]
    assert store.list_items(other.id)[0].status == ItemStatus.BACKLOG


def test_reorder_unknown_project(store):
    with pytest.raises(NotFoundError):
        store.reorder_items("missing", {})


def test_reorder_failure_midway_leaves_board_untouched(store, monkeypatch):
    project = store.create_project("Board", "k")
    a = store.create_item(project.id, "a")
    b = store.create_item(project.id, "b")
    before = store.get_board(project.id)

    def exploding_plan(columns):
        yield a.id, ItemStatus.DONE, 1
        raise RuntimeError("disk on fire")

    module = file_store_module if isinstance(store, JsonFileStore) else store_module
    monkeypatch.setattr(module, "plan_reorder", exploding_plan)

    with pytest.raises(RuntimeError):
        store.reorder_items(project.id, {"done": [a.id, b.id]})
    assert store.get_board(project.id) == before


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Backend specifics
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


def test_file_store_creates_default_document(tmp_path):
    path = tmp_path / "nested" / "database.json"
    JsonFileStore(str(path))
    assert json.loads(path.read_text()) == {"projects": [], "items": []}


def test_file_store_document_layout(tmp_path):
    path = tmp_path / "database.json"
    store = JsonFileStore(str(path))
    project = store.create_project("Board", "k")
    store.create_item(project.id, "a")
    data = json.loads(path.read_text())
    assert data["projects"][0]["secretKey"] == "k"
    assert data["items"][0]["projectId"] == project.id
    assert data["items"][0]["position"] == 1


def test_file_store_recovers_from_corrupt_file_and_keeps_backup(tmp_path, caplog):
    path = tmp_path / "database.json"
    path.write_text("{ this is not json")
    store = JsonFileStore(str(path))

    assert store.list_projects() == []
    backups = list(tmp_path.glob("database.json.corrupt-*"))
    assert len(backups) == 1
    assert backups[0].read_text() == "{ this is not json"
    assert json.loads(path.read_text()) == {"projects": [], "items": []}
    assert any("unreadable" in r.message for r in caplog.records)


@pytest.mark.parametrize("document", [
    {"projects": [], "items": [{"id": "i1", "projectId": "p1", "title": "x", "status": "todo"}]},
    {"projects": {"p1": {"name": "x"}}, "items": []},
    {"projects": [{"name": "no id"}], "items": []},
    {"projects": [], "items": ["i1"]},
    {"projects": [], "items": [{"id": "i1", "position": "first"}]},
])
def test_file_store_recovers_from_malformed_document(tmp_path, caplog, document):
    path = tmp_path / "database.json"
    path.write_text(json.dumps(document))
    store = JsonFileStore(str(path))

    assert store.list_projects() == []
    assert store.list_items("p1") == []
    backups = list(tmp_path.glob("database.json.corrupt-*"))
    assert len(backups) == 1
    assert json.loads(backups[0].read_text()) == document
    assert json.loads(path.read_text()) == {"projects": [], "items": []}
    assert any("unreadable" in r.message for r in caplog.records)


def test_file_store_accepts_document_without_item_positions(tmp_path):
    path = tmp_path / "database.json"
    path.write_text(json.dumps({
        "projects": [{"id": "p1", "name": "Board", "secretKey": "k"}],
        "items": [{"id": "i1", "projectId": "p1", "title": "legacy", "status": "review"}],
    }))
    store = JsonFileStore(str(path))

    assert [i.title for i in store.list_items("p1")] == ["legacy"]
    assert list(tmp_path.glob("database.json.corrupt-*")) == []


def test_sqlite_enforces_unique_secret_at_schema_level(tmp_path):
    store = SQLiteBacklogStore(str(tmp_path / "backlog.db"))
    store.create_project("A", "same")
    conn = sqlite3.connect(store.db_path)
    try:
        with pytest.raises(sqlite3.IntegrityError):
            conn.execute(
                "INSERT INTO projects (id, name, secret_key, created_at) VALUES ('x', 'B', 'same', 'now')"
            )
    finally:
        conn.close()


def test_sqlite_store_persists_across_instances(tmp_path):
    db = str(tmp_path / "backlog.db")
    project = SQLiteBacklogStore(db).create_project("Board", "k")
    assert SQLiteBacklogStore(db).get_project(project.id).name == "Board"


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Config Tests
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


def test_config_defaults_without_file(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    cfg = Config.load(environ={})
    assert cfg.port == 5000
    assert cfg.database_url is None
    assert cfg.data_file == "data/database.json"


def test_config_yaml_then_env(tmp_path):
    path = tmp_path / "backlog.yaml"
    path.write_text("port: 8080\ndata_file: /tmp/board.json\nunknown_key: 1\n")
    cfg = Config.load(str(path), environ={"PORT": "9000", "BACKLOG_LOG_LEVEL": "DEBUG"})
    assert cfg.port == 9000
    assert cfg.data_file == "/tmp/board.json"
    assert cfg.log_level == "DEBUG"


def test_config_errors(tmp_path, monkeypatch):
    bad = tmp_path / "bad.yaml"
    bad.write_text("port: [unclosed\n")
    with pytest.raises(ConfigError):
        Config.load(str(bad), environ={})
    with pytest.raises(ConfigError):
        Config.load(str(tmp_path / "missing.yaml"), environ={})

    monkeypatch.chdir(tmp_path)
    with pytest.raises(ConfigError, match="PORT must be int"):
        Config.load(environ={"PORT": "abc"})


def test_open_store_selects_backend_from_database_url(tmp_path):
    file_cfg = Config(data_file=str(tmp_path / "db.json"))
    assert isinstance(open_store(file_cfg), JsonFileStore)

    sql_cfg = Config(database_url=f"sqlite:///{tmp_path / 'db.sqlite'}")
    store = open_store(sql_cfg)
    assert isinstance(store, SQLiteBacklogStore)
    assert store.db_path == str(tmp_path / "db.sqlite")

    with pytest.raises(ConfigError):
        open_store(Config(database_url="postgres://localhost/backlog"))


def test_config_yaml_values_are_coerced(tmp_path):
    path = tmp_path / "backlog.yaml"
    path.write_text('port: "8080"\nlog_level: 10\ndatabase_url: null\n')
    cfg = Config.load(str(path), environ={})
    assert cfg.port == 8080
    assert cfg.log_level == "10"
    assert cfg.database_url is None


@pytest.mark.parametrize("content,match", [
    ("port: abc\n", "port in .* must be int"),
    ("database_url: [a, b]\n", "database_url in .* must be str"),
    ("host: {a: 1}\n", "host in .* must be str"),
])
def test_config_rejects_mistyped_yaml_values(tmp_path, content, match):
    path = tmp_path / "backlog.yaml"
    path.write_text(content)
    with pytest.raises(ConfigError, match=match):
        Config.load(str(path), environ={})


def test_sqlite_url_slashes_select_relative_or_absolute_path():
    assert Config(database_url="sqlite:///data/backlog.db").sqlite_path() == "data/backlog.db"
    assert Config(database_url="sqlite:////var/lib/backlog.db").sqlite_path() == "/var/lib/backlog.db"
    assert Config(database_url="/srv/backlog.db").sqlite_path() == "/srv/backlog.db"
    assert Config(database_url="  ").sqlite_path() is None
