import pytest

from graphtodo.config import GraphMode, Settings
from graphtodo.models import Todo
from graphtodo.storage import executor as executor_module
from graphtodo.storage.errors import GraphQueryError, GraphUnavailableError, RowTypeError
from graphtodo.storage.executor import (
    EmbeddedGraphBackend,
    GraphBackend,
    QueryExecutor,
    RemoteGraphBackend,
    ResultRow,
    create_backend,
)
from graphtodo.storage.todos import TodoRepository


@pytest.fixture
def backend(tmp_path):
    backend = EmbeddedGraphBackend(db_path=tmp_path / "todos.kuzu")
    yield backend
    backend.close()


@pytest.fixture
def repository(backend):
    return TodoRepository(QueryExecutor(backend))


def _as_set(todos):
    return {(todo.id, todo.title, todo.completed) for todo in todos}


class RecordingBackend(GraphBackend):
    mode = GraphMode.EMBEDDED

    def __init__(self, fail_on_ids=()):
        self.calls = []
        self.fail_on_ids = set(fail_on_ids)

    def run_query(self, query, params):
        self.calls.append((query, dict(params)))
        if params.get("id") in self.fail_on_ids:
            raise GraphQueryError(f"boom: {params['id']}")
        return []


def test_empty_store_lists_nothing(repository):
    assert repository.list_todos() == []
    assert repository.count_todos() == 0


def test_replace_all_then_list_round_trip(repository):
    repository.replace_all([Todo(id="t1", title="Buy milk", completed=False)])

    assert repository.list_todos() == [Todo(id="t1", title="Buy milk", completed=False)]


def test_replace_all_round_trip_ignores_order(repository):
    todos = [
        Todo(id="a", title="First", completed=True),
        Todo(id="b", title="Second", completed=False),
        Todo(id="c", title="Third", completed=False),
    ]
    repository.replace_all(todos)

    assert _as_set(repository.list_todos()) == _as_set(todos)
    assert repository.count_todos() == 3


def test_listing_is_idempotent(repository):
    repository.replace_all(
        [Todo(id="1", title="A"), Todo(id="2", title="B", completed=True)]
    )

    assert _as_set(repository.list_todos()) == _as_set(repository.list_todos())


def test_resubmitting_same_id_does_not_duplicate(repository):
    todo = Todo(id="1", title="A", completed=False)
    repository.replace_all([todo])
    repository.replace_all([todo])

    todos = repository.list_todos()
    assert len(todos) == 1
    assert todos[0].id == "1"


def test_duplicate_ids_in_one_batch_upsert_in_place(repository):
    repository.replace_all(
        [Todo(id="1", title="Old", completed=False), Todo(id="1", title="New", completed=True)]
    )

    assert repository.list_todos() == [Todo(id="1", title="New", completed=True)]


def test_replace_all_clears_stale_records(repository):
    repository.replace_all([Todo(id=str(i), title=f"T{i}") for i in (1, 2, 3)])
    repository.replace_all([Todo(id="4", title="Fresh", completed=True)])

    assert repository.list_todos() == [Todo(id="4", title="Fresh", completed=True)]


def test_replace_all_with_empty_list_deletes_everything(repository):
    repository.replace_all([Todo(id="1", title="A")])
    repository.replace_all([])

    assert repository.list_todos() == []


def test_item_without_id_is_skipped_and_rest_continue(repository, caplog):
    repository.replace_all(
        [
            Todo(id="1", title="A"),
            Todo(title="no id"),
            Todo(id="  ", title="blank id"),
            Todo(id="2", title="B"),
        ]
    )

    assert {todo.id for todo in repository.list_todos()} == {"1", "2"}
    assert "Failed to upsert todo" in caplog.text


def test_per_item_query_failure_is_isolated():
    backend = RecordingBackend(fail_on_ids={"bad"})
    repository = TodoRepository(QueryExecutor(backend))

    repository.replace_all([Todo(id="bad", title="x"), Todo(id="ok", title="y")])

    merged_ids = [params["id"] for _, params in backend.calls if "id" in params]
    assert merged_ids == ["bad", "ok"]
    assert "DELETE" in backend.calls[0][0]


def test_unavailable_backend_aborts_replace_all():
    class DownBackend(RecordingBackend):
        def run_query(self, query, params):
            raise GraphUnavailableError("down")

    repository = TodoRepository(QueryExecutor(DownBackend()))
    with pytest.raises(GraphUnavailableError):
        repository.replace_all([Todo(id="1", title="A")])


def test_merge_binds_parameters_by_name():
    backend = RecordingBackend()
    repository = TodoRepository(QueryExecutor(backend))

    repository.replace_all([Todo(id="x' OR 1=1 //", title="t", completed=True)])

    query, params = backend.calls[1]
    assert "$id" in query
    assert "OR 1=1" not in query
    assert params == {"id": "x' OR 1=1 //", "title": "t", "completed": True}


def test_executor_materializes_rows_in_column_order(backend):
    executor = QueryExecutor(backend)
    executor.execute(
        "CREATE (n:Todo {guid: $id, title: $title, completed: $completed})",
        {"id": "1", "title": "A", "completed": True},
    )

    rows = executor.execute(
        "MATCH (n:Todo) RETURN n.title AS title, n.guid AS guid, n.completed AS completed"
    )

    assert isinstance(rows, list)
    assert list(rows[0].keys()) == ["title", "guid", "completed"]
    assert rows[0].get_bool("completed") is True


def test_executor_returns_empty_list_when_nothing_matches(backend):
    assert QueryExecutor(backend).execute("MATCH (n:Todo) RETURN n.guid AS guid") == []


def test_executor_reports_malformed_query(backend):
    with pytest.raises(GraphQueryError):
        QueryExecutor(backend).execute("MATCH (n:Todo RETURN n")


def test_result_row_typed_access():
    row = ResultRow({"guid": "1", "completed": False, "total": 3})

    assert row.get_str("guid") == "1"
    assert row.get_bool("completed") is False
    assert row.get_int("total") == 3
    assert dict(row) == {"guid": "1", "completed": False, "total": 3}


def test_result_row_rejects_type_mismatch():
    row = ResultRow({"guid": 1, "completed": "yes", "total": True})

    with pytest.raises(RowTypeError) as excinfo:
        row.get_str("guid")
    assert excinfo.value.column == "guid"
    with pytest.raises(RowTypeError):
        row.get_bool("completed")
    with pytest.raises(RowTypeError):
        row.get_int("total")
    with pytest.raises(KeyError):
        row.get_str("missing")


def test_list_todos_fails_clearly_on_bad_row():
    class BadRowBackend(RecordingBackend):
        def run_query(self, query, params):
            return [{"guid": "1", "title": None, "completed": False}]

    repository = TodoRepository(QueryExecutor(BadRowBackend()))
    with pytest.raises(RowTypeError):
        repository.list_todos()


def test_embedded_mode_never_creates_remote_driver(monkeypatch, tmp_path):
    def _forbidden(*args, **kwargs):
        raise AssertionError("remote driver must not be created in embedded mode")

    monkeypatch.setattr(executor_module.GraphDatabase, "driver", _forbidden)
    settings = Settings(GRAPH_MODE="embedded", KUZU_DB_PATH=str(tmp_path / "todos.kuzu"))

    backend = create_backend(settings)
    try:
        assert isinstance(backend, EmbeddedGraphBackend)
        assert QueryExecutor(backend).mode == GraphMode.EMBEDDED
    finally:
        backend.close()


def test_remote_mode_never_opens_embedded_database(monkeypatch):
    class FakeResult:
        def __iter__(self):
            return iter([])

    class FakeSession:
        def __init__(self, database):
            self.database = database

        def __enter__(self):
            return self

        def __exit__(self, *exc):
            return False

        def run(self, query, params):
            return FakeResult()

    class FakeDriver:
        def session(self, database=None):
            return FakeSession(database)

        def close(self):
            pass

    def _forbidden(*args, **kwargs):
        raise AssertionError("embedded database must not be opened in remote mode")

    monkeypatch.setattr(executor_module.kuzu, "Database", _forbidden)
    monkeypatch.setattr(
        executor_module.GraphDatabase, "driver", lambda uri, auth=None: FakeDriver()
    )
    settings = Settings(
        GRAPH_MODE="REMOTE",
        NEO4J_URI="bolt://localhost:7687",
        NEO4J_USER="neo4j",
        NEO4J_PASSWORD="secret",
    )

    backend = create_backend(settings)

    assert isinstance(backend, RemoteGraphBackend)
    assert TodoRepository(QueryExecutor(backend)).list_todos() == []


def test_remote_backend_maps_driver_errors(monkeypatch):
    from neo4j.exceptions import DriverError, ServiceUnavailable

    class FailingDriver:
        def __init__(self, exc):
            self.exc = exc

        def session(self, database=None):
            raise self.exc

        def close(self):
            pass

    backend = RemoteGraphBackend.__new__(RemoteGraphBackend)
    backend.uri = "bolt://example:7687"
    backend.database = None

    backend.driver = FailingDriver(ServiceUnavailable("no route"))
    with pytest.raises(GraphUnavailableError):
        backend.run_query("RETURN 1", {})

    backend.driver = FailingDriver(DriverError("bad result"))
    with pytest.raises(GraphQueryError):
        backend.run_query("RETURN", {})


def test_create_backend_requires_mode(monkeypatch):
    monkeypatch.delenv("GRAPH_MODE", raising=False)
    with pytest.raises(RuntimeError, match="GRAPH_MODE"):
        create_backend(Settings(_env_file=None))


def test_remote_mode_requires_uri():
    with pytest.raises(RuntimeError, match="NEO4J_URI"):
        Settings(GRAPH_MODE="remote").require_graph_mode()


def test_embedded_path_under_regular_file_is_unavailable(tmp_path):
    blocker = tmp_path / "not-a-dir"
    blocker.write_text("")

    with pytest.raises(GraphUnavailableError):
        EmbeddedGraphBackend(db_path=blocker / "todos.kuzu")


def test_query_log_omits_parameter_values(caplog):
    executor = QueryExecutor(RecordingBackend())

    with caplog.at_level("DEBUG", logger="graphtodo.storage.executor"):
        executor.execute(
            "MERGE (n:Todo {guid: $id}) SET n.title = $title",
            {"id": "1", "title": "secret plans"},
        )

    assert "['id', 'title']" in caplog.text
    assert "secret plans" not in caplog.text
