"""Tests for the backend connections."""

from __future__ import annotations

from typing import Any

import pytest

from hivesession.connections import (
    DEMO_NATIVE_CONF,
    AsyncpgBackendConnection,
    BackendConfigError,
    BackendConnection,
    BackendExecutionError,
    DemoBackendConnection,
    create_backend,
)
from hivesession.models import BackendProfile, BackendRole


def test_demo_backend_applies_set_statements() -> None:
    backend = DemoBackendConnection(role=BackendRole.METADATA)

    assert backend.run_statement("SET a.b=1") == []
    assert backend.run_statement("set a.b") == ["a.b=1"]
    assert backend.run_statement("SET missing.key") == ["missing.key is undefined"]
    assert backend.native_conf()["a.b"] == "1"
    assert isinstance(backend, BackendConnection)


def test_demo_backend_lists_all_settings() -> None:
    profile = BackendProfile(name="exec", native_conf={"b": "2", "a": "1"})
    backend = DemoBackendConnection(profile)

    assert backend.run_statement("SET") == ["a=1", "b=2"]


def test_demo_backend_seeds_native_conf_from_presets() -> None:
    backend = DemoBackendConnection()

    assert backend.native_conf() == dict(DEMO_NATIVE_CONF)


def test_demo_backend_registers_and_drops_functions() -> None:
    backend = DemoBackendConnection()

    backend.run_statement("CREATE TEMPORARY FUNCTION Foo AS 'com.example.Foo'")
    assert backend.functions == {"foo": "AS 'com.example.Foo'"}
    assert backend.run_statement("SHOW FUNCTIONS") == ["foo"]

    backend.run_statement("DROP TEMPORARY FUNCTION foo")
    assert backend.functions == {}
    with pytest.raises(BackendExecutionError):
        backend.run_statement("DROP FUNCTION foo")
    assert backend.run_statement("DROP FUNCTION IF EXISTS foo") == []


def test_demo_backend_returns_canned_responses() -> None:
    backend = DemoBackendConnection(responses={"SELECT   1": ["1"]})

    assert backend.run_statement("select 1") == ["1"]
    assert backend.statements == ["select 1"]


def test_demo_backend_rejects_empty_statement_and_bad_keys() -> None:
    backend = DemoBackendConnection()

    with pytest.raises(BackendExecutionError):
        backend.run_statement("   ")
    with pytest.raises(BackendConfigError):
        backend.set_conf("bad key", "1")


def test_demo_backend_tracks_resources_once() -> None:
    backend = DemoBackendConnection()

    backend.add_resource("/tmp/udfs.jar")
    backend.run_statement("ADD JAR /tmp/udfs.jar")
    backend.run_statement("add file /tmp/lookup.csv")

    assert backend.resources == ("/tmp/udfs.jar", "/tmp/lookup.csv")


def test_create_backend_picks_implementation() -> None:
    backend = create_backend(BackendProfile(name="m", kind="demo"), BackendRole.METADATA)

    assert isinstance(backend, DemoBackendConnection)
    assert backend.role is BackendRole.METADATA
    with pytest.raises(ValueError):
        create_backend(BackendProfile(name="x", kind="oracle"), BackendRole.METADATA)


class _FakeConnection:
    def __init__(self, rows: list[dict[str, Any]] | None = None, error: Exception | None = None) -> None:
        self.rows = rows or []
        self.error = error
        self.queries: list[tuple[str, tuple[object, ...]]] = []
        self.closed = False

    async def fetch(self, query: str, *args: object) -> list[dict[str, Any]]:
        self.queries.append((query, args))
        if self.error is not None:
            raise self.error
        return self.rows

    async def close(self) -> None:
        self.closed = True


def _asyncpg_backend(monkeypatch: pytest.MonkeyPatch, conn: _FakeConnection) -> AsyncpgBackendConnection:
    connects: list[dict[str, Any]] = []

    async def _connect(**kwargs: Any) -> _FakeConnection:
        connects.append(kwargs)
        return conn

    monkeypatch.setattr("hivesession.connections.asyncpg.connect", _connect)
    profile = BackendProfile(name="pg", kind="postgres", host="localhost", database="hive", user="hive")
    backend = AsyncpgBackendConnection(profile, BackendRole.EXECUTION)
    backend.connects = connects  # type: ignore[attr-defined]
    return backend


def test_asyncpg_backend_runs_statements_on_one_connection(monkeypatch: pytest.MonkeyPatch) -> None:
    conn = _FakeConnection(rows=[{"id": 1, "name": "alice"}, {"id": 2, "name": None}])
    backend = _asyncpg_backend(monkeypatch, conn)

    try:
        first = backend.run_statement("SELECT id, name FROM accounts")
        backend.run_statement("SELECT 1")
        assert first == ["1\talice", "2\tNULL"]
        assert len(backend.connects) == 1  # type: ignore[attr-defined]
        assert backend.connects[0]["database"] == "hive"  # type: ignore[attr-defined]
    finally:
        backend.shutdown()
    assert conn.closed is True


def test_asyncpg_backend_sets_conf_with_parameters(monkeypatch: pytest.MonkeyPatch) -> None:
    conn = _FakeConnection()
    backend = _asyncpg_backend(monkeypatch, conn)

    try:
        backend.set_conf("hive.exec.mode", "nonstrict")
        assert conn.queries[-1] == ("SELECT set_config($1, $2, false)", ("hive.exec.mode", "nonstrict"))
    finally:
        backend.shutdown()


def test_asyncpg_backend_surfaces_config_errors(monkeypatch: pytest.MonkeyPatch) -> None:
    conn = _FakeConnection(error=RuntimeError("unrecognized configuration parameter"))
    backend = _asyncpg_backend(monkeypatch, conn)

    try:
        with pytest.raises(BackendConfigError):
            backend.set_conf("nodot", "1")
        with pytest.raises(BackendExecutionError):
            backend.run_statement("SELECT 1")
    finally:
        backend.shutdown()


def test_asyncpg_backend_reads_native_conf(monkeypatch: pytest.MonkeyPatch) -> None:
    conn = _FakeConnection(rows=[{"name": "search_path", "setting": "public"}])
    backend = _asyncpg_backend(monkeypatch, conn)

    try:
        assert backend.native_conf() == {"search_path": "public"}
    finally:
        backend.shutdown()


def test_asyncpg_backend_records_loaded_resources(monkeypatch: pytest.MonkeyPatch) -> None:
    conn = _FakeConnection()
    backend = _asyncpg_backend(monkeypatch, conn)

    try:
        backend.add_resource("/usr/lib/it's.so")
        assert conn.queries[-1][0] == "LOAD '/usr/lib/it''s.so'"
        assert backend.resources == ("/usr/lib/it's.so",)
    finally:
        backend.shutdown()


def test_asyncpg_backend_surfaces_connection_errors(monkeypatch: pytest.MonkeyPatch) -> None:
    async def _broken_connect(**kwargs: Any) -> None:
        raise RuntimeError("boom")

    monkeypatch.setattr("hivesession.connections.asyncpg.connect", _broken_connect)
    backend = AsyncpgBackendConnection(BackendProfile(name="Broken"), BackendRole.METADATA)

    try:
        with pytest.raises(BackendExecutionError):
            backend.run_statement("SELECT 1")
    finally:
        backend.shutdown()


def test_demo_backend_keeps_set_value_whitespace() -> None:
    backend = DemoBackendConnection()

    backend.set_conf("mapred.job.name", " nightly ")

    assert backend.native_conf()["mapred.job.name"] == " nightly "
    assert backend.run_statement("SET mapred.job.name") == ["mapred.job.name= nightly "]


def test_demo_backend_applies_set_even_with_canned_response() -> None:
    backend = DemoBackendConnection(responses={"SET a.b=1": ["ignored"]})

    backend.set_conf("a.b", "1")

    assert backend.native_conf()["a.b"] == "1"
