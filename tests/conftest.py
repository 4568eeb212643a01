"""Shared fixtures: a scripted stand-in for the native driver module."""

from __future__ import annotations

from types import SimpleNamespace
from typing import Any, List, Optional, Sequence

import pytest

from sqlserver_client.infra.db import mssql


class FakeError(Exception):
    """Plays the part of the driver's DB-API ``Error`` class."""


class FakeCursor:
    def __init__(self, conn: "FakeConnection") -> None:
        self.conn = conn
        self.description = None
        self.closed = False
        self._rows: List[Sequence[Any]] = []
        self._fetch_error: Optional[Exception] = None

    def execute(self, sql: str, params: Any = None) -> None:
        self.conn.executed.append((sql, params))
        self.conn.timeouts.append(self.conn.timeout)
        self.conn.query_timeouts.append(self.conn._conn.query_timeout)
        result = self.conn.next_result()
        if isinstance(result, Exception):
            raise result
        columns, rows = result[0], result[1]
        self._fetch_error = result[2] if len(result) > 2 else None
        if columns is None:
            self.description = None
        else:
            self.description = tuple((c, None, None, None, None, None, None) for c in columns)
        self._rows = list(rows)

    def fetchone(self) -> Optional[Sequence[Any]]:
        if self._fetch_error is not None:
            raise self._fetch_error
        return self._rows.pop(0) if self._rows else None

    def fetchall(self) -> List[Sequence[Any]]:
        if self._fetch_error is not None:
            raise self._fetch_error
        rows, self._rows = self._rows, []
        return rows

    def close(self) -> None:
        self.closed = True


class FakeConnection:
    def __init__(self, results: list) -> None:
        self.results = results
        self.executed: List[tuple] = []
        self.timeouts: List[int] = []
        self.query_timeouts: List[int] = []
        self.cursors: List[FakeCursor] = []
        self.decodings: List[tuple] = []
        self.closed = False
        self.timeout = 0
        # pymssql keeps the per-query timeout on its low-level connection
        self._conn = SimpleNamespace(query_timeout=0)

    def cursor(self) -> FakeCursor:
        cursor = FakeCursor(self)
        self.cursors.append(cursor)
        return cursor

    def next_result(self) -> Any:
        if not self.results:
            return (None, [])
        return self.results.pop(0)

    def setdecoding(self, sqltype: int, encoding: str) -> None:
        self.decodings.append((sqltype, encoding))

    def getinfo(self, code: int) -> str:
        return {1: "msodbcsql17.so", 2: "17.10.0001", 3: "03.80"}[code]

    def close(self) -> None:
        self.closed = True


class FakeDriver:
    """Module-like object exposing what the code reads from pymssql/pyodbc."""

    Error = FakeError
    SQL_CHAR = 99
    SQL_DRIVER_NAME = 1
    SQL_DRIVER_VER = 2
    SQL_DRIVER_ODBC_VER = 3
    __version__ = "2.3.1"
    version = "5.1.0"

    def __init__(self) -> None:
        self.results: list = []
        self.connect_calls: List[tuple] = []
        self.connections: List[FakeConnection] = []
        self.connect_error: Optional[Exception] = None
        self.loaded: List[str] = []

    def connect(self, *args: Any, **kwargs: Any) -> FakeConnection:
        self.connect_calls.append((args, kwargs))
        if self.connect_error is not None:
            raise self.connect_error
        conn = FakeConnection(self.results)
        self.connections.append(conn)
        return conn

    def get_dbversion(self) -> str:
        return "freetds v1.4.10"

    @property
    def executed(self) -> List[tuple]:
        return [stmt for conn in self.connections for stmt in conn.executed]


@pytest.fixture
def fake_driver(monkeypatch):
    driver = FakeDriver()

    def _load(name: str) -> FakeDriver:
        driver.loaded.append(name)
        return driver

    monkeypatch.setattr(mssql, "_load_driver", _load)
    return driver
