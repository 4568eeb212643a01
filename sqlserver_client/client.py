"""
Object oriented access to a single SQL Server connection.

``SQLServer`` opens its connection lazily on first use and offers a few
accessors on top of a single ``query`` primitive:

* ``get_one`` – one field of the first row,
* ``get_assoc_row`` – the first row as a dict,
* ``get_assoc_rows`` – all rows, optionally keyed by a column,

plus metadata lookups (schema and object ids, current user, stored
procedure introspection).  Example::

    from sqlserver_client import SQLServer

    with SQLServer("localhost,1433", {"Database": "app", "UID": "sa", "PWD": "..."}) as db:
        name = db.get_one("SELECT name FROM sys.databases WHERE database_id = ?", [1])
        params = db.proc_params("usp_orders_by_customer", "sales")
"""

from __future__ import annotations

import logging
import weakref
from typing import Any, Dict, List, Mapping, Optional, Union

from .config import Config, config
from .config.queries import queries, quote_identifier
from .errors import FetchError
from .infra.db.mssql import Db, Params, connect, parse_connection_string, rows_as_dicts

CURRENT_USER = 0
SYSTEM_USER = 1


class SQLServer:
    """A lazily connected SQL Server client.

    Args:
        server_name: ``host``, ``host,port`` or ``host\\instance``.
        connect_info: Connection options merged over
            ``DEFAULT_CONNECT_INFO``; entries set to ``None`` are dropped.
        driver: ``"pymssql"`` (default) or ``"pyodbc"``.
    """

    DEFAULT_CONNECT_INFO: Dict[str, Any] = {
        "Database": None,
        "UID": None,
        "PWD": None,
        "CharacterSet": "UTF-8",
    }

    def __init__(
        self,
        server_name: str,
        connect_info: Optional[Mapping[str, Any]] = None,
        driver: Optional[str] = None,
    ) -> None:
        self.server_name = server_name
        merged = dict(self.DEFAULT_CONNECT_INFO)
        merged.update(connect_info or {})
        self.connect_info: Dict[str, Any] = {k: v for k, v in merged.items() if v is not None}
        self.driver = driver or "pymssql"
        self._db: Optional[Db] = None
        self._query: Any = None
        self._finalizer: Optional[weakref.finalize] = None

    @classmethod
    def from_connection_string(cls, raw: str, driver: Optional[str] = None) -> "SQLServer":
        """Build a client from a ``Server=...;`` string or ``mssql://`` URL."""
        server_name, info = parse_connection_string(raw)
        return cls(server_name, info, driver)

    @classmethod
    def from_config(cls, cfg: Optional[Config] = None) -> "SQLServer":
        """Build a client from environment configuration.

        Raises:
            ValueError: If neither ``MSSQL_URL`` nor ``MSSQL_SERVER`` is set.
        """
        cfg = cfg or config
        info = cfg.connect_info()
        if cfg.MSSQL_URL:
            server_name, url_info = parse_connection_string(cfg.MSSQL_URL)
            info.update(url_info)
        elif cfg.MSSQL_SERVER:
            server_name = cfg.MSSQL_SERVER
        else:
            raise ValueError("MSSQL_URL or MSSQL_SERVER must be set to connect")
        return cls(server_name, info, cfg.MSSQL_DRIVER)

    def __getattr__(self, name: str) -> Any:
        info = self.__dict__.get("connect_info", {})
        if name in info:
            return info[name]
        raise AttributeError(f"{type(self).__name__!s} has no attribute {name!r}")

    def __repr__(self) -> str:
        return (
            f"SQLServer(server_name={self.server_name!r}, "
            f"database={self.database!r}, driver={self.driver!r})"
        )

    def __enter__(self) -> "SQLServer":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    @property
    def database(self) -> Optional[str]:
        """The configured initial database, or ``None``."""
        return self.connect_info.get("Database")

    @property
    def is_connected(self) -> bool:
        return self._db is not None

    def connect(self) -> bool:
        """Open the connection unless it is already open.

        Raises:
            ConnectError: If the server refuses the connection.
            DriverNotInstalledError: If the driver package is missing.
        """
        if self._db is None:
            self._db = connect(self.server_name, self.connect_info, self.driver)
            # closes the connection if the client is collected or the interpreter exits first
            self._finalizer = weakref.finalize(self, self._db.close)
            logging.info("[sqlserver] connected", extra={"server": self.server_name, "driver": self.driver})
        return True

    def close(self) -> bool:
        """Close the connection.  Safe to call when not connected."""
        if self._db is not None:
            db, self._db = self._db, None
            self._query = None
            if self._finalizer is not None:
                self._finalizer.detach()
                self._finalizer = None
            db.close()
            logging.info("[sqlserver] connection closed", extra={"server": self.server_name})
        return True

    def server_info(self) -> Dict[str, Any]:
        """Return ``CurrentDatabase``, ``SQLServerVersion`` and ``SQLServerName``."""
        self.connect()
        return self._db.server_info()

    def client_info(self) -> Dict[str, Any]:
        """Return details about the driver stack in use."""
        self.connect()
        return self._db.client_info()

    def query(self, sql: str, params: Params = None, options: Optional[Mapping[str, Any]] = None) -> Any:
        """Execute ``sql`` and return the driver cursor.

        ``params`` is a sequence bound to ``?`` markers or a mapping bound
        to ``@name`` markers.  ``options`` accepts ``timeout`` (seconds,
        pyodbc only).

        Raises:
            QueryError: If the statement fails; ``sql`` holds its text.
        """
        self.connect()
        self._query = self._db.execute(sql, params, options)
        return self._query

    def _statement(self, sql: str, params: Params) -> Any:
        cursor = self.query(sql, params)
        if cursor.description is None:
            self._free(cursor)
            raise FetchError("Query is empty", 0, sql)
        return cursor

    def _free(self, cursor: Any) -> None:
        self._query = None
        self._db.release(cursor)

    def get_assoc_row(self, sql: str, params: Params = None) -> Optional[Dict[str, Any]]:
        """Return the first row as a column-name dict, or ``None`` when empty."""
        cursor = self._statement(sql, params)
        try:
            row = self._db.fetchone(cursor, sql)
            if row is None:
                return None
            return rows_as_dicts(cursor, [row])[0]
        finally:
            self._free(cursor)

    def get_assoc_rows(
        self, sql: str, params: Params = None, key: Optional[str] = None
    ) -> Union[List[Dict[str, Any]], Dict[Any, Dict[str, Any]]]:
        """Return all rows as dicts.

        When ``key`` names a column of the result, a dict mapping that
        column's value to the row is returned instead of a list.  Later
        rows replace earlier ones that share a key.
        """
        cursor = self._statement(sql, params)
        try:
            rows = rows_as_dicts(cursor, self._db.fetchall(cursor, sql))
            columns = [col[0] for col in cursor.description]
        finally:
            self._free(cursor)
        if key is not None and key in columns:
            return {row[key]: row for row in rows}
        return rows

    def get_one(self, sql: str, params: Params = None, field_index: int = 0) -> Any:
        """Return field ``field_index`` of the first row.

        Raises:
            FetchError: If there are no rows or the field does not exist.
        """
        cursor = self._statement(sql, params)
        try:
            row = self._db.fetchone(cursor, sql)
        finally:
            self._free(cursor)
        if row is None:
            raise FetchError("Query returned no rows", 0, sql)
        if field_index < 0 or field_index >= len(row):
            raise FetchError(f"Field index {field_index} is out of range", 0, sql)
        return row[field_index]

    def schema_id(self, name: Optional[str] = None) -> Optional[int]:
        """Return the id of schema ``name`` (the caller's default schema if omitted)."""
        if name:
            return self.get_one(queries["schemaId"](True), [name])
        return self.get_one(queries["schemaId"](False))

    def schema_name(self, schema_id: Optional[int] = None) -> Optional[str]:
        """Return the name of schema ``schema_id`` (the default schema if omitted)."""
        if schema_id is not None:
            return self.get_one(queries["schemaName"](True), [schema_id])
        return self.get_one(queries["schemaName"](False))

    def object_id(self, object_name: str, object_type: Optional[str] = None) -> Optional[int]:
        """Return the id of ``object_name``, optionally restricted to ``object_type`` (e.g. ``'P'``)."""
        if object_type:
            return self.get_one(queries["objectId"](True), [object_name, object_type])
        return self.get_one(queries["objectId"](False), [object_name])

    def object_name(self, object_id: int) -> Optional[str]:
        return self.get_one(queries["objectName"](), [object_id])

    def guid(self) -> Any:
        """Return a fresh ``uniqueidentifier`` generated by the server."""
        return self.get_one(queries["newId"]())

    def get_user(self, kind: int = SYSTEM_USER) -> str:
        """Return ``CURRENT_USER`` (``kind=0``) or ``SYSTEM_USER`` (``kind=1``).

        Raises:
            ValueError: For any other ``kind``.
        """
        if kind == CURRENT_USER:
            return self.get_one(queries["currentUser"]())
        if kind == SYSTEM_USER:
            return self.get_one(queries["systemUser"]())
        raise ValueError(f"Unknown user kind: {kind!r} (expected 0 or 1)")

    def proc_exists(self, name: str, schema: Optional[str] = None) -> bool:
        """Check whether stored procedure ``name`` exists in ``schema``."""
        schema_id = self.schema_id(schema) if schema else self.schema_id()
        sql = queries["procExists"](self.database)
        return int(self.get_one(sql, [schema_id, name])) == 1

    def proc_params(self, name: str, schema: Optional[str] = None) -> Dict[Any, Dict[str, Any]]:
        """Return the parameters of stored procedure ``name`` keyed by ``parameter_id``.

        Each value holds ``parameter_id``, ``name``, ``type``,
        ``is_readonly`` and ``is_nullable``.  An unknown procedure yields
        an empty dict.
        """
        if not schema:
            schema = self.schema_name()
        schema_id = self.schema_id(schema)
        object_id = self.object_id(f"{quote_identifier(schema)}.{quote_identifier(name)}", "P")
        if object_id is None:
            return {}
        sql = queries["procParams"](self.database)
        return self.get_assoc_rows(sql, [schema_id, object_id], "parameter_id")
