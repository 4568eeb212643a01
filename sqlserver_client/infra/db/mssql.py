"""
SQL Server driver layer.

This module is the only place that talks to a native driver.  Two
drivers are supported: ``pymssql`` (FreeTDS based, the default) and
``pyodbc`` (Microsoft ODBC Driver for SQL Server).  The driver package is
imported lazily when the first connection is opened, so installing only
one of them is enough.

``connect`` returns a ``Db`` wrapping the native connection.  ``Db``
exposes ``execute`` plus fetch helpers, translating every driver
exception into the hierarchy from ``sqlserver_client.errors``.

SQL text uses ``?`` markers for positional parameters (a sequence) or
``@name`` markers for named parameters (a mapping)::

    db = connect("localhost,1433", {"Database": "master", "UID": "sa", "PWD": "..."})
    cursor = db.execute("SELECT name FROM sys.schemas WHERE schema_id = ?", [1])
    rows = rows_as_dicts(cursor, db.fetchall(cursor, "..."))
    db.close()

When using ``pymssql`` the markers are rewritten to ``%s`` and
``%(name)s`` (and literal ``%`` doubled).  ``pyodbc`` keeps ``?`` and
``@name`` markers are replaced by ``?`` with values passed positionally
in the order they appear.
"""

from __future__ import annotations

import importlib
import logging
import re
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple, Union
from urllib.parse import parse_qsl, unquote, urlsplit

from ...config.queries import queries
from ...errors import (
    ConnectError,
    DriverNotInstalledError,
    FetchError,
    QueryError,
    error_details,
)

DRIVERS = ("pymssql", "pyodbc")
DEFAULT_ODBC_DRIVER = "ODBC Driver 17 for SQL Server"

Params = Union[Sequence[Any], Mapping[str, Any], None]

# String literals, quoted identifiers and comments come first so that
# markers inside them are matched as part of the enclosing token.
_TOKEN_RE = re.compile(
    r"""
      '(?:[^']|'')*'          # string literal
    | "(?:[^"]|"")*"          # quoted identifier
    | \[(?:[^\]]|\]\])*\]     # bracketed identifier
    | --[^\n]*                # line comment
    | /\*.*?\*/               # block comment
    | @@?\w+                  # @name parameter or @@global
    | \?                      # positional parameter
    | %                       # literal percent
    """,
    re.VERBOSE | re.DOTALL,
)


def _load_driver(name: str) -> Any:
    """Import and return the driver module called ``name``."""
    if name not in DRIVERS:
        raise ValueError(f"Unsupported driver: {name}")
    try:
        return importlib.import_module(name)
    except ImportError as exc:
        raise DriverNotInstalledError(
            f"Python driver {name} is not installed. Install it to connect to SQL Server."
        ) from exc


def translate_params(sql: str, params: Params, paramstyle: str) -> Tuple[str, Any]:
    """Rewrite parameter markers in ``sql`` for the driver's ``paramstyle``.

    Args:
        sql: Statement using ``?`` or ``@name`` markers.
        params: A sequence for ``?`` markers or a mapping for ``@name``.
        paramstyle: ``"pyformat"`` (pymssql) or ``"qmark"`` (pyodbc).

    Returns:
        A tuple of the rewritten SQL and the arguments to hand to
        ``cursor.execute``.
    """
    named = isinstance(params, Mapping)
    pyformat = paramstyle == "pyformat"
    ordered: List[Any] = []

    def replacer(match: re.Match[str]) -> str:
        token = match.group(0)
        if token == "?":
            if named:
                raise ValueError("Positional marker '?' used with named parameters")
            return "%s" if pyformat else "?"
        if token == "%":
            return "%%" if pyformat else token
        if token.startswith("@") and not token.startswith("@@"):
            name = token[1:]
            if named and name in params:
                if pyformat:
                    return f"%({name})s"
                ordered.append(params[name])
                return "?"
            return token
        if pyformat:
            return token.replace("%", "%%")
        return token

    query = _TOKEN_RE.sub(replacer, sql)
    if named:
        args: Any = dict(params) if pyformat else ordered
    else:
        args = tuple(params) if pyformat else list(params)
    return query, args


def rows_as_dicts(cursor: Any, rows: Sequence[Sequence[Any]]) -> List[Dict[str, Any]]:
    """Map tuple rows to dictionaries keyed by column name."""
    columns = [col[0] for col in cursor.description] if cursor.description else []
    return [dict(zip(columns, row)) for row in rows]


def _truthy(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ("true", "yes", "1", "on")


def _odbc_value(value: Any) -> str:
    text = "yes" if value is True else "no" if value is False else str(value)
    if any(ch in text for ch in ";{}=") or text != text.strip():
        return "{" + text.replace("}", "}}") + "}"
    return text


class Db:
    """Lightweight wrapper around a native SQL Server connection.

    Instances are returned by ``connect``.  Besides ``execute`` they
    provide ``fetchone``/``fetchall`` helpers which translate driver
    errors into ``FetchError`` and ``release`` to close cursors.
    """

    def __init__(self, conn: Any, driver: str, module: Any) -> None:
        self._conn = conn
        self._driver = driver
        self._module = module

    @property
    def driver(self) -> str:
        return self._driver

    @property
    def connection(self) -> Any:
        """The native DB-API connection."""
        return self._conn

    def execute(self, sql: str, params: Params = None, options: Optional[Mapping[str, Any]] = None) -> Any:
        """Execute ``sql`` and return the open cursor.

        Raises:
            QueryError: If the driver rejects the statement.
            ValueError: If ``options`` holds an unsupported setting.
        """
        options = dict(options or {})
        timeout = options.pop("timeout", None)
        if options:
            raise ValueError(f"Unsupported query options: {', '.join(sorted(options))}")
        logging.debug("[sqlserver] execute", extra={"sql": sql, "driver": self._driver})
        try:
            if self._driver == "pymssql":
                return self._execute_pymssql(sql, params, timeout)
            elif self._driver == "pyodbc":
                return self._execute_pyodbc(sql, params, timeout)
            else:
                raise RuntimeError(f"Unsupported driver: {self._driver}")
        except self._module.Error as exc:
            code, message, sqlstate = error_details(exc)
            logging.error("[sqlserver] query failed", extra={"sql": sql, "code": code})
            raise QueryError(message, code, sql, sqlstate) from exc

    def _run(self, sql: str, params: Params, paramstyle: str) -> Any:
        cursor = self._conn.cursor()
        try:
            if params:
                query, args = translate_params(sql, params, paramstyle)
                cursor.execute(query, args)
            else:
                cursor.execute(sql)
        except Exception:
            cursor.close()
            raise
        return cursor

    def _execute_pymssql(self, sql: str, params: Params, timeout: Optional[int]) -> Any:
        if timeout is None:
            return self._run(sql, params, "pyformat")
        # the DB-API wrapper has no per-query timeout; the _mssql connection does
        low = self._conn._conn
        previous = low.query_timeout
        low.query_timeout = int(timeout)
        try:
            return self._run(sql, params, "pyformat")
        finally:
            low.query_timeout = previous

    def _execute_pyodbc(self, sql: str, params: Params, timeout: Optional[int]) -> Any:
        previous = self._conn.timeout
        if timeout is not None:
            self._conn.timeout = int(timeout)
        try:
            return self._run(sql, params, "qmark")
        finally:
            self._conn.timeout = previous

    def fetchone(self, cursor: Any, sql: str) -> Optional[Sequence[Any]]:
        """Return the next row of ``cursor`` or ``None``."""
        try:
            return cursor.fetchone()
        except self._module.Error as exc:
            code, message, sqlstate = error_details(exc)
            raise FetchError(message, code, sql, sqlstate) from exc

    def fetchall(self, cursor: Any, sql: str) -> List[Sequence[Any]]:
        """Return the remaining rows of ``cursor``."""
        try:
            return list(cursor.fetchall() or [])
        except self._module.Error as exc:
            code, message, sqlstate = error_details(exc)
            raise FetchError(message, code, sql, sqlstate) from exc

    def release(self, cursor: Any) -> None:
        """Close ``cursor``, freeing the statement on the server."""
        cursor.close()

    def server_info(self) -> Dict[str, Any]:
        """Return the current database, product version and server name."""
        sql = queries["serverInfo"]()
        cursor = self.execute(sql)
        try:
            rows = rows_as_dicts(cursor, self.fetchall(cursor, sql))
        finally:
            self.release(cursor)
        return rows[0] if rows else {}

    def client_info(self) -> Dict[str, Any]:
        """Describe the client side driver stack."""
        if self._driver == "pymssql":
            info: Dict[str, Any] = {
                "DriverName": "pymssql",
                "DriverVer": getattr(self._module, "__version__", ""),
            }
            get_dbversion = getattr(self._module, "get_dbversion", None)
            if get_dbversion is not None:
                info["DbLibVer"] = get_dbversion()
            return info
        return {
            "DriverName": "pyodbc",
            "DriverVer": getattr(self._module, "version", ""),
            "ODBCDriver": self._conn.getinfo(self._module.SQL_DRIVER_NAME),
            "ODBCDriverVer": self._conn.getinfo(self._module.SQL_DRIVER_VER),
            "DriverODBCVer": self._conn.getinfo(self._module.SQL_DRIVER_ODBC_VER),
        }

    def close(self) -> None:
        self._conn.close()


def split_server_name(server_name: str) -> Tuple[str, Optional[int]]:
    """Split ``host[\\instance][,port]`` into host and port."""
    name = (server_name or "").strip()
    m = re.match(r"^(.*?),\s*(\d+)$", name)
    if m:
        return m.group(1), int(m.group(2))
    return name, None


def parse_connection_string(input_str: str) -> Tuple[str, Dict[str, Any]]:
    """Parse a SQL Server connection string.

    Supports ``mssql://`` URLs (``sqlserver://`` is accepted as an alias)
    or semicolon separated key/value pairs.

    Args:
        input_str: The connection string to parse.

    Returns:
        A ``(server_name, connect_info)`` tuple.  ``connect_info`` uses
        the keys understood by ``SQLServer``: ``Database``, ``UID``,
        ``PWD``, ``Encrypt``, ``TrustServerCertificate``, ``APP`` and
        ``LoginTimeout``.  Only keys present in the input are returned.
    """
    s = (input_str or "").strip()
    if not s:
        raise ValueError("Empty connection string")
    norm = re.sub(r"^sqlserver://", "mssql://", s, flags=re.IGNORECASE)
    if norm.lower().startswith("mssql://"):
        return _parse_url(norm)
    parts = [p.strip() for p in norm.split(";") if p.strip()]
    kv: Dict[str, str] = {}
    for p in parts:
        if '=' not in p:
            continue
        k, v = p.split('=', 1)
        kv[k.strip().lower()] = v.strip()
    server = kv.get('server') or kv.get('data source') or kv.get('address') or kv.get('addr') or kv.get('network address')
    if not server:
        raise ValueError('No Server= found in connection string')
    server = re.sub(r"^tcp:", "", server, flags=re.IGNORECASE)
    info: Dict[str, Any] = {
        'Database': kv.get('database') or kv.get('initial catalog'),
        'UID': kv.get('uid') or kv.get('user id') or kv.get('user'),
        'PWD': kv.get('pwd') or kv.get('password'),
        'APP': kv.get('app') or kv.get('application name'),
    }
    encrypt = kv.get('encrypt')
    if encrypt is not None:
        info['Encrypt'] = _truthy(encrypt)
    tsc = kv.get('trustservercertificate') or kv.get('trust server certificate')
    if tsc is not None:
        info['TrustServerCertificate'] = _truthy(tsc)
    timeout = kv.get('connect timeout') or kv.get('connection timeout') or kv.get('logintimeout')
    if timeout is not None:
        info['LoginTimeout'] = int(timeout)
    return server, {k: v for k, v in info.items() if v is not None}


def _parse_url(url: str) -> Tuple[str, Dict[str, Any]]:
    parts = urlsplit(url)
    if not parts.hostname:
        raise ValueError('No host found in connection URL')
    server = parts.hostname
    if parts.port:
        server = f"{server},{parts.port}"
    query = {k.lower(): v for k, v in parse_qsl(parts.query)}
    info: Dict[str, Any] = {
        'Database': unquote(parts.path.lstrip('/')) or None,
        'UID': unquote(parts.username) if parts.username else None,
        'PWD': unquote(parts.password) if parts.password else None,
        'APP': query.get('app') or query.get('applicationname'),
    }
    if 'encrypt' in query:
        info['Encrypt'] = _truthy(query['encrypt'])
    if 'trustservercertificate' in query:
        info['TrustServerCertificate'] = _truthy(query['trustservercertificate'])
    if 'connecttimeout' in query:
        info['LoginTimeout'] = int(query['connecttimeout'])
    return server, {k: v for k, v in info.items() if v is not None}


def _pymssql_kwargs(server_name: str, info: Mapping[str, Any]) -> Dict[str, Any]:
    host, port = split_server_name(server_name)
    kwargs: Dict[str, Any] = {
        'server': host,
        'user': info.get('UID'),
        'password': info.get('PWD'),
        'database': info.get('Database'),
        'charset': info.get('CharacterSet'),
        'appname': info.get('APP'),
        # every statement commits on its own; pymssql would otherwise open a transaction
        'autocommit': True,
    }
    if port:
        kwargs['port'] = str(port)
    if info.get('LoginTimeout') is not None:
        kwargs['login_timeout'] = int(info['LoginTimeout'])
    if info.get('QueryTimeout') is not None:
        kwargs['timeout'] = int(info['QueryTimeout'])
    if info.get('Encrypt') is not None:
        kwargs['encryption'] = 'require' if _truthy(info['Encrypt']) else 'off'
    return {k: v for k, v in kwargs.items() if v is not None}


def build_odbc_connection_string(server_name: str, info: Mapping[str, Any]) -> str:
    """Assemble an ODBC connection string from ``connect_info`` keys."""
    driver = info.get('ODBCDriver') or DEFAULT_ODBC_DRIVER
    host, port = split_server_name(server_name)
    server_expr = f"{host},{port}" if port else host
    pairs: List[Tuple[str, Any]] = [
        ('DRIVER', '{' + driver + '}'),
        ('SERVER', server_expr),
        ('DATABASE', info.get('Database')),
        ('UID', info.get('UID')),
        ('PWD', info.get('PWD')),
        ('APP', info.get('APP')),
    ]
    if info.get('Encrypt') is not None:
        pairs.append(('Encrypt', _truthy(info['Encrypt'])))
    if info.get('TrustServerCertificate') is not None:
        pairs.append(('TrustServerCertificate', _truthy(info['TrustServerCertificate'])))
    if not info.get('UID'):
        pairs.append(('Trusted_Connection', True))
    out = []
    for key, value in pairs:
        if value is None:
            continue
        out.append(f"{key}={value if key == 'DRIVER' else _odbc_value(value)}")
    return ";".join(out) + ";"


def connect(server_name: str, connect_info: Optional[Mapping[str, Any]] = None, driver: str = "pymssql") -> Db:
    """Connect to a SQL Server instance.

    Args:
        server_name: ``host``, ``host,port`` or ``host\\instance``.
        connect_info: Connection options (``Database``, ``UID``, ``PWD``,
            ``CharacterSet``, ``LoginTimeout``, ``QueryTimeout``,
            ``Encrypt``, ``TrustServerCertificate``, ``APP`` and, for
            pyodbc, ``ODBCDriver``).
        driver: ``"pymssql"`` or ``"pyodbc"``.

    Returns:
        A ``Db`` instance wrapping the open connection.

    Raises:
        DriverNotInstalledError: If the driver package is missing.
        ConnectError: If the server refuses the connection.
    """
    info = dict(connect_info or {})
    module = _load_driver(driver)
    logging.info(
        "[sqlserver] connecting",
        extra={"server": server_name, "database": info.get('Database'), "driver": driver},
    )
    try:
        if driver == "pymssql":
            conn = module.connect(**_pymssql_kwargs(server_name, info))
        else:
            conn = module.connect(
                build_odbc_connection_string(server_name, info),
                autocommit=True,
                timeout=int(info.get('LoginTimeout') or 0),
            )
            if info.get('QueryTimeout') is not None:
                conn.timeout = int(info['QueryTimeout'])
            if info.get('CharacterSet'):
                conn.setdecoding(module.SQL_CHAR, encoding=info['CharacterSet'])
    except module.Error as exc:
        code, message, sqlstate = error_details(exc)
        logging.error("[sqlserver] connection failed", extra={"server": server_name, "code": code})
        raise ConnectError(message, code, sqlstate) from exc
    return Db(conn, driver, module)
