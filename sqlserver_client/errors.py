"""
Exception hierarchy for SQL Server access.

Every failure reported by the native driver is re-raised as one of the
classes below so callers never have to import ``pymssql`` or ``pyodbc``
just to catch errors.  The native SQL Server error number is kept in
``code`` (``0`` when the driver did not report one) and, for ODBC
drivers, the five character SQLSTATE in ``sqlstate``.

Hierarchy::

    SQLServerError
    ├── DriverNotInstalledError   (also an ImportError)
    ├── ConnectError
    ├── QueryError                (carries ``sql``)
    └── FetchError                (carries ``query``)
"""

from __future__ import annotations

import re
from typing import Optional, Tuple


class SQLServerError(Exception):
    """Base class for all errors raised by this package."""

    def __init__(self, message: str = "", code: int = 0, sqlstate: Optional[str] = None) -> None:
        super().__init__(message)
        self.message = message
        self.code = code
        self.sqlstate = sqlstate


class DriverNotInstalledError(SQLServerError, ImportError):
    """The selected native driver package cannot be imported."""


class ConnectError(SQLServerError):
    """The driver refused to open a connection."""


class QueryError(SQLServerError):
    """A statement failed to execute.

    Attributes:
        sql: The statement text that raised the error.
    """

    def __init__(
        self,
        message: str = "",
        code: int = 0,
        sql: Optional[str] = None,
        sqlstate: Optional[str] = None,
    ) -> None:
        super().__init__(message, code, sqlstate)
        self.sql = sql or ""


class FetchError(SQLServerError):
    """Rows could not be retrieved from an executed statement.

    Attributes:
        query: The statement whose results were being read.
    """

    def __init__(
        self,
        message: str = "",
        code: int = 0,
        query: Optional[str] = None,
        sqlstate: Optional[str] = None,
    ) -> None:
        super().__init__(message, code, sqlstate)
        self.query = query or ""


# pyodbc appends the native error number and the failing ODBC call,
# e.g. "... Invalid object name 'x'. (208) (SQLExecDirectW)".
_ODBC_NATIVE_RE = re.compile(r"\((\d+)\)\s*\(SQL\w+\)")
_SQLSTATE_RE = re.compile(r"^[0-9A-Z]{5}$")


def _to_text(value: object) -> str:
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return str(value)


def error_details(exc: BaseException) -> Tuple[int, str, Optional[str]]:
    """Extract ``(code, message, sqlstate)`` from a driver exception.

    pymssql raises with a single tuple argument,
    ``args == ((number, b"message"),)``; pyodbc with
    ``args == ("42S02", "[42S02] ... (208) (SQLExecDirectW)")``.  Anything
    else falls back to ``str(exc)`` with code ``0``.
    """
    args = getattr(exc, "args", ())
    if len(args) == 1 and isinstance(args[0], tuple):
        args = args[0]
    if len(args) >= 2 and isinstance(args[0], int):
        return args[0], _to_text(args[1]).strip(), None
    if len(args) >= 2 and isinstance(args[0], str) and _SQLSTATE_RE.match(args[0]):
        message = _to_text(args[1]).strip()
        match = _ODBC_NATIVE_RE.search(message)
        code = int(match.group(1)) if match else 0
        return code, message, args[0]
    number = getattr(exc, "number", None)
    if isinstance(number, int):
        return number, _to_text(getattr(exc, "message", exc)).strip(), None
    if len(args) == 1:
        return 0, _to_text(args[0]).strip(), None
    return 0, str(exc), None
