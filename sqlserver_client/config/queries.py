"""
SQL templates for server metadata lookups.

Each function returns a raw SQL string with ``?`` markers for the
values the caller binds.  Catalog queries accept an optional
``database`` argument; when given, ``sys`` views are qualified with it
(``[db].[sys].[procedures]``), otherwise the current database is used.
Identifiers are bracket quoted, never bound, because SQL Server does not
accept parameters in object names.
"""

from __future__ import annotations

from typing import Callable, Dict, Optional


def quote_identifier(name: str) -> str:
    """Bracket quote ``name`` for use as a SQL Server identifier."""
    return "[" + name.replace("]", "]]") + "]"


def _sys(database: Optional[str]) -> str:
    if database:
        return f"{quote_identifier(database)}.[sys]"
    return "[sys]"


def serverInfo() -> str:
    return """
        SELECT DB_NAME() AS [CurrentDatabase],
               CAST(SERVERPROPERTY('ProductVersion') AS nvarchar(128)) AS [SQLServerVersion],
               @@SERVERNAME AS [SQLServerName];
    """.strip()


def schemaId(named: bool = True) -> str:
    return "SELECT SCHEMA_ID(?)" if named else "SELECT SCHEMA_ID()"


def schemaName(by_id: bool = True) -> str:
    return "SELECT SCHEMA_NAME(?)" if by_id else "SELECT SCHEMA_NAME()"


def objectId(typed: bool = False) -> str:
    return "SELECT OBJECT_ID(?, ?)" if typed else "SELECT OBJECT_ID(?)"


def objectName() -> str:
    return "SELECT OBJECT_NAME(?)"


def newId() -> str:
    return "SELECT NEWID()"


def currentUser() -> str:
    return "SELECT CURRENT_USER"


def systemUser() -> str:
    return "SELECT SYSTEM_USER"


def procExists(database: Optional[str] = None) -> str:
    return f"""
        SELECT IIF(EXISTS(
            SELECT * FROM {_sys(database)}.[procedures]
            WHERE [schema_id] = ? AND [name] = ?
        ), 1, 0);
    """.strip()


def procParams(database: Optional[str] = None) -> str:
    return f"""
        SELECT [p].[parameter_id],
               [p].[name],
               TYPE_NAME([p].[user_type_id]) AS [type],
               [p].[is_readonly],
               [p].[is_nullable]
        FROM {_sys(database)}.[parameters] [p]
        JOIN {_sys(database)}.[procedures] [ps]
          ON [ps].[object_id] = [p].[object_id]
         AND [ps].[schema_id] = ?
         AND [ps].[object_id] = ?
        ORDER BY [p].[parameter_id] ASC;
    """.strip()


queries: Dict[str, Callable[..., str]] = {
    "serverInfo": serverInfo,
    "schemaId": schemaId,
    "schemaName": schemaName,
    "objectId": objectId,
    "objectName": objectName,
    "newId": newId,
    "currentUser": currentUser,
    "systemUser": systemUser,
    "procExists": procExists,
    "procParams": procParams,
}
