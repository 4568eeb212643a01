"""
Database abstractions for SQL Server connections.

This subpackage wraps either the ``pymssql`` or ``pyodbc`` driver.
``connect`` returns a ``Db`` with ``execute``, fetch helpers and
``close``; ``get_connection`` hands out configured ``SQLServer`` clients
by alias.
"""

from .mssql import connect, Db, parse_connection_string, rows_as_dicts  # noqa: F401
from .connection_factory import get_connection, register_connection  # noqa: F401
