"""
Thin object oriented access to Microsoft SQL Server.

``SQLServer`` wraps a native driver (``pymssql`` by default, ``pyodbc``
optionally) with a lazily opened connection, typed exceptions for driver
errors and helpers for fetching single values, single rows and keyed row
sets, plus schema, object and stored procedure lookups.  See individual
modules for further details.
"""

from .client import CURRENT_USER, SYSTEM_USER, SQLServer  # noqa: F401
from .errors import (  # noqa: F401
    ConnectError,
    DriverNotInstalledError,
    FetchError,
    QueryError,
    SQLServerError,
)

__version__ = "0.1.0"
