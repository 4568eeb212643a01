"""
Database connection factory.

Maps aliases to callables that build ``SQLServer`` clients.  The
``default`` alias uses the environment configuration from
``sqlserver_client.config.env.Config``; applications may register more
aliases with ``register_connection``.  Clients connect lazily, so
obtaining one does not touch the network.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Callable, Dict

from ...config import config

if TYPE_CHECKING:
    from ...client import SQLServer


def _default() -> "SQLServer":
    from ...client import SQLServer

    return SQLServer.from_config(config)


# Registry mapping aliases to callables that return a ``SQLServer`` instance.
_registry: Dict[str, Callable[[], "SQLServer"]] = {
    'default': _default,
}


def register_connection(alias: str, factory: Callable[[], "SQLServer"]) -> None:
    """Register ``factory`` under ``alias``, replacing any previous entry."""
    _registry[alias] = factory


def get_connection(alias: str = 'default') -> "SQLServer":
    """Obtain a new database client by alias.

    Args:
        alias: A registered alias, ``'default'`` unless told otherwise.

    Returns:
        A new, not yet connected ``SQLServer`` instance.

    Raises:
        KeyError: If the alias is not registered.
        ValueError: If the default alias has no server configured.
    """
    try:
        factory = _registry[alias]
    except KeyError:
        raise KeyError(f"No connection defined for alias: {alias}") from None
    return factory()
