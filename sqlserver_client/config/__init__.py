"""
Expose the loaded configuration as ``config``.

Importing from this module will load environment variables and
populate a singleton ``Config`` instance. Example:

    from sqlserver_client.config import config
    print(config.MSSQL_SERVER)
"""

from .env import config, Config, load_config  # noqa: F401
