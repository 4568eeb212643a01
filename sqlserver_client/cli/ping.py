"""
Test database connectivity.

Connects using a configured alias (``default`` reads ``MSSQL_*``
environment variables), executes a trivial query and logs what the
server reports about itself.
"""

from __future__ import annotations

import argparse
import logging
import sys
from typing import List, Optional

from ..infra.db import get_connection


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description='Check SQL Server connectivity')
    parser.add_argument('--alias', type=str, default='default', help='Connection alias to test')
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    logging.basicConfig(level=logging.INFO)
    try:
        with get_connection(args.alias) as db:
            row = db.get_assoc_row('SELECT 1 AS ok')
            server = db.server_info()
            client = db.client_info()
        logging.info('DB OK: %s', row)
        logging.info('Server: %s', server)
        logging.info('Client: %s', client)
    except Exception as e:
        logging.error('DB FAIL (%s):', args.alias, exc_info=e)
        return 2
    return 0


if __name__ == '__main__':
    sys.exit(main())
