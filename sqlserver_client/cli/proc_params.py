"""
Describe the parameters of a stored procedure.

Prints the procedure's parameters as JSON, or writes them to a file
with ``--output``.  Exits with status 1 when the procedure does not
exist and 2 on any other error.
"""

from __future__ import annotations

import argparse
import logging
import sys
from typing import List, Optional

from ..infra.db import get_connection
from ..infra.reporting.json_reporter import dump_json, write_json


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description='List stored procedure parameters')
    parser.add_argument('name', type=str, help='Stored procedure name')
    parser.add_argument('--schema', type=str, help='Schema of the procedure (default: the login\'s default schema)')
    parser.add_argument('--alias', type=str, default='default', help='Connection alias to use')
    parser.add_argument('--output', type=str, help='Write the JSON to this file instead of stdout')
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    logging.basicConfig(level=logging.INFO)
    logging.info('[cli/proc_params] Parsed arguments', extra={'proc': args.name, 'schema': args.schema})
    try:
        with get_connection(args.alias) as db:
            if not db.proc_exists(args.name, args.schema):
                logging.error('Stored procedure not found: %s', args.name)
                return 1
            params = db.proc_params(args.name, args.schema)
        result = [params[k] for k in sorted(params)]
        if args.output:
            write_json(args.output, result)
        else:
            dump_json(result, sys.stdout)
    except Exception as err:
        logging.error('Error executing cli/proc_params', exc_info=err)
        return 2
    return 0


if __name__ == '__main__':
    sys.exit(main())
