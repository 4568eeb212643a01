"""
JSON reporting utilities.

Helpers for writing query results to JSON.  SQL Server values that JSON
cannot represent (``datetime``, ``Decimal``, ``UUID``, ``bytes``) are
written as strings.
"""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Any, TextIO


def _default(value: Any) -> str:
    if isinstance(value, (bytes, bytearray)):
        return "0x" + bytes(value).hex().upper()
    return str(value)


def ensure_dir(directory: str) -> None:
    """Ensure a directory exists, creating it recursively if necessary."""
    if not directory:
        return
    logging.info("[jsonReporter] ensure_dir", extra={"dir": directory})
    Path(directory).mkdir(parents=True, exist_ok=True)


def dump_json(data: Any, stream: TextIO) -> None:
    """Write ``data`` as indented JSON to an open text stream."""
    json.dump(data, stream, indent=2, ensure_ascii=False, default=_default)
    stream.write("\n")


def write_json(file_path: str, data: Any) -> None:
    """Write an object to a JSON file, ensuring the directory exists."""
    ensure_dir(os.path.dirname(file_path))
    logging.info("[jsonReporter] write_json", extra={"file": file_path})
    with open(file_path, 'w', encoding='utf-8') as f:
        dump_json(data, f)
