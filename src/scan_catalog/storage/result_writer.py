#!/usr/bin/env python3
"""
Result Serializer

Renders the UpdateID -> UpdateRecord collection to JSON with orjson (UTF-8,
no byte order mark) and writes it atomically so a failed run never leaves a
partial output file behind.
"""

import os
import tempfile
from pathlib import Path
from typing import Dict, Mapping

import orjson

from ..core.errors import ResultWriteError
from ..core.update_join import UpdateRecord
from ..logging.workflow_logger import get_logger

logger = get_logger()


def serialize_results(results: Mapping[str, UpdateRecord], indent: bool = False, sort_keys: bool = True) -> bytes:
    """Render the result collection as UTF-8 JSON bytes"""
    document = {update_id: record.as_dict() for update_id, record in results.items()}

    option = 0
    if indent:
        option |= orjson.OPT_INDENT_2
    if sort_keys:
        # Sorts the top-level UpdateID keys; record fields keep their own order
        document = dict(sorted(document.items()))

    return orjson.dumps(document, option=option)


def write_results(results: Mapping[str, UpdateRecord], path, indent: bool = False, sort_keys: bool = True) -> Path:
    """
    Serialize results and write them to path via a temporary file and os.replace.

    Raises:
        ResultWriteError: If the output cannot be written
    """
    path = Path(path)
    payload = serialize_results(results, indent=indent, sort_keys=sort_keys)

    tmp_name = None
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
        with os.fdopen(fd, 'wb') as f:
            f.write(payload)
        os.replace(tmp_name, path)
        tmp_name = None
    except OSError as e:
        raise ResultWriteError(f"Failed to write results to {path}: {e}") from e
    finally:
        if tmp_name and os.path.exists(tmp_name):
            os.unlink(tmp_name)

    logger.file_operation("saved", str(path), f"{len(results):,} updates, {len(payload):,} bytes", group="OUTPUT")
    return path


def load_results(path) -> Dict[str, UpdateRecord]:
    """Load an output document back into UpdateRecord objects"""
    with open(path, 'rb') as f:
        document = orjson.loads(f.read())
    return {update_id: UpdateRecord.from_dict(data) for update_id, data in document.items()}
