"""Whole-file JSON persistence with atomic replace."""

from __future__ import annotations

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)


def load_json(path: Path, default: Any) -> Any:
    """JSON from ``path``, or ``default`` when the file is missing. Read and decode errors propagate."""
    if not path.exists():
        return default
    with open(path, encoding="utf-8") as handle:
        return json.load(handle)


def read_json(path: Path, default: Any) -> Any:
    """
    Load JSON from ``path``.

    A missing file returns ``default``; an unreadable or corrupt file is
    logged and also returns ``default`` so a bad log or feedback file never
    takes the API down.
    """
    try:
        return load_json(path, default)
    except (OSError, json.JSONDecodeError) as e:
        logger.error(f"Failed to read {path}: {e}")
        return default


def write_json_atomic(path: Path, payload: Any) -> None:
    """Write ``payload`` to a temp file beside ``path``, then ``os.replace`` it in."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            json.dump(payload, handle, indent=2, default=str)
        os.replace(tmp_name, path)
    except BaseException:
        if os.path.exists(tmp_name):
            os.unlink(tmp_name)
        raise
