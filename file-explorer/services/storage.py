"""JSON state files: tolerant reads, atomic writes."""

from __future__ import annotations

import json
import os
import uuid
from typing import Any

from services.logging_setup import core_log as _core_log


def load_json(path: str, default: Any = None) -> Any:
    """Read JSON from ``path``; missing or corrupt files yield ``default``."""
    try:
        with open(path, "r", encoding="utf-8") as f:
            raw = f.read()
    except FileNotFoundError:
        return default
    except OSError as e:
        _core_log("warning", "storage.read_failed", path=path, error=str(e))
        return default
    if not raw.strip():
        return default
    try:
        return json.loads(raw)
    except json.JSONDecodeError as e:
        _core_log("warning", "storage.corrupt_json", path=path, error=str(e))
        return default


def atomic_write(path: str, data: str, *, mode: int = 0o600) -> None:
    d = os.path.dirname(path)
    if d and not os.path.isdir(d):
        os.makedirs(d, exist_ok=True)
    tmp = f"{path}.tmp.{uuid.uuid4().hex}"
    with open(tmp, "w", encoding="utf-8") as f:
        f.write(data)
        f.flush()
        os.fsync(f.fileno())
    os.chmod(tmp, mode)
    os.replace(tmp, path)


def save_json(path: str, data: Any) -> None:
    atomic_write(path, json.dumps(data, indent=2, ensure_ascii=False) + "\n")
