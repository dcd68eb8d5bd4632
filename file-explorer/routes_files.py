"""Local file API (``/api/files``, ``/api/search``, ...) as a Flask Blueprint."""
from __future__ import annotations

from typing import Any

from flask import Blueprint, request

from services.fileops import OPERATIONS, FileBackend, handle_operation


def create_files_blueprint(backend: FileBackend) -> Blueprint:
    """Expose every file operation of ``backend`` under ``/api/<op>``."""
    bp = Blueprint("files", __name__)

    def _make_view(op: str):
        def view() -> Any:
            return handle_operation(backend, op, request)
        view.__name__ = f"api_{op}"
        return view

    for op, (methods, _handler) in OPERATIONS.items():
        bp.add_url_rule(f"/api/{op}", endpoint=op, view_func=_make_view(op), methods=list(methods))

    return bp
