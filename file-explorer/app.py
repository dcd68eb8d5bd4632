"""Flask application factory for the file explorer hub."""
from __future__ import annotations

import os
import time
from typing import Any, Dict, Optional

from flask import Flask, g, jsonify, request
from werkzeug.exceptions import HTTPException

from routes_devices import create_devices_blueprint
from routes_files import create_files_blueprint
from routes_proxy import LocalDeviceRewrite, create_proxy_blueprint
from routes_settings import create_settings_blueprint
from services.auth import AuthGate
from services.config import HubConfig, load_config
from services.devices import DeviceRegistry
from services.errors import ApiError
from services.fileops import LocalFs
from services.http_proxy import HttpProxy
from services.logging_setup import access_enabled as _access_enabled
from services.logging_setup import access_logger as _get_access_logger
from services.logging_setup import core_log as _core_log
from services.logging_setup import setup_logging
from services.recent import RecentFiles
from services.settings import SettingsStore
from services.ssh_exec import SshRunner


def api_error(message: str, status: int = 400, **extra: Any):
    """Return a JSON error response in a consistent format."""
    payload: Dict[str, Any] = {"error": message}
    payload.update(extra)
    return jsonify(payload), status


def create_app(config: Optional[HubConfig] = None, *, ssh_runner: Optional[SshRunner] = None) -> Flask:
    config = config or load_config()
    setup_logging(config.log_dir or os.path.join(config.data_dir, "logs"))

    app = Flask(__name__)
    app.config["HUB_CONFIG"] = config

    settings = SettingsStore(config.settings_file)
    recent = RecentFiles()
    local_fs = LocalFs(config.root_dir, recent)
    registry = DeviceRegistry(
        config.devices_file,
        settings,
        ssh_runner=ssh_runner or SshRunner(config.ssh_bin),
        admin_token=config.admin_token,
    )
    gate = AuthGate(config.admin_token, config.read_token)

    app.extensions["file_explorer.recent"] = recent
    app.extensions["file_explorer.registry"] = registry
    app.extensions["file_explorer.settings"] = settings
    app.extensions["file_explorer.auth"] = gate

    # ---------- request hooks ----------

    @app.before_request
    def _access_log_before_request():
        g._fe_t0 = time.time()
        return None

    @app.before_request
    def _auth_guard():
        gate.check(request)
        return None

    @app.after_request
    def _access_log_after_request(response):
        try:
            if not _access_enabled():
                return response
            method = request.method or ""
            status = getattr(response, "status_code", 0) or 0
            client = request.headers.get("X-Forwarded-For") or request.remote_addr or ""
            dt_ms = None
            t0 = getattr(g, "_fe_t0", None)
            if t0:
                dt_ms = int((time.time() - float(t0)) * 1000.0)
            if dt_ms is None:
                line = f"{client} {method} {request.path} -> {status}"
            else:
                line = f"{client} {method} {request.path} -> {status} ({dt_ms}ms)"
            _get_access_logger().info(line)
        except Exception:
            # Logging must never affect response
            pass
        return response

    # ---------- errors ----------

    @app.errorhandler(ApiError)
    def _handle_api_error(e: ApiError):
        return jsonify(e.to_payload()), e.status

    @app.errorhandler(Exception)
    def _handle_unexpected(e: Exception):
        if isinstance(e, HTTPException):
            if (request.path or "").startswith("/api/"):
                return api_error(e.name, e.code or 500)
            return e
        _core_log("error", "unhandled exception", path=request.path, method=request.method, error=repr(e))
        app.logger.exception("Unhandled exception on %s %s", request.method, request.path)
        if (request.path or "").startswith("/api/"):
            return api_error("Internal server error", 500)
        return "Internal server error", 500

    # ---------- routes ----------

    @app.get("/api/auth/status")
    def api_auth_status():
        return jsonify(gate.status())

    @app.get("/")
    def index():
        return "File Explorer hub is running. The API lives under /api/.", 200, {"Content-Type": "text/plain; charset=utf-8"}

    app.register_blueprint(create_files_blueprint(local_fs))
    app.register_blueprint(create_devices_blueprint(registry, config.port))
    app.register_blueprint(create_settings_blueprint(settings))
    app.register_blueprint(create_proxy_blueprint(
        registry,
        proxy=HttpProxy(),
        admin_token=config.admin_token,
    ))

    app.wsgi_app = LocalDeviceRewrite(app.wsgi_app)  # type: ignore[method-assign]

    _core_log(
        "info",
        "app init",
        root=config.root_dir,
        data=config.data_dir,
        auth=gate.required,
        read_token=bool(config.read_token),
    )
    return app
