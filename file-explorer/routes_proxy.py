"""Per-device dispatch: ``/api/d/<device_id>/<rest>``.

``local`` never reaches the blueprint: :class:`LocalDeviceRewrite` rewrites
the WSGI path to the plain local route before Flask sees it. Every other
device is looked up in the registry and handed to the SSH adapter or the
HTTP forwarder according to its connection.
"""
from __future__ import annotations

from typing import Any, Callable, Optional

from flask import Blueprint, g, request

from services.devices import LOCAL_ID, DeviceRegistry, HttpConnection, SshConnection
from services.errors import Forbidden, NotFound
from services.fileops import FileBackend, handle_operation
from services.http_proxy import HttpProxy


LOCAL_PREFIX = f"/api/d/{LOCAL_ID}/"

PROXY_METHODS = ["GET", "HEAD", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"]


class LocalDeviceRewrite:
    """WSGI middleware: ``/api/d/local/<rest>`` -> ``/api/<rest>``.

    Only ``PATH_INFO`` changes; method, headers, query string and the body
    stream reach Flask untouched.
    """

    def __init__(self, wsgi_app: Callable) -> None:
        self.wsgi_app = wsgi_app

    def __call__(self, environ, start_response):
        path = environ.get("PATH_INFO", "") or ""
        if path.startswith(LOCAL_PREFIX):
            environ["PATH_INFO"] = "/api/" + path[len(LOCAL_PREFIX):]
        return self.wsgi_app(environ, start_response)


def create_proxy_blueprint(
    registry: DeviceRegistry,
    *,
    proxy: Optional[HttpProxy] = None,
    admin_token: Optional[str] = None,
) -> Blueprint:
    bp = Blueprint("proxy", __name__)
    http_proxy = proxy or HttpProxy()

    def _file_op(backend: FileBackend, rest: str) -> Any:
        op = rest.strip("/")
        if not op or "/" in op:
            raise NotFound("Unknown operation")
        return handle_operation(backend, op, request)

    @bp.route("/api/d/<device_id>/<path:rest>", methods=PROXY_METHODS)
    def api_device_dispatch(device_id: str, rest: str) -> Any:
        dev = registry.get(device_id)
        if not dev.enabled:
            raise Forbidden("Device is disabled")
        conn = dev.connection
        if isinstance(conn, SshConnection):
            return _file_op(registry.ssh_backend(conn), rest)
        if isinstance(conn, HttpConnection):
            return http_proxy.forward(
                dev.id,
                conn.url,
                rest,
                request,
                device_token=conn.auth_token,
                caller_token=g.get("caller_token"),
                admin_token=admin_token,
            )
        raise NotFound("Device not found")

    return bp
