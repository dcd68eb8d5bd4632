"""Device management and identity routes as a Flask Blueprint."""
from __future__ import annotations

import socket
from typing import Any, Callable, List

from flask import Blueprint, g, jsonify, request

from services.devices import DeviceRegistry
from services.schemas import DeviceCreate, DeviceUpdate
from services.settings import local_hostname


def local_ipv4_addresses() -> List[str]:
    """Non-loopback IPv4 addresses of this host (best-effort)."""
    ips: List[str] = []
    try:
        infos = socket.getaddrinfo(socket.gethostname(), None, socket.AF_INET)
    except OSError:
        infos = []
    for info in infos:
        ip = info[4][0]
        if not ip.startswith("127.") and ip not in ips:
            ips.append(ip)
    # Hosts whose name resolves to loopback only: ask the routing table.
    if not ips:
        s = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        try:
            s.connect(("192.0.2.1", 9))
            ip = s.getsockname()[0]
            if ip and not ip.startswith("127."):
                ips.append(ip)
        except OSError:
            pass
        finally:
            s.close()
    return ips


def create_devices_blueprint(registry: DeviceRegistry, port: int, get_ips: Callable[[], List[str]] = local_ipv4_addresses) -> Blueprint:
    bp = Blueprint("devices", __name__)

    @bp.get("/api/whoami")
    def api_whoami() -> Any:
        return jsonify({
            "hostname": local_hostname(),
            "name": registry.settings.local_name(),
            "icon": registry.settings.local_icon(),
            "port": port,
            "ips": get_ips(),
        })

    @bp.get("/api/devices")
    def api_devices_list() -> Any:
        return jsonify({"devices": [d.to_public() for d in registry.list()]})

    @bp.post("/api/devices")
    def api_devices_add() -> Any:
        body = DeviceCreate.parse(request.get_json(silent=True))
        dev = registry.add(body, caller_token=g.get("caller_token"))
        return jsonify({"success": True, "device": dev.to_public()})

    @bp.put("/api/devices/<device_id>")
    def api_devices_update(device_id: str) -> Any:
        dev = registry.update(device_id, DeviceUpdate.parse(request.get_json(silent=True)))
        return jsonify({"success": True, "device": dev.to_public()})

    @bp.delete("/api/devices/<device_id>")
    def api_devices_delete(device_id: str) -> Any:
        registry.remove(device_id)
        return jsonify({"success": True})

    @bp.get("/api/devices/<device_id>/health")
    def api_devices_health(device_id: str) -> Any:
        return jsonify(registry.health_check(device_id, caller_token=g.get("caller_token")))

    return bp
