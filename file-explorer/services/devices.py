"""Device registry persisted in ``devices.json``.

A device is either a remote hub reached over HTTP or a host reached over
SSH. The synthetic ``local`` device is never stored: it is built on every
``list()`` from the current settings.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any, ClassVar, Dict, List, Optional, Union

from services.errors import BadGateway, BadRequest, Conflict, NotFound
from services.http_proxy import PROBE_TIMEOUT, pick_token, probe
from services.logging_setup import core_log as _core_log
from services.schemas import DeviceCreate, DeviceUpdate
from services.settings import SettingsStore, slugify
from services.ssh_exec import SshFs, SshRunner
from services.storage import load_json, save_json


LOCAL_ID = "local"
DEFAULT_DEVICE_ICON = "🖥️"

SSH_ADD_PROBE_TIMEOUT = 8.0
SSH_HEALTH_TIMEOUT = 5.0


@dataclass
class HttpConnection:
    type: ClassVar[str] = "http"

    url: str
    auth_token: Optional[str] = None


@dataclass
class SshConnection:
    type: ClassVar[str] = "ssh"

    host: str
    remote_root: str = "/"


Connection = Union[HttpConnection, SshConnection]


@dataclass
class Device:
    id: str
    name: str
    connection: Optional[Connection] = None
    icon: str = DEFAULT_DEVICE_ICON
    enabled: bool = True
    is_local: bool = False

    @property
    def type(self) -> str:
        if self.is_local or self.connection is None:
            return LOCAL_ID
        return self.connection.type

    def to_public(self) -> Dict[str, Any]:
        conn = self.connection
        d: Dict[str, Any] = {
            "id": self.id,
            "name": self.name,
            "type": self.type,
            "url": "",
            "icon": self.icon,
            "enabled": self.enabled,
            "hasAuthToken": False,
        }
        if isinstance(conn, HttpConnection):
            d["url"] = conn.url
            d["hasAuthToken"] = bool(conn.auth_token)
        elif isinstance(conn, SshConnection):
            d["url"] = f"ssh://{conn.host}"
            d["sshHost"] = conn.host
            d["sshRoot"] = conn.remote_root
        if self.is_local:
            d["isLocal"] = True
        return d

    def to_record(self) -> Dict[str, Any]:
        rec: Dict[str, Any] = {"id": self.id, "name": self.name}
        conn = self.connection
        if isinstance(conn, HttpConnection):
            rec["url"] = conn.url
            if conn.auth_token:
                rec["authToken"] = conn.auth_token
        elif isinstance(conn, SshConnection):
            rec["sshHost"] = conn.host
            rec["sshRoot"] = conn.remote_root
        rec["icon"] = self.icon
        rec["enabled"] = self.enabled
        return rec

    @classmethod
    def from_record(cls, rec: Any) -> Optional["Device"]:
        if not isinstance(rec, dict):
            return None
        dev_id = str(rec.get("id") or "").strip()
        if not dev_id or dev_id == LOCAL_ID:
            return None
        conn: Connection
        if rec.get("sshHost"):
            conn = SshConnection(host=str(rec["sshHost"]), remote_root=str(rec.get("sshRoot") or "/"))
        elif rec.get("url"):
            conn = HttpConnection(url=str(rec["url"]).rstrip("/"), auth_token=(str(rec.get("authToken") or "") or None))
        else:
            return None
        return cls(
            id=dev_id,
            name=str(rec.get("name") or dev_id),
            connection=conn,
            icon=str(rec.get("icon") or DEFAULT_DEVICE_ICON),
            enabled=rec.get("enabled") is not False,
        )


def _latency_ms(start: float) -> int:
    return int((time.monotonic() - start) * 1000)


class DeviceRegistry:
    def __init__(
        self,
        devices_file: str,
        settings: SettingsStore,
        *,
        ssh_runner: Optional[SshRunner] = None,
        admin_token: Optional[str] = None,
    ) -> None:
        self.devices_file = devices_file
        self.settings = settings
        self.ssh_runner = ssh_runner or SshRunner()
        self.admin_token = admin_token

    # --------------------------- persistence ---------------------------

    def _load(self) -> List[Device]:
        raw = load_json(self.devices_file, default=[])
        if not isinstance(raw, list):
            _core_log("warning", "devices.bad_file", path=self.devices_file)
            return []
        out: List[Device] = []
        for rec in raw:
            dev = Device.from_record(rec)
            if dev is None:
                _core_log("warning", "devices.skip_record", record=repr(rec)[:120])
                continue
            out.append(dev)
        return out

    def _save(self, devices: List[Device]) -> None:
        save_json(self.devices_file, [d.to_record() for d in devices])

    def local_device(self) -> Device:
        return Device(
            id=LOCAL_ID,
            name=self.settings.local_name(),
            icon=self.settings.local_icon(),
            enabled=True,
            is_local=True,
        )

    # --------------------------- queries ---------------------------

    def list(self) -> List[Device]:
        return [self.local_device()] + self._load()

    def get(self, device_id: str) -> Device:
        if device_id == LOCAL_ID:
            return self.local_device()
        for dev in self._load():
            if dev.id == device_id:
                return dev
        raise NotFound("Device not found")

    def ssh_backend(self, conn: SshConnection) -> SshFs:
        return SshFs(conn.host, conn.remote_root, self.ssh_runner)

    # --------------------------- mutations ---------------------------

    def add(self, body: DeviceCreate, caller_token: Optional[str] = None) -> Device:
        conn: Connection
        if body.is_ssh:
            host = body.ssh_host or ""
            if host.startswith("-") or any(c.isspace() for c in host):
                raise BadRequest("Invalid sshHost")
            name = body.name or host
        else:
            if not body.name or not body.url:
                raise BadRequest("name and url required")
            name = body.name

        dev_id = slugify(name) or f"device-{int(time.time() * 1000)}"
        devices = self._load()
        if dev_id == LOCAL_ID or any(d.id == dev_id for d in devices):
            raise Conflict("Device ID already exists")

        if body.is_ssh:
            home = SshFs(body.ssh_host or "", "/", self.ssh_runner).probe_home(SSH_ADD_PROBE_TIMEOUT)
            conn = SshConnection(host=body.ssh_host or "", remote_root=body.ssh_root or home or "/")
        else:
            url = (body.url or "").rstrip("/")
            token = pick_token(body.auth_token, caller_token, self.admin_token)
            res = probe(url, token, PROBE_TIMEOUT)
            if res.error is not None:
                _core_log("warning", "devices.probe_failed", url=url, error=res.error)
                raise BadGateway(f"Cannot reach {body.url}: {res.error}")
            if not res.ok:
                _core_log("warning", "devices.probe_failed", url=url, status=res.http_status)
                raise BadGateway(f"Remote returned {res.http_status}")
            conn = HttpConnection(url=url, auth_token=body.auth_token)

        dev = Device(id=dev_id, name=name, connection=conn, icon=body.icon or DEFAULT_DEVICE_ICON)
        devices.append(dev)
        self._save(devices)
        _core_log("info", "devices.add", id=dev_id, type=dev.type)
        return dev

    def update(self, device_id: str, patch: DeviceUpdate) -> Device:
        if device_id == LOCAL_ID:
            raise BadRequest("Cannot edit local device")
        devices = self._load()
        for dev in devices:
            if dev.id != device_id:
                continue
            if patch.name is not None:
                dev.name = patch.name
            if patch.icon is not None:
                dev.icon = patch.icon
            if patch.enabled is not None:
                dev.enabled = patch.enabled
            conn = dev.connection
            if isinstance(conn, HttpConnection):
                if patch.url is not None:
                    conn.url = patch.url.rstrip("/")
                if patch.auth_token is not None:
                    conn.auth_token = patch.auth_token or None
            elif isinstance(conn, SshConnection) and patch.ssh_root is not None:
                conn.remote_root = patch.ssh_root or "/"
            self._save(devices)
            _core_log("info", "devices.update", id=device_id)
            return dev
        raise NotFound("Device not found")

    def remove(self, device_id: str) -> None:
        if device_id == LOCAL_ID:
            raise BadRequest("Cannot delete local device")
        devices = self._load()
        remaining = [d for d in devices if d.id != device_id]
        if len(remaining) == len(devices):
            raise NotFound("Device not found")
        self._save(remaining)
        _core_log("info", "devices.remove", id=device_id)

    # --------------------------- health ---------------------------

    def health_check(self, device_id: str, caller_token: Optional[str] = None) -> Dict[str, Any]:
        dev = self.get(device_id)
        conn = dev.connection
        if dev.is_local or conn is None:
            return {"status": "ok", "latency": 0}

        if isinstance(conn, SshConnection):
            start = time.monotonic()
            res = self.ssh_backend(conn).run("echo ok", timeout=SSH_HEALTH_TIMEOUT)
            latency = _latency_ms(start)
            if res.ok and res.stdout.decode("utf-8", "replace").strip() == "ok":
                return {"status": "ok", "latency": latency}
            return {
                "status": "unreachable",
                "latency": latency,
                "error": res.stderr_tail() or f"ssh exited with code {res.code}",
            }

        token = pick_token(conn.auth_token, caller_token, self.admin_token)
        res = probe(conn.url, token, PROBE_TIMEOUT)
        if res.error is not None:
            return {"status": "unreachable", "latency": res.latency, "error": res.error}
        return {"status": "ok" if res.ok else "error", "latency": res.latency, "httpStatus": res.http_status}
