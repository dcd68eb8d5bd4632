"""Request payload schemas, validated at the HTTP boundary.

Each route parses its JSON body into one of these dataclasses. Wrong shapes
(non-object bodies, wrong field types) raise :class:`BadRequest`; fields the
hub does not know are ignored. For partial updates ``None`` means "not sent".
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from services.errors import BadRequest


def json_object(data: Any) -> Dict[str, Any]:
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise BadRequest("Request body must be a JSON object")
    return data


def _opt_str(data: Dict[str, Any], key: str, *, null_as: Optional[str] = None) -> Optional[str]:
    v = data.get(key)
    if v is None:
        return null_as if key in data else None
    if not isinstance(v, str):
        raise BadRequest(f"{key} must be a string")
    return v


def _opt_bool(data: Dict[str, Any], key: str) -> Optional[bool]:
    v = data.get(key)
    if v is None:
        return None
    if not isinstance(v, bool):
        raise BadRequest(f"{key} must be a boolean")
    return v


def _opt_int(data: Dict[str, Any], key: str) -> Optional[int]:
    v = data.get(key)
    if v is None:
        return None
    if isinstance(v, bool) or not isinstance(v, (int, float)):
        raise BadRequest(f"{key} must be a number")
    return int(v)


def _opt_str_list(data: Dict[str, Any], key: str) -> Optional[List[str]]:
    v = data.get(key)
    if v is None:
        return None
    if not isinstance(v, list) or not all(isinstance(x, str) for x in v):
        raise BadRequest(f"{key} must be an array of strings")
    return list(v)


# --------------------------- file operations ---------------------------


@dataclass
class PathBody:
    path: str

    @classmethod
    def parse(cls, data: Any) -> "PathBody":
        d = json_object(data)
        return cls(path=_opt_str(d, "path") or "")


@dataclass
class ContentBody:
    path: str
    content: str

    @classmethod
    def parse(cls, data: Any, *, content_required: bool = False) -> "ContentBody":
        d = json_object(data)
        content = _opt_str(d, "content")
        if content is None and content_required:
            raise BadRequest("content required")
        return cls(path=_opt_str(d, "path") or "", content=content or "")


@dataclass
class RenameBody:
    src: str
    dst: str

    @classmethod
    def parse(cls, data: Any) -> "RenameBody":
        d = json_object(data)
        src = _opt_str(d, "from")
        dst = _opt_str(d, "to")
        if not src or not dst:
            raise BadRequest("from and to required")
        return cls(src=src, dst=dst)


@dataclass
class RecentBody:
    path: str
    name: str
    type: Optional[str] = None
    size: Optional[int] = None

    @classmethod
    def parse(cls, data: Any) -> "RecentBody":
        d = json_object(data)
        path = _opt_str(d, "path")
        if not path:
            raise BadRequest("path required")
        return cls(
            path=path,
            name=_opt_str(d, "name") or path.rsplit("/", 1)[-1],
            type=_opt_str(d, "type"),
            size=_opt_int(d, "size"),
        )


# --------------------------- devices ---------------------------


@dataclass
class DeviceCreate:
    name: Optional[str]
    url: Optional[str]
    icon: Optional[str]
    auth_token: Optional[str]
    ssh_host: Optional[str]
    ssh_root: Optional[str]

    @property
    def is_ssh(self) -> bool:
        return bool(self.ssh_host)

    @classmethod
    def parse(cls, data: Any) -> "DeviceCreate":
        d = json_object(data)
        url = (_opt_str(d, "url") or "").strip() or None
        ssh_host = (_opt_str(d, "sshHost") or "").strip() or None
        if url and ssh_host:
            raise BadRequest("Provide either url or sshHost, not both")
        return cls(
            name=(_opt_str(d, "name") or "").strip() or None,
            url=url,
            icon=_opt_str(d, "icon") or None,
            auth_token=_opt_str(d, "authToken") or None,
            ssh_host=ssh_host,
            ssh_root=(_opt_str(d, "sshRoot") or "").strip() or None,
        )


@dataclass
class DeviceUpdate:
    name: Optional[str] = None
    url: Optional[str] = None
    icon: Optional[str] = None
    enabled: Optional[bool] = None
    auth_token: Optional[str] = None
    ssh_root: Optional[str] = None

    @classmethod
    def parse(cls, data: Any) -> "DeviceUpdate":
        d = json_object(data)
        url = _opt_str(d, "url")
        if url is not None:
            url = url.strip()
            if not url:
                raise BadRequest("url must not be empty")
        return cls(
            name=_opt_str(d, "name"),
            url=url,
            icon=_opt_str(d, "icon"),
            enabled=_opt_bool(d, "enabled"),
            # null clears, same as ""
            auth_token=_opt_str(d, "authToken", null_as=""),
            ssh_root=_opt_str(d, "sshRoot"),
        )


# --------------------------- settings / combos ---------------------------


@dataclass
class SettingsUpdate:
    local_name: Optional[str] = None
    local_icon: Optional[str] = None

    @classmethod
    def parse(cls, data: Any) -> "SettingsUpdate":
        d = json_object(data)
        return cls(
            local_name=_opt_str(d, "localName", null_as=""),
            local_icon=_opt_str(d, "localIcon", null_as=""),
        )


@dataclass
class ComboCreate:
    name: str
    icon: Optional[str]
    device_ids: List[str]

    @classmethod
    def parse(cls, data: Any) -> "ComboCreate":
        d = json_object(data)
        name = (_opt_str(d, "name") or "").strip()
        if not name:
            raise BadRequest("name required")
        raw_ids = d.get("deviceIds")
        if not isinstance(raw_ids, list) or not raw_ids:
            raise BadRequest("deviceIds required (array of device IDs)")
        device_ids = _opt_str_list(d, "deviceIds") or []
        return cls(name=name, icon=_opt_str(d, "icon") or None, device_ids=device_ids)


@dataclass
class ComboUpdate:
    name: Optional[str] = None
    icon: Optional[str] = None
    device_ids: Optional[List[str]] = None

    @classmethod
    def parse(cls, data: Any) -> "ComboUpdate":
        d = json_object(data)
        return cls(
            name=_opt_str(d, "name"),
            icon=_opt_str(d, "icon"),
            device_ids=_opt_str_list(d, "deviceIds"),
        )
