"""Persisted hub settings: local device identity and combo views.

``settings.json`` is re-read on every call (no cache) and rewritten
atomically on every mutation. Combo views reference device ids loosely:
deleting a device never touches the combos that mention it.
"""

from __future__ import annotations

import re
import socket
import time
from typing import Any, Dict, List, Optional

from services.errors import Conflict, NotFound
from services.logging_setup import core_log as _core_log
from services.schemas import ComboCreate, ComboUpdate, SettingsUpdate
from services.storage import load_json, save_json


DEFAULT_LOCAL_ICON = "💻"
DEFAULT_COMBO_ICON = "📁"

_SLUG_RE = re.compile(r"[^a-z0-9]+")


def slugify(name: str) -> str:
    """Lowercase, runs of non-alphanumerics to ``-``, outer ``-`` trimmed."""
    return _SLUG_RE.sub("-", str(name or "").lower()).strip("-")


def local_hostname() -> str:
    host = socket.gethostname() or ""
    if host.endswith(".local"):
        host = host[: -len(".local")]
    return host or "This Machine"


def _clean_combo(raw: Any) -> Optional[Dict[str, Any]]:
    if not isinstance(raw, dict) or not raw.get("id"):
        return None
    ids = raw.get("deviceIds")
    return {
        "id": str(raw["id"]),
        "name": str(raw.get("name") or raw["id"]),
        "icon": str(raw.get("icon") or DEFAULT_COMBO_ICON),
        "deviceIds": [str(x) for x in ids] if isinstance(ids, list) else [],
    }


class SettingsStore:
    def __init__(self, path: str) -> None:
        self.path = path

    # --------------------------- raw document ---------------------------

    def load(self) -> Dict[str, Any]:
        data = load_json(self.path, default=None)
        if not isinstance(data, dict):
            data = {}
        settings: Dict[str, Any] = {"comboViews": []}
        for key in ("localName", "localIcon"):
            if isinstance(data.get(key), str) and data[key]:
                settings[key] = data[key]
        combos = data.get("comboViews")
        if isinstance(combos, list):
            settings["comboViews"] = [c for c in (_clean_combo(x) for x in combos) if c is not None]
        return settings

    def save(self, settings: Dict[str, Any]) -> None:
        save_json(self.path, settings)

    # --------------------------- local identity ---------------------------

    def local_name(self) -> str:
        return self.load().get("localName") or local_hostname()

    def local_icon(self) -> str:
        return self.load().get("localIcon") or DEFAULT_LOCAL_ICON

    def update(self, patch: SettingsUpdate) -> Dict[str, Any]:
        settings = self.load()
        for key, value in (("localName", patch.local_name), ("localIcon", patch.local_icon)):
            if value is None:
                continue
            if value:
                settings[key] = value
            else:
                settings.pop(key, None)
        self.save(settings)
        return settings

    # --------------------------- combo views ---------------------------

    def list_combos(self) -> List[Dict[str, Any]]:
        return self.load()["comboViews"]

    def create_combo(self, body: ComboCreate) -> Dict[str, Any]:
        settings = self.load()
        combo_id = slugify(body.name) or f"combo-{int(time.time() * 1000)}"
        if any(c["id"] == combo_id for c in settings["comboViews"]):
            raise Conflict("Combo view with this name already exists")
        combo = {
            "id": combo_id,
            "name": body.name,
            "icon": body.icon or DEFAULT_COMBO_ICON,
            "deviceIds": list(body.device_ids),
        }
        settings["comboViews"].append(combo)
        self.save(settings)
        _core_log("info", "combo.create", id=combo_id, devices=len(combo["deviceIds"]))
        return combo

    def update_combo(self, combo_id: str, patch: ComboUpdate) -> Dict[str, Any]:
        settings = self.load()
        for combo in settings["comboViews"]:
            if combo["id"] != combo_id:
                continue
            if patch.name is not None:
                combo["name"] = patch.name
            if patch.icon is not None:
                combo["icon"] = patch.icon
            if patch.device_ids is not None:
                combo["deviceIds"] = list(patch.device_ids)
            self.save(settings)
            return combo
        raise NotFound("Combo view not found")

    def delete_combo(self, combo_id: str) -> None:
        settings = self.load()
        remaining = [c for c in settings["comboViews"] if c["id"] != combo_id]
        if len(remaining) == len(settings["comboViews"]):
            raise NotFound("Combo view not found")
        settings["comboViews"] = remaining
        self.save(settings)
        _core_log("info", "combo.delete", id=combo_id)
