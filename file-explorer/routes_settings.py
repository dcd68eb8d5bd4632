"""Settings and combo-view routes as a Flask Blueprint."""
from __future__ import annotations

from typing import Any

from flask import Blueprint, jsonify, request

from services.schemas import ComboCreate, ComboUpdate, SettingsUpdate
from services.settings import SettingsStore


def create_settings_blueprint(store: SettingsStore) -> Blueprint:
    bp = Blueprint("settings", __name__)

    @bp.get("/api/settings")
    def api_settings_get() -> Any:
        return jsonify(store.load())

    @bp.put("/api/settings")
    def api_settings_put() -> Any:
        settings = store.update(SettingsUpdate.parse(request.get_json(silent=True)))
        return jsonify({"success": True, "settings": settings})

    @bp.get("/api/combos")
    def api_combos_list() -> Any:
        return jsonify({"combos": store.list_combos()})

    @bp.post("/api/combos")
    def api_combos_create() -> Any:
        combo = store.create_combo(ComboCreate.parse(request.get_json(silent=True)))
        return jsonify({"success": True, "combo": combo})

    @bp.put("/api/combos/<combo_id>")
    def api_combos_update(combo_id: str) -> Any:
        combo = store.update_combo(combo_id, ComboUpdate.parse(request.get_json(silent=True)))
        return jsonify({"success": True, "combo": combo})

    @bp.delete("/api/combos/<combo_id>")
    def api_combos_delete(combo_id: str) -> Any:
        store.delete_combo(combo_id)
        return jsonify({"success": True})

    return bp
