"""
Tests for the device registry and /api/devices routes.
"""

import json
from unittest.mock import patch

import pytest

from services.devices import Device, DeviceRegistry, HttpConnection, SshConnection
from services.errors import BadGateway, Conflict
from services.http_proxy import ProbeResult
from services.schemas import DeviceCreate
from services.settings import SettingsStore

OK = ProbeResult(latency=3, http_status=200)


class TestDeviceRoutes:
    def test_list_starts_with_local(self, client):
        devices = client.get("/api/devices").get_json()["devices"]
        assert len(devices) == 1
        local = devices[0]
        assert local["id"] == "local"
        assert local["isLocal"] is True
        assert local["enabled"] is True
        assert local["icon"] == "💻"

    def test_add_http_device(self, client, data_dir):
        with patch("services.devices.probe", return_value=OK) as mock_probe:
            r = client.post("/api/devices", json={"name": "Mini", "url": "http://mini.lan:3456/"})
        assert r.status_code == 200
        body = r.get_json()
        assert body["success"] is True
        assert body["device"]["id"] == "mini"
        assert body["device"]["hasAuthToken"] is False
        assert body["device"]["url"] == "http://mini.lan:3456"
        assert body["device"]["icon"] == "🖥️"
        mock_probe.assert_called_once()
        assert mock_probe.call_args[0][0] == "http://mini.lan:3456"

        stored = json.loads((data_dir / "devices.json").read_text(encoding="utf-8"))
        assert stored == [{
            "id": "mini",
            "name": "Mini",
            "url": "http://mini.lan:3456",
            "icon": "🖥️",
            "enabled": True,
        }]
        ids = [d["id"] for d in client.get("/api/devices").get_json()["devices"]]
        assert ids == ["local", "mini"]

    def test_duplicate_is_409(self, client):
        with patch("services.devices.probe", return_value=OK):
            client.post("/api/devices", json={"name": "Mini", "url": "http://a"})
            r = client.post("/api/devices", json={"name": "mini", "url": "http://b"})
        assert r.status_code == 409
        assert r.get_json() == {"error": "Device ID already exists"}

    def test_local_id_reserved(self, client):
        with patch("services.devices.probe", return_value=OK) as mock_probe:
            r = client.post("/api/devices", json={"name": "Local", "url": "http://a"})
        assert r.status_code == 409
        mock_probe.assert_not_called()

    def test_name_and_url_required(self, client):
        r = client.post("/api/devices", json={"name": "x"})
        assert r.status_code == 400
        assert r.get_json() == {"error": "name and url required"}

    def test_probe_status_failure(self, client):
        with patch("services.devices.probe", return_value=ProbeResult(latency=1, http_status=401)):
            r = client.post("/api/devices", json={"name": "Mini", "url": "http://a"})
        assert r.status_code == 502
        assert r.get_json() == {"error": "Remote returned 401"}

    def test_probe_unreachable(self, client):
        r = client.post("/api/devices", json={"name": "Gone", "url": "http://127.0.0.1:1"})
        assert r.status_code == 502
        assert r.get_json()["error"].startswith("Cannot reach http://127.0.0.1:1: ")

    def test_auth_token_hidden(self, client, data_dir):
        with patch("services.devices.probe", return_value=OK):
            r = client.post("/api/devices", json={"name": "Box", "url": "http://box", "authToken": "t0k"})
        dev = r.get_json()["device"]
        assert dev["hasAuthToken"] is True
        assert "authToken" not in dev
        assert "t0k" not in r.get_data(as_text=True)
        stored = json.loads((data_dir / "devices.json").read_text(encoding="utf-8"))
        assert stored[0]["authToken"] == "t0k"

    def test_update(self, client, write_devices):
        write_devices([{"id": "mini", "name": "Mini", "url": "http://a", "authToken": "t", "icon": "x", "enabled": True}])
        r = client.put("/api/devices/mini", json={"name": "Mini 2", "url": "http://b///", "enabled": False, "authToken": ""})
        dev = r.get_json()["device"]
        assert dev["id"] == "mini"
        assert dev["name"] == "Mini 2"
        assert dev["url"] == "http://b"
        assert dev["enabled"] is False
        assert dev["hasAuthToken"] is False

    @pytest.mark.parametrize("url", ["", "   "])
    def test_update_rejects_empty_url(self, client, write_devices, url):
        write_devices([{"id": "mini", "name": "Mini", "url": "http://x:1"}])
        r = client.put("/api/devices/mini", json={"url": url})
        assert r.status_code == 400
        assert r.get_json() == {"error": "url must not be empty"}
        devices = client.get("/api/devices").get_json()["devices"]
        assert [(d["id"], d["url"]) for d in devices if d["id"] == "mini"] == [("mini", "http://x:1")]

    def test_url_and_ssh_host_are_exclusive(self, client):
        r = client.post("/api/devices", json={"name": "Both", "url": "http://a", "sshHost": "box"})
        assert r.status_code == 400
        assert r.get_json() == {"error": "Provide either url or sshHost, not both"}
        assert [d["id"] for d in client.get("/api/devices").get_json()["devices"]] == ["local"]

    def test_update_and_delete_local_refused(self, client):
        r = client.put("/api/devices/local", json={"name": "x"})
        assert r.status_code == 400
        assert r.get_json() == {"error": "Cannot edit local device"}
        r = client.delete("/api/devices/local")
        assert r.status_code == 400
        assert r.get_json() == {"error": "Cannot delete local device"}

    def test_update_and_delete_missing(self, client):
        assert client.put("/api/devices/ghost", json={}).status_code == 404
        assert client.delete("/api/devices/ghost").status_code == 404

    def test_delete(self, client, write_devices):
        write_devices([{"id": "mini", "name": "Mini", "url": "http://a"}])
        assert client.delete("/api/devices/mini").get_json() == {"success": True}
        assert [d["id"] for d in client.get("/api/devices").get_json()["devices"]] == ["local"]

    def test_corrupt_file_degrades(self, client, data_dir):
        (data_dir / "devices.json").write_text("{not json", encoding="utf-8")
        assert [d["id"] for d in client.get("/api/devices").get_json()["devices"]] == ["local"]

    def test_bad_records_skipped(self, client, write_devices):
        write_devices([42, {"name": "no id"}, {"id": "x"}, {"id": "ok", "name": "OK", "url": "http://a"}])
        assert [d["id"] for d in client.get("/api/devices").get_json()["devices"]] == ["local", "ok"]


class TestHealth:
    def test_local_always_ok(self, client):
        assert client.get("/api/devices/local/health").get_json() == {"status": "ok", "latency": 0}

    def test_unknown_is_404(self, client):
        r = client.get("/api/devices/ghost/health")
        assert r.status_code == 404
        assert r.get_json() == {"error": "Device not found"}

    def test_unreachable_http(self, client, write_devices):
        write_devices([{"id": "gone", "name": "Gone", "url": "http://127.0.0.1:1"}])
        data = client.get("/api/devices/gone/health").get_json()
        assert data["status"] == "unreachable"
        assert isinstance(data["latency"], int)
        assert data["error"]

    def test_http_error_status(self, client, write_devices):
        write_devices([{"id": "m", "name": "M", "url": "http://m"}])
        with patch("services.devices.probe", return_value=ProbeResult(latency=7, http_status=500)):
            data = client.get("/api/devices/m/health").get_json()
        assert data == {"status": "error", "latency": 7, "httpStatus": 500}

    def test_ssh_health_ok(self, client, write_devices, root_dir):
        write_devices([{"id": "box", "name": "Box", "sshHost": "box", "sshRoot": str(root_dir)}])
        data = client.get("/api/devices/box/health").get_json()
        assert data["status"] == "ok"


class TestCredentialLayering:
    @pytest.fixture
    def registry(self, data_dir):
        settings = SettingsStore(str(data_dir / "settings.json"))
        return DeviceRegistry(str(data_dir / "devices.json"), settings, admin_token="admin")

    def _add(self, registry, caller, **fields):
        body = DeviceCreate(name="Mini", url="http://mini", icon=None, auth_token=None, ssh_host=None, ssh_root=None)
        for k, v in fields.items():
            setattr(body, k, v)
        with patch("services.devices.probe", return_value=OK) as mock_probe:
            registry.add(body, caller_token=caller)
        return mock_probe.call_args[0][1]

    def test_explicit_token_wins(self, registry):
        assert self._add(registry, "caller", auth_token="explicit") == "explicit"

    def test_caller_token_next(self, registry):
        assert self._add(registry, "caller") == "caller"

    def test_admin_token_last(self, registry):
        assert self._add(registry, None) == "admin"

    def test_health_uses_device_token_first(self, registry, write_devices):
        write_devices([{"id": "m", "name": "M", "url": "http://m", "authToken": "dev"}])
        with patch("services.devices.probe", return_value=OK) as mock_probe:
            registry.health_check("m", caller_token="caller")
        assert mock_probe.call_args[0][1] == "dev"

    def test_conflict_before_probe(self, registry, write_devices):
        write_devices([{"id": "mini", "name": "Mini", "url": "http://m"}])
        with patch("services.devices.probe") as mock_probe:
            with pytest.raises(Conflict):
                self._add(registry, None)
        mock_probe.assert_not_called()


class TestDeviceModel:
    def test_ssh_round_trip(self):
        dev = Device(id="box", name="Box", connection=SshConnection(host="pi@box", remote_root="/srv"))
        rec = dev.to_record()
        assert rec == {"id": "box", "name": "Box", "sshHost": "pi@box", "sshRoot": "/srv", "icon": "🖥️", "enabled": True}
        back = Device.from_record(rec)
        assert back == dev
        pub = back.to_public()
        assert pub["type"] == "ssh"
        assert pub["sshHost"] == "pi@box"
        assert pub["hasAuthToken"] is False

    def test_http_public_never_has_token(self):
        dev = Device(id="m", name="M", connection=HttpConnection(url="http://m", auth_token="secret"))
        assert "secret" not in json.dumps(dev.to_public())

    def test_local_record_ignored(self):
        assert Device.from_record({"id": "local", "name": "L", "url": "http://x"}) is None

    def test_ssh_add_probe_failure(self, data_dir):
        from services.ssh_exec import SshResult, SshRunner

        class FailingRunner(SshRunner):
            def run(self, host, command, *, stdin=None, timeout=15.0):
                return SshResult(255, b"", b"ssh: connect to host box port 22: Connection refused")

        settings = SettingsStore(str(data_dir / "settings.json"))
        registry = DeviceRegistry(str(data_dir / "devices.json"), settings, ssh_runner=FailingRunner())
        body = DeviceCreate(name=None, url=None, icon=None, auth_token=None, ssh_host="box", ssh_root=None)
        with pytest.raises(BadGateway):
            registry.add(body)
        assert [d.id for d in registry.list()] == ["local"]
