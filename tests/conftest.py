"""
Pytest fixtures for the file explorer hub tests.
"""

import json
import os
import sys

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "file-explorer"))

from app import create_app  # noqa: E402
from services.config import HubConfig  # noqa: E402
from services.ssh_exec import SshRunner  # noqa: E402

# Smallest valid PNG header is enough for preview tests.
PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00" * 16


class LocalShellRunner(SshRunner):
    """Runs the would-be remote command with the local ``sh``."""

    def argv(self, host, command):
        return ["sh", "-c", command]


def populate_tree(root):
    """Create a small, fixed directory tree under ``root``."""
    (root / "docs").mkdir()
    (root / "docs" / "readme.md").write_text("# Hello\n", encoding="utf-8")
    (root / "src").mkdir()
    (root / "src" / "main.py").write_text("print('hi')\n", encoding="utf-8")
    (root / "notes.txt").write_text("hello notes", encoding="utf-8")
    (root / "Zeta.txt").write_text("zeta", encoding="utf-8")
    (root / "alpha.txt").write_text("alpha", encoding="utf-8")
    (root / "image.png").write_bytes(PNG_BYTES)
    (root / ".hidden").write_text("secret", encoding="utf-8")
    return root


@pytest.fixture
def root_dir(tmp_path):
    root = tmp_path / "root"
    root.mkdir()
    return populate_tree(root)


@pytest.fixture
def data_dir(tmp_path):
    d = tmp_path / "data"
    d.mkdir()
    return d


@pytest.fixture
def make_app(root_dir, data_dir, tmp_path):
    """Factory: ``make_app(admin_token=..., read_token=...)``."""

    def _make(**overrides):
        cfg = HubConfig(
            root_dir=str(root_dir),
            data_dir=str(data_dir),
            log_dir=str(tmp_path / "logs"),
            **overrides,
        )
        app = create_app(cfg, ssh_runner=LocalShellRunner())
        app.config["TESTING"] = True
        return app

    return _make


@pytest.fixture
def app(make_app):
    return make_app()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def write_devices(data_dir):
    """Write raw device records straight into devices.json."""

    def _write(records):
        (data_dir / "devices.json").write_text(json.dumps(records), encoding="utf-8")

    return _write
