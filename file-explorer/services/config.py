"""Environment-driven configuration for the hub.

Everything is read once into an immutable :class:`HubConfig`; ``create_app``
accepts an explicit instance so tests never touch the real environment.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Mapping, Optional


DEFAULT_PORT = 3456
DEFAULT_BIND_HOST = "0.0.0.0"


def _read_str_env(env: Mapping[str, str], name: str) -> Optional[str]:
    v = str(env.get(name, "") or "").strip()
    return v or None


def _read_int_env(env: Mapping[str, str], name: str, default: int) -> int:
    v = str(env.get(name, "") or "").strip()
    if not v:
        return default
    try:
        return int(float(v))
    except ValueError:
        return default


@dataclass(frozen=True)
class HubConfig:
    root_dir: str
    data_dir: str
    admin_token: Optional[str] = None
    read_token: Optional[str] = None
    bind_host: str = DEFAULT_BIND_HOST
    port: int = DEFAULT_PORT
    ssh_bin: str = "ssh"
    log_dir: Optional[str] = None

    @property
    def devices_file(self) -> str:
        return os.path.join(self.data_dir, "devices.json")

    @property
    def settings_file(self) -> str:
        return os.path.join(self.data_dir, "settings.json")


def load_config(env: Optional[Mapping[str, str]] = None) -> HubConfig:
    """Build a :class:`HubConfig` from ``env`` (defaults to ``os.environ``)."""
    env = os.environ if env is None else env
    home = _read_str_env(env, "HOME") or os.path.expanduser("~") or "/"

    root_dir = _read_str_env(env, "FILE_EXPLORER_ROOT") or home
    data_dir = _read_str_env(env, "FILE_EXPLORER_DATA") or os.path.join(home, ".file-explorer")

    # FILE_EXPLORER_API_TOKEN is the pre-roles name of the admin secret.
    admin_token = _read_str_env(env, "FILE_EXPLORER_ADMIN_TOKEN") or _read_str_env(env, "FILE_EXPLORER_API_TOKEN")

    return HubConfig(
        root_dir=os.path.realpath(root_dir),
        data_dir=data_dir,
        admin_token=admin_token,
        read_token=_read_str_env(env, "FILE_EXPLORER_READ_TOKEN"),
        bind_host=_read_str_env(env, "BIND_HOST") or DEFAULT_BIND_HOST,
        port=_read_int_env(env, "PORT", DEFAULT_PORT),
        ssh_bin=_read_str_env(env, "FILE_EXPLORER_SSH_BIN") or "ssh",
        log_dir=_read_str_env(env, "FILE_EXPLORER_LOG_DIR"),
    )
