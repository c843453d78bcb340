"""Input loading and settings for fanout."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml


@dataclass
class SSHSettings:
    """Options handed to the SSH transport for every attempt."""

    user: str | None = None
    port: int | None = None
    ssh_key: Path | None = None
    connect_timeout: float = 2
    command_timeout: float | None = None
    known_hosts: Path | None = None  # None disables host key verification


@dataclass
class Settings:
    """Main settings for a dispatch run."""

    ssh: SSHSettings = field(default_factory=SSHSettings)
    output_dir: Path = field(default_factory=lambda: Path("."))
    max_workers: int | None = None  # None means one task per command
    seed: int | None = None
    source_path: Path | None = None  # Settings file this was loaded from


def read_lines(path: str | Path) -> list[str]:
    """Read all non-empty lines of a file, in order."""
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"File not found: {path}")

    with open(path, encoding="utf-8") as f:
        lines = [line.rstrip() for line in f]
    return [line for line in lines if line]


def load_settings(settings_path: str | Path | None = None) -> Settings:
    """Load and validate settings from a YAML file.

    With no path the defaults are returned.
    """
    if settings_path is None:
        return Settings()

    settings_path = Path(settings_path).resolve()
    if not settings_path.exists():
        raise FileNotFoundError(f"Settings file not found: {settings_path}")

    with open(settings_path) as f:
        raw = yaml.safe_load(f) or {}

    if not isinstance(raw, dict):
        raise ValueError("Settings file must contain a mapping")

    settings = _parse_settings(raw)
    settings.source_path = settings_path
    return settings


def _parse_settings(raw: dict[str, Any]) -> Settings:
    """Parse raw YAML data into a Settings object."""
    ssh = _parse_ssh(raw.get("ssh") or {})

    output_dir = Path(raw.get("output_dir", ".")).expanduser()

    max_workers = _optional_int(raw, "max_workers")
    if max_workers is not None and max_workers <= 0:
        raise ValueError(f"max_workers must be > 0, got {max_workers}")

    return Settings(
        ssh=ssh,
        output_dir=output_dir,
        max_workers=max_workers,
        seed=_optional_int(raw, "seed"),
    )


def _parse_ssh(ssh_raw: dict[str, Any]) -> SSHSettings:
    """Parse the ssh section."""
    if not isinstance(ssh_raw, dict):
        raise ValueError("'ssh' section must be a mapping")

    user = ssh_raw.get("user")
    if user is not None and not isinstance(user, str):
        raise ValueError("'ssh.user' must be a string")

    ssh_key = None
    if ssh_raw.get("ssh_key"):
        ssh_key = Path(ssh_raw["ssh_key"]).expanduser()

    # false/absent disables verification, true uses the default file
    known_hosts_raw = ssh_raw.get("known_hosts", False)
    if known_hosts_raw is True:
        known_hosts = Path("~/.ssh/known_hosts").expanduser()
    elif known_hosts_raw:
        known_hosts = Path(known_hosts_raw).expanduser()
    else:
        known_hosts = None

    connect_timeout = _optional_number(ssh_raw, "connect_timeout")
    if connect_timeout is not None and connect_timeout <= 0:
        raise ValueError(f"connect_timeout must be > 0, got {connect_timeout}")

    return SSHSettings(
        user=user,
        port=_optional_int(ssh_raw, "port"),
        ssh_key=ssh_key,
        connect_timeout=connect_timeout if connect_timeout is not None else 2,
        command_timeout=_optional_number(ssh_raw, "command_timeout"),
        known_hosts=known_hosts,
    )


def _optional_int(raw: dict[str, Any], key: str) -> int | None:
    value = raw.get(key)
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"'{key}' must be an integer, got {value!r}")
    return value


def _optional_number(raw: dict[str, Any], key: str) -> float | None:
    value = raw.get(key)
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f"'{key}' must be a number, got {value!r}")
    return value
