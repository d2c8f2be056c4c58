"""Settings storage for installer configuration."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any


SETTINGS_PATH = Path(
    os.environ.get(
        "LIVE_USB_INSTALLER_SETTINGS_PATH",
        Path.home() / ".config" / "live-usb-installer" / "settings.json",
    )
)

# Default values - use these constants instead of hardcoding values elsewhere
DEFAULT_BOOT_LABEL = "boot"
DEFAULT_PERSISTENCE_LABEL = "persistence"
DEFAULT_EXCHANGE_LABEL = "Exchange"
DEFAULT_PARTITION_TIMEOUT_SECONDS = 30.0
DEFAULT_POLL_INTERVAL_SECONDS = 0.25
DEFAULT_MINIMUM_FREE_MEMORY = 300 * 1024 * 1024

DEFAULT_SETTINGS: dict[str, Any] = {
    "boot_label": DEFAULT_BOOT_LABEL,
    "persistence_label": DEFAULT_PERSISTENCE_LABEL,
    "exchange_label": DEFAULT_EXCHANGE_LABEL,
    "exchange_filesystem": "fat32",
    "data_partition_filesystem": "ext4",
    "partition_timeout_seconds": DEFAULT_PARTITION_TIMEOUT_SECONDS,
    "poll_interval_seconds": DEFAULT_POLL_INTERVAL_SECONDS,
    "minimum_free_memory": DEFAULT_MINIMUM_FREE_MEMORY,
    "mount_root": "/media/live-usb-installer",
}


@dataclass
class SettingsStore:
    values: dict[str, Any] = field(default_factory=dict)


settings_store = SettingsStore()


def load_settings() -> None:
    settings_store.values = dict(DEFAULT_SETTINGS)
    if not SETTINGS_PATH.exists():
        return
    try:
        data = json.loads(SETTINGS_PATH.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError):
        return
    if isinstance(data, dict):
        settings_store.values.update(data)


def save_settings() -> None:
    SETTINGS_PATH.parent.mkdir(parents=True, exist_ok=True)
    SETTINGS_PATH.write_text(
        json.dumps(settings_store.values, indent=2, sort_keys=True),
        encoding="utf-8",
    )


def get_setting(key: str, default: Any | None = None) -> Any:
    return settings_store.values.get(key, default)


def set_setting(key: str, value: Any) -> None:
    settings_store.values[key] = value
    save_settings()


def get_float(key: str, default: float = 0.0) -> float:
    try:
        return float(get_setting(key, default))
    except (TypeError, ValueError):
        return default


def get_int(key: str, default: int = 0) -> int:
    try:
        return int(get_setting(key, default))
    except (TypeError, ValueError):
        return default


load_settings()
