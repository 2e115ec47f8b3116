"""Configuration loading from environment variables and marginalia.toml."""

from __future__ import annotations

import os
import sys
from dataclasses import dataclass, field

if sys.version_info >= (3, 11):
    import tomllib
else:
    import tomli as tomllib
from pathlib import Path

_DEFAULT_DATA_DIR = Path.home() / ".marginalia"
_CONFIG_FILENAME = "marginalia.toml"


@dataclass
class RemoteConfig:
    """Remote document store endpoint. Empty url means cache-only."""

    url: str = ""
    api_key: str = ""
    timeout: float = 30.0
    retry_delay: float = 5.0


@dataclass
class SyncConfig:
    """Write limits and timing."""

    max_notes: int = 100
    max_note_length: int = 50_000
    throttle_ms: int = 1000
    debounce_ms: int = 100
    retry_interval: float = 30.0  # seconds between pushes of pending collections


@dataclass
class BridgeConfig:
    """Local HTTP bridge the browser extension talks to."""

    host: str = "127.0.0.1"
    port: int = 8765


@dataclass
class MarginaliaConfig:
    """Top-level configuration."""

    remote: RemoteConfig = field(default_factory=RemoteConfig)
    sync: SyncConfig = field(default_factory=SyncConfig)
    bridge: BridgeConfig = field(default_factory=BridgeConfig)
    user_id: str | None = None
    data_dir: Path = _DEFAULT_DATA_DIR
    pid_file: Path = _DEFAULT_DATA_DIR / "marginalia.pid"
    log_level: str = "INFO"


def load_config(config_path: Path | None = None) -> MarginaliaConfig:
    """Load configuration from environment variables and optional marginalia.toml.

    Priority: environment variables > marginalia.toml > defaults.
    """
    file_data: dict = {}
    if config_path and config_path.exists():
        file_data = tomllib.loads(config_path.read_text())
    else:
        # Search current dir and ~/.marginalia/
        for candidate in [Path.cwd() / _CONFIG_FILENAME, _DEFAULT_DATA_DIR / _CONFIG_FILENAME]:
            if candidate.exists():
                file_data = tomllib.loads(candidate.read_text())
                break

    remote_data = file_data.get("remote", {})
    sync_data = file_data.get("sync", {})
    bridge_data = file_data.get("bridge", {})

    data_dir = Path(os.getenv("MARGINALIA_DATA_DIR", file_data.get("data_dir", str(_DEFAULT_DATA_DIR))))

    config = MarginaliaConfig(
        remote=RemoteConfig(
            url=os.getenv("MARGINALIA_REMOTE_URL", remote_data.get("url", "")),
            api_key=os.getenv("MARGINALIA_API_KEY", remote_data.get("api_key", "")),
            timeout=float(remote_data.get("timeout", 30.0)),
            retry_delay=float(remote_data.get("retry_delay", 5.0)),
        ),
        sync=SyncConfig(
            max_notes=int(sync_data.get("max_notes", 100)),
            max_note_length=int(sync_data.get("max_note_length", 50_000)),
            throttle_ms=int(os.getenv("MARGINALIA_THROTTLE_MS", sync_data.get("throttle_ms", 1000))),
            debounce_ms=int(sync_data.get("debounce_ms", 100)),
            retry_interval=float(sync_data.get("retry_interval", 30.0)),
        ),
        bridge=BridgeConfig(
            host=bridge_data.get("host", "127.0.0.1"),
            port=int(os.getenv("MARGINALIA_BRIDGE_PORT", bridge_data.get("port", 8765))),
        ),
        user_id=os.getenv("MARGINALIA_USER_ID", file_data.get("user_id")) or None,
        data_dir=data_dir,
        pid_file=data_dir / "marginalia.pid",
        log_level=os.getenv("MARGINALIA_LOG_LEVEL", file_data.get("log_level", "INFO")),
    )
    return config
