import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import tomli_w

if sys.version_info >= (3, 11):
    import tomllib
else:
    import tomli as tomllib

CONFIG_DIR = Path.home() / ".config" / "dnsquerylog"
SETTINGS_FILE = CONFIG_DIR / "settings.toml"
LOG_FILE = CONFIG_DIR / "dnsquerylog.log"
PROXY_DIR = CONFIG_DIR / "dnscrypt-proxy"

DEFAULT_LOG_FILE_NAME = "query.log"
DEFAULT_PROXY_CONFIG = PROXY_DIR / "dnscrypt-proxy.toml"


@dataclass
class Settings:
    # Query log target; empty means the default next to the proxy config
    query_log_file: str = ""

    # Managed proxy
    proxy_config_file: str = str(DEFAULT_PROXY_CONFIG)
    proxy_binary: str = "dnscrypt-proxy"
    service_name: str = "dnscrypt-proxy"

    # Fixed waits after lifecycle calls, in seconds
    install_timeout: float = 4.0
    start_timeout: float = 2.5
    restart_timeout: float = 5.0

    # Tail
    poll_interval: float = 0.1
    sink_max_entries: int = 10_000


def default_query_log_file(settings: Settings) -> str:
    return str(Path(settings.proxy_config_file).parent / DEFAULT_LOG_FILE_NAME)


def ensure_dirs() -> None:
    """Create the settings directory."""
    CONFIG_DIR.mkdir(parents=True, exist_ok=True)


def _settings_to_dict(settings: Settings) -> dict[str, Any]:
    return {
        "query_log": {
            "file": settings.query_log_file,
        },
        "proxy": {
            "config_file": settings.proxy_config_file,
            "binary": settings.proxy_binary,
            "service_name": settings.service_name,
        },
        "timeouts": {
            "install": settings.install_timeout,
            "start": settings.start_timeout,
            "restart": settings.restart_timeout,
        },
        "tail": {
            "poll_interval": settings.poll_interval,
            "max_entries": settings.sink_max_entries,
        },
    }


def _dict_to_settings(data: dict[str, Any]) -> Settings:
    settings = Settings()
    if "query_log" in data:
        settings.query_log_file = data["query_log"].get("file", settings.query_log_file)
    if "proxy" in data:
        p = data["proxy"]
        settings.proxy_config_file = p.get("config_file", settings.proxy_config_file)
        settings.proxy_binary = p.get("binary", settings.proxy_binary)
        settings.service_name = p.get("service_name", settings.service_name)
    if "timeouts" in data:
        t = data["timeouts"]
        settings.install_timeout = t.get("install", settings.install_timeout)
        settings.start_timeout = t.get("start", settings.start_timeout)
        settings.restart_timeout = t.get("restart", settings.restart_timeout)
    if "tail" in data:
        tl = data["tail"]
        settings.poll_interval = tl.get("poll_interval", settings.poll_interval)
        settings.sink_max_entries = tl.get("max_entries", settings.sink_max_entries)
    return settings


def load_settings() -> Settings:
    """Load settings from disk, persisting the default log path on first use."""
    ensure_dirs()
    if SETTINGS_FILE.exists():
        settings = _dict_to_settings(tomllib.loads(SETTINGS_FILE.read_text()))
        if settings.query_log_file:
            return settings
    else:
        settings = Settings()
    settings.query_log_file = default_query_log_file(settings)
    save_settings(settings)
    return settings


def save_settings(settings: Settings) -> None:
    """Save settings to disk."""
    ensure_dirs()
    SETTINGS_FILE.write_bytes(tomli_w.dumps(_settings_to_dict(settings)).encode())
