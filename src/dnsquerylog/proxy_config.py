"""Read/write access to the proxy's TOML configuration.

Only the ``[query_log]`` table is interpreted here; every other key of the
document is carried through a load/save cycle untouched.
"""

import logging
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import tomli_w

if sys.version_info >= (3, 11):
    import tomllib
else:
    import tomli as tomllib

logger = logging.getLogger("dnsquerylog.proxy_config")

LTSV = "ltsv"
QUERY_LOG_SECTION = "query_log"


@dataclass
class QueryLogConfig:
    file_path: str = ""
    format: str = LTSV

    @property
    def enabled(self) -> bool:
        return bool(self.file_path) and self.format == LTSV


@dataclass
class ProxyConfig:
    data: dict[str, Any] = field(default_factory=dict)

    def get_query_log(self) -> QueryLogConfig | None:
        section = self.data.get(QUERY_LOG_SECTION)
        if not isinstance(section, dict):
            return None
        return QueryLogConfig(
            file_path=str(section.get("file") or ""),
            format=str(section.get("format") or ""),
        )

    def set_query_log(self, query_log: QueryLogConfig | None) -> None:
        """Write the query log view back; an empty file path turns logging off."""
        section = dict(self.data.get(QUERY_LOG_SECTION) or {})
        if query_log is None or not query_log.file_path:
            section.pop("file", None)
            section.pop("format", None)
        else:
            section["file"] = query_log.file_path
            section["format"] = query_log.format
        if section:
            self.data[QUERY_LOG_SECTION] = section
        else:
            self.data.pop(QUERY_LOG_SECTION, None)


class ProxyConfigStore:
    """Loads and saves the whole proxy configuration file."""

    def __init__(self, path: Path | str) -> None:
        self.path = Path(path)

    def load(self) -> ProxyConfig | None:
        if not self.path.exists():
            return None
        return ProxyConfig(tomllib.loads(self.path.read_text(encoding="utf-8")))

    def save(self, config: ProxyConfig) -> None:
        """Write atomically; raises OSError on failure."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_suffix(".tmp")
        tmp_path.write_bytes(tomli_w.dumps(config.data).encode())
        tmp_path.replace(self.path)
        logger.debug("Saved proxy configuration to %s", self.path)
