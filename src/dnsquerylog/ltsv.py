r"""LTSV query-log line parsing.

The proxy writes one record per line, tab separated, each field ``label:value``::

    time:1704067200\thost:127.0.0.1\tmessage:example.com\ttype:A\treturn:PASS

``parse_line`` never raises. Anything that is not a clean LTSV record of known
labels comes back as an entry with ``parse_error`` set and ``parsed`` empty.
"""

from __future__ import annotations

from dataclasses import dataclass
from types import MappingProxyType
from typing import Mapping

# Labels written by the proxy's ltsv query log, plus the short aliases
# some builds and tools use for client and query name.
KNOWN_LABELS = frozenset({
    "time",
    "host",
    "client",
    "message",
    "name",
    "type",
    "return",
    "cached",
    "duration",
    "server",
})


@dataclass(frozen=True)
class QueryLogEntry:
    raw_line: str
    parsed: Mapping[str, str] | None = None
    parse_error: bool = False

    def get(self, *labels: str) -> str | None:
        """Return the first present value among *labels*."""
        if not self.parsed:
            return None
        for label in labels:
            if label in self.parsed:
                return self.parsed[label]
        return None

    @property
    def time(self) -> str | None:
        return self.get("time")

    @property
    def client(self) -> str | None:
        return self.get("client", "host")

    @property
    def name(self) -> str | None:
        return self.get("name", "message")

    @property
    def qtype(self) -> str | None:
        return self.get("type")

    @property
    def return_code(self) -> str | None:
        return self.get("return")

    @property
    def cached(self) -> bool | None:
        value = self.get("cached")
        if value is None:
            return None
        return value not in ("", "0", "false")

    @property
    def duration(self) -> str | None:
        return self.get("duration")

    @property
    def server(self) -> str | None:
        return self.get("server")


def _error(raw_line: str) -> QueryLogEntry:
    return QueryLogEntry(raw_line=raw_line, parsed=None, parse_error=True)


def parse_line(raw: str | bytes) -> QueryLogEntry:
    """Parse one raw log line (without its newline) into a QueryLogEntry."""
    if isinstance(raw, (bytes, bytearray)):
        try:
            line = bytes(raw).decode("utf-8")
        except UnicodeDecodeError:
            return _error(bytes(raw).decode("utf-8", errors="replace"))
    elif isinstance(raw, str):
        line = raw
    else:
        return _error(repr(raw))

    line = line.rstrip("\r\n")
    if not line.strip():
        return _error(line)

    fields: dict[str, str] = {}
    for field in line.split("\t"):
        label, sep, value = field.partition(":")
        if not sep or not label:
            return _error(line)
        if label not in KNOWN_LABELS or label in fields:
            return _error(line)
        fields[label] = value

    return QueryLogEntry(raw_line=line, parsed=MappingProxyType(fields), parse_error=False)
