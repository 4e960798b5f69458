"""Polling tail of the proxy's query log file."""

from __future__ import annotations

import logging
import os
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import BinaryIO, Callable, Iterator

from dnsquerylog.errors import FileAccessError
from dnsquerylog.ltsv import QueryLogEntry, parse_line

logger = logging.getLogger("dnsquerylog.tailer")

POLL_INTERVAL = 0.1  # seconds


@dataclass
class TailCursor:
    file_path: Path
    offset: int = 0


class FileTailer:
    """Follows one file from its current end, yielding an entry per new line.

    ``start`` can be called again after ``stop``; every call gets a fresh
    cursor at end-of-file. ``ticker`` replaces the poll wait (tests pass a
    fake one to drive ticks without real delays).
    """

    def __init__(
        self,
        poll_interval: float = POLL_INTERVAL,
        ticker: Callable[[float], object] | None = None,
        parser: Callable[[bytes], QueryLogEntry] = parse_line,
    ) -> None:
        self.poll_interval = poll_interval
        self._stop = threading.Event()
        self._ticker = ticker or self._stop.wait
        self._parser = parser
        self.cursor: TailCursor | None = None

    @property
    def stopped(self) -> bool:
        return self._stop.is_set()

    def stop(self) -> None:
        """Ask the loop to exit; observed before each poll and before each line."""
        self._stop.set()

    def start(self, path: Path | str) -> TailStream:
        """Open *path*, position a new cursor at end-of-file and return the entry stream."""
        path = Path(path)
        if not path.is_file():
            if path.exists():
                raise FileAccessError(f"Query log path is not a file: {path}")
            raise FileAccessError(f"Query log file not found: {path}")
        try:
            f = open(path, "rb")
        except OSError as e:
            raise FileAccessError(f"Cannot open query log file {path}: {e}") from e

        self._stop.clear()
        cursor = TailCursor(file_path=path, offset=os.fstat(f.fileno()).st_size)
        self.cursor = cursor
        logger.info("Tailing %s from offset %d", path, cursor.offset)
        return TailStream(f, self._follow(f, cursor))

    def _follow(self, f: BinaryIO, cursor: TailCursor) -> Iterator[QueryLogEntry]:
        with f:
            while not self._stop.is_set():
                self._ticker(self.poll_interval)
                if self._stop.is_set():
                    break

                if not cursor.file_path.exists():
                    raise FileAccessError(f"Query log file disappeared: {cursor.file_path}")

                size = os.fstat(f.fileno()).st_size
                if size == cursor.offset:
                    continue
                if size < cursor.offset:
                    logger.info(
                        "Query log truncated (offset %d > size %d), restarting from 0",
                        cursor.offset, size,
                    )
                    cursor.offset = 0
                    if size == 0:
                        continue

                f.seek(cursor.offset)
                data = f.read(size - cursor.offset)
                end = data.rfind(b"\n")
                if end < 0:
                    # Only a partial line so far
                    continue

                for line in data[: end + 1].split(b"\n")[:-1]:
                    if self._stop.is_set():
                        break
                    cursor.offset += len(line) + 1
                    yield self._parser(line.rstrip(b"\r"))

        logger.info("Stopped tailing %s", cursor.file_path)


class TailStream:
    """Iterator over tailed entries that owns the open file handle.

    ``close`` releases the handle even if iteration never started.
    """

    def __init__(self, handle: BinaryIO, entries: Iterator[QueryLogEntry]) -> None:
        self._handle = handle
        self._entries = entries

    @property
    def closed(self) -> bool:
        return self._handle.closed

    def __iter__(self) -> TailStream:
        return self

    def __next__(self) -> QueryLogEntry:
        return next(self._entries)

    def close(self) -> None:
        self._entries.close()
        self._handle.close()
