import threading
from unittest.mock import patch

import pytest

from dnsquerylog.errors import FileAccessError
from dnsquerylog.tailer import FileTailer


class ScriptedTicker:
    """Runs one scripted step per poll tick, then stops the tailer."""

    def __init__(self, *steps):
        self.steps = list(steps)
        self.tailer = None
        self.ticks = 0

    def __call__(self, interval):
        self.ticks += 1
        if self.steps:
            self.steps.pop(0)()
        else:
            self.tailer.stop()


def _tailer(*steps):
    ticker = ScriptedTicker(*steps)
    tailer = FileTailer(poll_interval=0.1, ticker=ticker)
    ticker.tailer = tailer
    return tailer, ticker


def _append(path, data):
    def step():
        with open(path, "ab") as f:
            f.write(data)
    return step


def _noop():
    pass


class TestStart:
    def test_missing_file_raises(self, tmp_path):
        tailer = FileTailer()
        with pytest.raises(FileAccessError):
            tailer.start(tmp_path / "missing.log")

    def test_directory_raises(self, tmp_path):
        tailer = FileTailer()
        with pytest.raises(FileAccessError):
            tailer.start(tmp_path)

    def test_open_failure_raises_from_start(self, tmp_path):
        log = tmp_path / "query.log"
        log.touch()
        tailer = FileTailer()
        with patch("dnsquerylog.tailer.open", side_effect=PermissionError("denied"), create=True):
            with pytest.raises(FileAccessError, match="denied"):
                tailer.start(log)
        assert tailer.cursor is None

    def test_cursor_starts_at_end_of_file(self, tmp_path):
        log = tmp_path / "query.log"
        log.write_bytes(b"name:old.example\n" * 3)
        tailer = FileTailer()
        tailer.start(log).close()
        assert tailer.cursor.offset == log.stat().st_size
        assert tailer.cursor.file_path == log


class TestFollow:
    def test_existing_content_is_skipped(self, tmp_path):
        log = tmp_path / "query.log"
        log.write_bytes(b"name:old.example\nname:older.example\n")
        tailer, ticker = _tailer(_noop, _noop)
        assert list(tailer.start(log)) == []
        assert ticker.ticks == 3

    def test_appended_line_emitted_once(self, tmp_path):
        log = tmp_path / "query.log"
        log.write_bytes(b"name:old.example\n")
        line = "time:2024-01-01\tclient:1.2.3.4\tname:example.com"
        tailer, _ = _tailer(_append(log, line.encode() + b"\n"), _noop)
        entries = list(tailer.start(log))
        assert len(entries) == 1
        assert entries[0].raw_line == line
        assert entries[0].parse_error is False

    def test_entries_in_file_order(self, tmp_path):
        log = tmp_path / "query.log"
        log.touch()
        tailer, _ = _tailer(
            _append(log, b"name:a.example\nname:b.example\n"),
            _append(log, b"name:c.example\n"),
        )
        names = [e.name for e in tailer.start(log)]
        assert names == ["a.example", "b.example", "c.example"]

    def test_partial_line_held_back(self, tmp_path):
        log = tmp_path / "query.log"
        log.touch()
        seen = []
        tailer, _ = _tailer(
            _append(log, b"name:first.example\nname:sec"),
            lambda: seen.append(tailer.cursor.offset),
            _append(log, b"ond.example\n"),
        )
        names = [e.name for e in tailer.start(log)]
        assert names == ["first.example", "second.example"]
        assert seen == [len(b"name:first.example\n")]
        assert tailer.cursor.offset == log.stat().st_size

    def test_crlf_line_endings(self, tmp_path):
        log = tmp_path / "query.log"
        log.touch()
        tailer, _ = _tailer(_append(log, b"name:example.com\r\n"))
        entries = list(tailer.start(log))
        assert entries[0].raw_line == "name:example.com"
        assert entries[0].parse_error is False

    def test_unparseable_line_still_delivered(self, tmp_path):
        log = tmp_path / "query.log"
        log.touch()
        tailer, _ = _tailer(_append(log, b"garbage\n\xff\xfe\nname:ok.example\n"))
        entries = list(tailer.start(log))
        assert [e.parse_error for e in entries] == [True, True, False]

    def test_truncation_resets_cursor(self, tmp_path):
        log = tmp_path / "query.log"
        log.write_bytes(b"name:a.example\nname:b.example\n")

        def truncate():
            log.write_bytes(b"name:new.example\n")

        tailer, _ = _tailer(truncate)
        entries = list(tailer.start(log))
        assert [e.name for e in entries] == ["new.example"]
        assert tailer.cursor.offset == len(b"name:new.example\n")

    def test_truncation_to_empty_then_growth(self, tmp_path):
        log = tmp_path / "query.log"
        log.write_bytes(b"name:a.example\n")
        tailer, _ = _tailer(
            lambda: log.write_bytes(b""),
            _append(log, b"name:b.example\n"),
        )
        assert [e.name for e in tailer.start(log)] == ["b.example"]

    def test_file_removed_mid_tail(self, tmp_path):
        log = tmp_path / "query.log"
        log.touch()
        tailer, _ = _tailer(log.unlink)
        with pytest.raises(FileAccessError):
            list(tailer.start(log))


class TestStop:
    def test_stop_observed_before_next_read(self, tmp_path):
        log = tmp_path / "query.log"
        log.touch()

        def append_and_stop():
            _append(log, b"name:late.example\n")()
            tailer.stop()

        tailer, _ = _tailer(append_and_stop)
        assert list(tailer.start(log)) == []

    def test_restart_gets_fresh_cursor(self, tmp_path):
        log = tmp_path / "query.log"
        log.touch()
        tailer, ticker = _tailer(_append(log, b"name:a.example\n"))
        assert len(list(tailer.start(log))) == 1

        log.write_bytes(log.read_bytes() + b"name:b.example\n")
        ticker.steps = [_append(log, b"name:c.example\n")]
        assert [e.name for e in tailer.start(log)] == ["c.example"]

    def test_handle_released_when_consumer_closes(self, tmp_path):
        log = tmp_path / "query.log"
        log.touch()
        tailer, _ = _tailer(_append(log, b"name:a.example\nname:b.example\n"))
        entries = tailer.start(log)
        next(entries)
        entries.close()
        assert entries.closed
        assert list(entries) == []

    def test_handle_released_without_iterating(self, tmp_path):
        log = tmp_path / "query.log"
        log.touch()
        entries = FileTailer().start(log)
        assert not entries.closed
        entries.close()
        assert entries.closed

    def test_stop_mid_batch(self, tmp_path):
        log = tmp_path / "query.log"
        log.touch()
        batch = b"".join(b"name:%d.example\n" % i for i in range(1000))
        tailer, _ = _tailer(_append(log, batch))
        seen = []
        for entry in tailer.start(log):
            seen.append(entry)
            tailer.stop()
        assert [e.name for e in seen] == ["0.example"]
        assert tailer.cursor.offset == len(b"name:0.example\n")

    def test_stop_wakes_default_wait(self, tmp_path):
        log = tmp_path / "query.log"
        log.touch()
        tailer = FileTailer(poll_interval=30)
        entries = tailer.start(log)
        result = []
        worker = threading.Thread(target=lambda: result.extend(entries))
        worker.start()
        tailer.stop()
        worker.join(timeout=5)
        assert not worker.is_alive()
        assert result == []
