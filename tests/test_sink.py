import threading

from dnsquerylog.ltsv import parse_line
from dnsquerylog.sink import CLEAR, ENTRY, QueueSink


class TestQueueSink:
    def test_push_then_drain_in_order(self):
        sink = QueueSink()
        for name in ("a", "b", "c"):
            sink.push(parse_line(f"name:{name}.example"))
        events = sink.drain()
        assert [e.kind for e in events] == [ENTRY, ENTRY, ENTRY]
        assert [e.entry.name for e in events] == ["a.example", "b.example", "c.example"]
        assert sink.drain() == []

    def test_clear_discards_pending(self):
        sink = QueueSink()
        sink.push(parse_line("name:a.example"))
        sink.clear()
        events = sink.drain()
        assert len(events) == 1
        assert events[0].kind == CLEAR

    def test_full_queue_drops_and_counts(self):
        sink = QueueSink(maxsize=2)
        for _ in range(5):
            sink.push(parse_line("name:a.example"))
        assert sink.dropped == 3
        assert len(sink.drain()) == 2

    def test_clear_fits_when_full(self):
        sink = QueueSink(maxsize=1)
        sink.push(parse_line("name:a.example"))
        sink.clear()
        assert [e.kind for e in sink.drain()] == [CLEAR]

    def test_get_timeout_returns_none(self):
        sink = QueueSink()
        assert sink.get(timeout=0.01) is None

    def test_push_from_other_thread(self):
        sink = QueueSink()

        def producer():
            for i in range(100):
                sink.push(parse_line(f"name:{i}.example"))

        worker = threading.Thread(target=producer)
        worker.start()
        worker.join()
        names = [e.entry.name for e in sink.drain()]
        assert names == [f"{i}.example" for i in range(100)]

