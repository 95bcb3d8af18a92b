import socket
import threading
import time

import pytest

from idtp_ingest.pipeline import IngestionPipeline
from idtp_ingest.simulator import ImuSimulator
from idtp_ingest.transport import Ingester, UdpSource

from conftest import make_datagram


class ListSource:
    """Hands out queued datagrams, then idles like a timed-out socket."""

    def __init__(self, datagrams=()):
        self._items = list(datagrams)
        self._lock = threading.Lock()
        self.closed = False

    def recv(self):
        with self._lock:
            if self._items:
                return self._items.pop(0)
        time.sleep(0.01)
        return None

    def close(self):
        self.closed = True


def wait_for(predicate, timeout=5.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return False


def test_ingester_processes_in_order(ctx):
    pipeline = IngestionPipeline(ctx)
    seen = []
    pipeline.add_consumer(lambda s: seen.append(s.sequence))
    source = ListSource(make_datagram(ctx, i, 1000 + 5000 * i) for i in range(1, 21))

    ingester = Ingester(source, pipeline)
    ingester.start()
    try:
        assert wait_for(lambda: len(seen) == 20)
    finally:
        ingester.stop()

    assert seen == list(range(1, 21))
    assert ingester.received == 20
    assert ingester.dropped == 0
    assert not ingester.is_running()


def test_bad_datagram_does_not_stop_worker(ctx):
    pipeline = IngestionPipeline(ctx)
    source = ListSource([b"garbage", make_datagram(ctx, 1, 1000)])
    ingester = Ingester(source, pipeline)
    ingester.start()
    try:
        assert wait_for(lambda: pipeline.telemetry.snapshot()["accepted"] == 1)
    finally:
        ingester.stop()
    assert pipeline.telemetry.snapshot()["rejected"] == 1


def test_drop_oldest_when_full(ctx):
    ingester = Ingester(ListSource(), IngestionPipeline(ctx), queue_size=2, drop_policy="oldest")
    assert ingester.offer(b"a", 1.0)
    assert ingester.offer(b"b", 2.0)
    assert ingester.offer(b"c", 3.0)
    assert ingester.dropped == 1
    assert [ingester._queue.get_nowait()[0] for _ in range(2)] == [b"b", b"c"]


def test_drop_newest_when_full(ctx):
    ingester = Ingester(ListSource(), IngestionPipeline(ctx), queue_size=2, drop_policy="newest")
    ingester.offer(b"a", 1.0)
    ingester.offer(b"b", 2.0)
    assert not ingester.offer(b"c", 3.0)
    assert ingester.dropped == 1
    assert [ingester._queue.get_nowait()[0] for _ in range(2)] == [b"a", b"b"]


def test_invalid_drop_policy(ctx):
    with pytest.raises(ValueError):
        Ingester(ListSource(), IngestionPipeline(ctx), drop_policy="random")


@pytest.mark.parametrize("drain", [True, False])
def test_stop_drains_or_discards(ctx, drain):
    pipeline = IngestionPipeline(ctx)
    ingester = Ingester(ListSource(), pipeline, queue_size=16)
    for i in range(1, 6):
        ingester.offer(make_datagram(ctx, i, 5000 * i))

    # Hold the worker so the queue is still full at shutdown.
    gate = threading.Event()
    pipeline.add_consumer(lambda s: gate.wait(5.0))
    ingester.start()
    assert wait_for(lambda: ingester.pending() == 4)
    gate.set()
    ingester.stop(drain=drain)

    accepted = pipeline.telemetry.snapshot()["accepted"]
    if drain:
        assert accepted == 5
        assert ingester.discarded == 0
    else:
        assert accepted + ingester.discarded == 5
    assert ingester.pending() == 0


def test_udp_end_to_end(ctx):
    source = UdpSource("127.0.0.1", 0, recv_timeout=0.05)
    pipeline = IngestionPipeline(ctx)
    ingester = Ingester(source, pipeline)
    ingester.start()
    try:
        host, port = source.address
        sim = ImuSimulator(ctx, device_id=3)
        assert sim.send_udp(host, port, count=25, realtime=False) == 25
        assert wait_for(lambda: pipeline.telemetry.snapshot()["accepted"] == 25)
    finally:
        ingester.stop()
        source.close()
    assert pipeline.guard_for(3).state.last_accepted_sequence == 24


def test_udp_source_times_out():
    source = UdpSource("127.0.0.1", 0, recv_timeout=0.01)
    try:
        assert source.recv() is None
    finally:
        source.close()


def test_udp_source_bind_conflict():
    taken = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    taken.bind(("127.0.0.1", 0))
    try:
        with pytest.raises(OSError):
            UdpSource("127.0.0.1", taken.getsockname()[1])
    finally:
        taken.close()


def test_stop_timeout_keeps_single_worker(ctx):
    pipeline = IngestionPipeline(ctx)
    gate = threading.Event()
    pipeline.add_consumer(lambda s: gate.wait(5.0))
    ingester = Ingester(ListSource([make_datagram(ctx, 1, 1000)]), pipeline)
    ingester.start()
    assert wait_for(lambda: pipeline.telemetry.snapshot()["total"] == 1)

    worker = ingester._worker
    ingester.stop(timeout=0.1)
    assert ingester.is_running()

    ingester.start()
    assert ingester._worker is worker

    gate.set()
    ingester.stop()
    assert not ingester.is_running()
    assert not worker.is_alive()
