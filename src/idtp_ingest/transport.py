"""
UDP receive path.

Architecture:
- One receive thread pulls whole datagrams from the source
- A bounded queue decouples receiving from processing
- One worker thread drives the pipeline, preserving arrival order

The receive thread never blocks on processing. When the queue is full a
datagram is dropped according to the drop policy; stale telemetry is worse
than a gap.
"""
from __future__ import annotations

import logging
import queue
import socket
import threading
import time
from typing import Optional, Protocol

from idtp_core.protocol import DEFAULT_QUEUE_SIZE, MAX_DATAGRAM_SIZE
from .config import DROP_POLICIES, NetConfig
from .pipeline import IngestionPipeline

logger = logging.getLogger(__name__)


class DatagramSource(Protocol):
    def recv(self) -> Optional[bytes]: ...

    def close(self) -> None: ...


class UdpSource:
    """Bound UDP socket. ``recv`` returns None when the timeout expires."""

    def __init__(
        self,
        host: str,
        port: int,
        recv_timeout: float = 0.2,
        max_datagram: int = MAX_DATAGRAM_SIZE,
    ) -> None:
        self.max_datagram = max_datagram
        self._socket = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        try:
            self._socket.settimeout(recv_timeout)
            self._socket.bind((host, port))
        except OSError:
            self._socket.close()
            raise

    @classmethod
    def from_config(cls, cfg: NetConfig) -> UdpSource:
        return cls(cfg.host, cfg.port, cfg.recv_timeout)

    @property
    def address(self) -> tuple[str, int]:
        return self._socket.getsockname()

    def recv(self) -> Optional[bytes]:
        try:
            data, _addr = self._socket.recvfrom(self.max_datagram)
        except socket.timeout:
            return None
        return data

    def close(self) -> None:
        self._socket.close()


class Ingester:
    """Receive thread + bounded queue + single processing worker."""

    def __init__(
        self,
        source: DatagramSource,
        pipeline: IngestionPipeline,
        queue_size: int = DEFAULT_QUEUE_SIZE,
        drop_policy: str = "oldest",
    ) -> None:
        if drop_policy not in DROP_POLICIES:
            raise ValueError(f"drop_policy must be one of {DROP_POLICIES}")
        self.source = source
        self.pipeline = pipeline
        self.drop_policy = drop_policy
        self._queue: queue.Queue = queue.Queue(maxsize=queue_size)

        self._stop_receive = threading.Event()
        self._stop_work = threading.Event()
        self._drain = False
        self._receiver: Optional[threading.Thread] = None
        self._worker: Optional[threading.Thread] = None
        self._running = False

        # Statistics
        self.received = 0
        self.dropped = 0
        self.discarded = 0
        self.errors = 0

    def start(self) -> None:
        if self._running:
            logger.warning("Ingester already running")
            return

        self._stop_receive.clear()
        self._stop_work.clear()
        self._drain = False
        self._running = True

        self._worker = threading.Thread(target=self._work_loop, name="IdtpWorker", daemon=True)
        self._receiver = threading.Thread(target=self._receive_loop, name="IdtpReceiver", daemon=True)
        self._worker.start()
        self._receiver.start()
        logger.info("Ingester started (queue=%d, drop=%s)", self._queue.maxsize, self.drop_policy)

    def stop(self, drain: bool = False, timeout: float = 5.0) -> None:
        """Stop receiving, then process (drain) or discard pending datagrams."""
        if not self._running:
            return

        self._stop_receive.set()
        if self._receiver is not None and self._receiver.is_alive():
            self._receiver.join(timeout=timeout)

        self._drain = drain
        self._stop_work.set()
        if self._worker is not None and self._worker.is_alive():
            self._worker.join(timeout=timeout)

        alive = [t.name for t in (self._receiver, self._worker) if t is not None and t.is_alive()]
        if alive:
            # Stay "running" so start() cannot add a second worker.
            logger.error("Ingester threads still alive after %.1fs: %s", timeout, ", ".join(alive))
            return

        self._running = False
        logger.info(
            "Ingester stopped (received=%d, dropped=%d, discarded=%d, errors=%d)",
            self.received,
            self.dropped,
            self.discarded,
            self.errors,
        )

    def is_running(self) -> bool:
        return self._running

    def pending(self) -> int:
        return self._queue.qsize()

    def offer(self, datagram: bytes, received_at: float | None = None) -> bool:
        """Queue a datagram without blocking. Returns False if it was dropped."""
        item = (datagram, time.time() if received_at is None else received_at)
        self.received += 1
        try:
            self._queue.put_nowait(item)
            return True
        except queue.Full:
            pass

        self.dropped += 1
        if self.drop_policy == "newest":
            return False

        try:
            self._queue.get_nowait()
        except queue.Empty:
            pass
        try:
            self._queue.put_nowait(item)
        except queue.Full:
            return False
        return True

    def _receive_loop(self) -> None:
        logger.debug("Receive loop started")
        while not self._stop_receive.is_set():
            try:
                data = self.source.recv()
            except OSError as e:
                if self._stop_receive.is_set():
                    break
                logger.error("Receive failed: %s", e)
                self.errors += 1
                self._stop_receive.wait(0.1)
                continue
            if data is not None:
                self.offer(data)
        logger.debug("Receive loop exiting")

    def _work_loop(self) -> None:
        while not self._stop_work.is_set():
            try:
                datagram, received_at = self._queue.get(timeout=0.1)
            except queue.Empty:
                continue
            self._process(datagram, received_at)

        # The receive loop has exited; nothing new can arrive.
        while True:
            try:
                datagram, received_at = self._queue.get_nowait()
            except queue.Empty:
                break
            if self._drain:
                self._process(datagram, received_at)
            else:
                self.discarded += 1

    def _process(self, datagram: bytes, received_at: float) -> None:
        try:
            self.pipeline.process(datagram, received_at)
        except Exception:
            logger.exception("Unexpected error processing datagram")
            self.errors += 1
