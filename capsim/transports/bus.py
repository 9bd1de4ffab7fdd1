import logging
import queue
import threading
import time
from typing import Dict, Optional, Tuple

from capsim.core.codec import split_line
from capsim.core.constants import DEFAULT_PEER_TIMEOUT, DEFAULT_QUEUE_SIZE
from capsim.core.registry import Handler, SubscriptionRegistry


class BufferFull(Exception):
    """Raised by a transport when it dropped an outbound line."""


class BusListener:
    """Informational bus callbacks. The default implementation only logs."""

    def on_peer_connected(self, name: str, host: Optional[str]):
        logging.info(f"{name} connected from {host}")

    def on_peer_disconnected(self, name: str, host: Optional[str]):
        logging.info(f"{name} disconnected from {host}")

    def on_congestion(self, bus: "BusConnection"):
        logging.warning(f"[bus:{bus.name}] congestion notification")

    def on_decongestion(self, bus: "BusConnection"):
        logging.info(f"[bus:{bus.name}] decongestion notification")

    def on_fifo_full(self, bus: "BusConnection"):
        logging.warning(f"[bus:{bus.name}] FIFO full notification: MESSAGE WILL BE LOST")


class BusConnection:
    """
    The single connection of a node to the text bus.

    publish() may be called from any number of threads: it only enqueues a
    complete line on a bounded queue, and one writer thread performs every
    physical write, so lines are never interleaved. Publishing is
    fire-and-forget; a full queue drops the line and raises the fifo-full
    notification. run() is the blocking receive loop and dispatches every
    received line through the registry. Subclasses implement _open(),
    _close(), _send_line() and _recv_line() for their transport.
    """

    poll_interval = 0.2

    def __init__(self, name: str, listener: Optional[BusListener] = None,
                 ready_message: Optional[str] = None, queue_size: int = DEFAULT_QUEUE_SIZE,
                 peer_timeout: Optional[float] = DEFAULT_PEER_TIMEOUT,
                 high_water: Optional[int] = None, low_water: Optional[int] = None):
        if queue_size < 1:
            raise ValueError("queue_size must be >= 1")
        self.name = name
        self.listener = listener or BusListener()
        self.ready_message = ready_message
        self.registry = SubscriptionRegistry(name)
        self.peer_timeout = peer_timeout
        self._txq: "queue.Queue[str]" = queue.Queue(maxsize=queue_size)
        self._high = high_water if high_water is not None else max(1, (queue_size * 3) // 4)
        self._low = low_water if low_water is not None else queue_size // 4
        self._congested = False
        self._state_lock = threading.Lock()
        self._closed = threading.Event()
        self._started = threading.Event()
        self._finished = threading.Event()
        self._run_thread: Optional[threading.Thread] = None
        self._peers: Dict[Tuple[str, Optional[str]], float] = {}
        self._threads = []
        self.sent = 0
        self.received = 0
        self.dropped = 0

    # ---- to be overridden by subclasses ----
    def _open(self):
        raise NotImplementedError()

    def _close(self):
        raise NotImplementedError()

    def _send_line(self, text: str):
        """Write one line. Raise BufferFull if the transport dropped it."""
        raise NotImplementedError()

    def _recv_line(self, timeout: float) -> Optional[Tuple[str, Optional[str]]]:
        """Return (line, host) or None when nothing arrived within timeout."""
        raise NotImplementedError()

    # ---- contract ----
    def subscribe(self, pattern, handler: Handler) -> int:
        return self.registry.bind(pattern, handler)

    def publish(self, text: str) -> bool:
        if "\n" in text or "\r" in text:
            raise ValueError("bus messages are single lines")
        try:
            self._txq.put_nowait(text)
        except queue.Full:
            self._drop()
            return False
        self._check_congestion()
        return True

    def run(self):
        """Blocking receive loop; returns after close()."""
        if self._closed.is_set():
            return
        self._run_thread = threading.current_thread()
        self._open()
        self._started.set()
        try:
            t = threading.Thread(target=self._tx_loop, name=f"bus-tx-{self.name}", daemon=False)
            t.start()
            self._threads.append(t)
            logging.info(f"[bus:{self.name}] receive loop running ({len(self.registry)} bindings)")
            if self.ready_message:
                self.publish(self.ready_message)
            while not self._closed.is_set():
                try:
                    item = self._recv_line(self.poll_interval)
                except Exception as e:
                    if self._closed.is_set():
                        break
                    logging.warning(f"[bus:{self.name}] rx error: {e}")
                    time.sleep(self.poll_interval)
                    continue
                self._expire_peers()
                if item is None:
                    continue
                line, host = item
                self._on_line(line, host)
        finally:
            self._closed.set()
            for thr in self._threads:
                thr.join(timeout=2.0)
            try:
                self._close()
            except Exception as e:
                logging.warning(f"[bus:{self.name}] close error: {e}")
            self._finished.set()
            logging.info(f"[bus:{self.name}] closed sent={self.sent} received={self.received} dropped={self.dropped}")

    def close(self, timeout: float = 5.0):
        """Stop the receive and writer loops; waits for run() to release the transport."""
        with self._state_lock:
            if self._closed.is_set():
                return
            self._closed.set()
        if self._started.is_set() and threading.current_thread() is not self._run_thread:
            self._finished.wait(timeout)

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    @property
    def congested(self) -> bool:
        return self._congested

    def pending(self) -> int:
        return self._txq.qsize()

    def peers(self):
        with self._state_lock:
            return sorted(self._peers.keys(), key=lambda p: (p[0], p[1] or ""))

    # ---- notifications ----
    def notify_peer_connected(self, name: str, host: Optional[str]):
        self._notify("on_peer_connected", name, host)

    def notify_peer_disconnected(self, name: str, host: Optional[str]):
        self._notify("on_peer_disconnected", name, host)

    def notify_congestion(self):
        self._notify("on_congestion", self)

    def notify_decongestion(self):
        self._notify("on_decongestion", self)

    def notify_fifo_full(self):
        self._notify("on_fifo_full", self)

    def _notify(self, method: str, *args):
        try:
            getattr(self.listener, method)(*args)
        except Exception:
            logging.exception(f"[bus:{self.name}] listener {method} failed")

    # ---- internals ----
    def _drop(self):
        with self._state_lock:
            self.dropped += 1
        self.notify_fifo_full()

    def _check_congestion(self):
        depth = self._txq.qsize()
        event = None
        with self._state_lock:
            if not self._congested and depth >= self._high:
                self._congested = True
                event = self.notify_congestion
            elif self._congested and depth <= self._low:
                self._congested = False
                event = self.notify_decongestion
        if event:
            event()

    def _tx_loop(self):
        while not self._closed.is_set():
            try:
                text = self._txq.get(timeout=self.poll_interval)
            except queue.Empty:
                continue
            try:
                self._send_line(text)
                self.sent += 1
            except BufferFull:
                self._drop()
            except Exception as e:
                # fire-and-forget: the line is lost, not retried
                logging.warning(f"[bus:{self.name}] tx error: {e}; line lost")
                with self._state_lock:
                    self.dropped += 1
            self._check_congestion()

    def _on_line(self, line: str, host: Optional[str]):
        line = line.strip()
        sender, _, _ = split_line(line)
        if not sender or sender == self.name:
            return
        self._touch_peer(sender, host)
        self.received += 1
        self.registry.dispatch(line, host=host)

    def _touch_peer(self, sender: str, host: Optional[str]):
        key = (sender, host)
        with self._state_lock:
            new = key not in self._peers
            self._peers[key] = time.monotonic()
        if new:
            self.notify_peer_connected(sender, host)

    def _expire_peers(self):
        if not self.peer_timeout:
            return
        now = time.monotonic()
        with self._state_lock:
            gone = [k for k, seen in self._peers.items() if now - seen > self.peer_timeout]
            for k in gone:
                del self._peers[k]
        for sender, host in gone:
            self.notify_peer_disconnected(sender, host)
