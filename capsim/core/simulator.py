import logging
import threading
from collections import Counter
from typing import List, Optional

from capsim.config.loader import SimConfig
from capsim.core.constants import (
    ATTITUDE, GPS_LLA, ROTORCRAFT_FP, START_STAGGER_SECS, VECTORNAV_INFO, WP_MOVED,
)
from capsim.core.packet import InboundMessage
from capsim.core.publisher import PeriodicPublisher
from capsim.core.streams import STREAMS
from capsim.transports.bus import BusConnection, BusListener
from capsim.transports.factory import create_bus


class Simulator:
    """
    The simulated payload node: one bus connection, the inbound bindings and
    one publisher per enabled stream.

    start() binds the handlers, starts the receive loop, then the publishers
    (staggered). stop() stops every publisher, closes the bus and joins all
    threads before returning.
    """

    def __init__(self, cfg: SimConfig, bus: Optional[BusConnection] = None,
                 listener: Optional[BusListener] = None, stagger: float = START_STAGGER_SECS):
        self.cfg = cfg
        self.identity = cfg.identity()
        self.bus = bus or create_bus(
            cfg.bus, cfg.name,
            listener=listener,
            ready_message=cfg.effective_ready_message(),
            queue_size=cfg.queue_size,
            peer_timeout=cfg.peer_timeout,
        )
        self.stagger = stagger
        self.received = Counter()
        self.error: Optional[BaseException] = None
        self.publishers: List[PeriodicPublisher] = []
        for stream, cls in STREAMS.items():
            scfg = cfg.stream(stream)
            if not scfg.enabled:
                logging.info(f"[sim:{cfg.name}] stream {stream} disabled")
                continue
            self.publishers.append(cls(self.bus, self.identity, period=scfg.period))
        self._stop = threading.Event()
        self._started = False
        self._rx_thread: Optional[threading.Thread] = None

    # --- inbound handlers (observers only: they must not block the receive loop) ---
    def on_wp_moved(self, msg: InboundMessage):
        self._got(msg)

    def on_vectornav_info(self, msg: InboundMessage):
        self._got(msg)

    def on_attitude(self, msg: InboundMessage):
        self._got(msg)

    def on_gps_lla(self, msg: InboundMessage):
        self._got(msg)

    def on_rotorcraft_fp(self, msg: InboundMessage):
        self._got(msg)

    def _got(self, msg: InboundMessage):
        self.received[msg.name] += 1
        logging.info(f"Got {msg.name} message.")
        logging.debug(f"[sim:{self.identity.name}] {msg.name} from {msg.sender}: {' '.join(msg.fields)}")

    def bind_handlers(self):
        for pattern, handler in (
            (WP_MOVED, self.on_wp_moved),
            (VECTORNAV_INFO, self.on_vectornav_info),
            (ATTITUDE, self.on_attitude),
            (GPS_LLA, self.on_gps_lla),
            (ROTORCRAFT_FP, self.on_rotorcraft_fp),
        ):
            self.bus.subscribe(pattern, handler)

    # --- lifecycle ---
    def start(self):
        if self._started:
            raise RuntimeError("simulator already started")
        self._started = True
        self.bind_handlers()
        self._rx_thread = threading.Thread(target=self._rx_loop, name=f"bus-rx-{self.identity.name}", daemon=False)
        self._rx_thread.start()
        for pub in self.publishers:
            # receive loop first, then publishers one after the other
            if self._stop.wait(self.stagger):
                break
            pub.start()
        logging.info(f"[sim:{self.identity.name}] running on {self.identity.bus} "
                     f"({len(self.publishers)} streams, debug={self.identity.debug})")

    def stop(self, timeout: float = 5.0):
        self._stop.set()
        for pub in self.publishers:
            pub.stop()
        for pub in self.publishers:
            if not pub.join(timeout):
                logging.warning(f"[sim:{self.identity.name}] publisher {pub.stream} did not exit within {timeout}s")
        self.bus.close(timeout)
        if self._rx_thread is not None:
            self._rx_thread.join(timeout)
        logging.info(f"[sim:{self.identity.name}] stopped")

    def run(self, duration: Optional[float] = None):
        """Start, block until duration elapses, stop() or Ctrl-C, then shut down."""
        self.start()
        try:
            if duration is not None:
                self._stop.wait(duration)
            else:
                while not self._stop.wait(1.0):
                    pass
        except KeyboardInterrupt:
            logging.info(f"[sim:{self.identity.name}] interrupted")
        finally:
            self.stop()

    def request_stop(self):
        self._stop.set()

    def failed_publishers(self) -> List[PeriodicPublisher]:
        return [p for p in self.publishers if p.error is not None]

    def _rx_loop(self):
        try:
            self.bus.run()
        except Exception as e:
            self.error = e
            logging.exception(f"[sim:{self.identity.name}] bus receive loop failed")
            self._stop.set()

    def __enter__(self):
        self.start()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.stop()
