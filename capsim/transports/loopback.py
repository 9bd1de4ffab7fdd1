"""In-process bus: every node attached to a hub receives the lines of the others."""

import queue
import threading
from typing import Dict, Optional, Tuple

from capsim.transports.bus import BusConnection


class LoopbackHub:
    _hubs: Dict[str, "LoopbackHub"] = {}
    _hubs_lock = threading.Lock()

    def __init__(self, name: str = "default"):
        self.name = name
        self._nodes = []
        self._lock = threading.Lock()

    @classmethod
    def named(cls, name: str = "default") -> "LoopbackHub":
        with cls._hubs_lock:
            hub = cls._hubs.get(name)
            if hub is None:
                hub = cls._hubs[name] = cls(name)
            return hub

    def attach(self, node: "LoopbackBus"):
        with self._lock:
            if node not in self._nodes:
                self._nodes.append(node)

    def detach(self, node: "LoopbackBus"):
        with self._lock:
            if node in self._nodes:
                self._nodes.remove(node)

    def nodes(self):
        with self._lock:
            return list(self._nodes)

    def deliver(self, origin: Optional["LoopbackBus"], text: str):
        for node in self.nodes():
            if node is not origin:
                node._inbox.put((text, "localhost"))


class LoopbackBus(BusConnection):

    def __init__(self, name: str, hub: Optional[LoopbackHub] = None, **kwargs):
        super().__init__(name, **kwargs)
        self.hub = hub or LoopbackHub.named()
        self._inbox: "queue.Queue[Tuple[str, str]]" = queue.Queue()

    def _open(self):
        self.hub.attach(self)

    def _close(self):
        self.hub.detach(self)

    def _send_line(self, text: str):
        self.hub.deliver(self, text)

    def _recv_line(self, timeout: float):
        try:
            return self._inbox.get(timeout=timeout)
        except queue.Empty:
            return None
