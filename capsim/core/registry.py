import itertools
import logging
import threading
import time
from typing import Callable, List, Optional, Tuple, Union

from capsim.core.codec import MessagePattern, split_line
from capsim.core.errors import MalformedMessage
from capsim.core.packet import InboundMessage

Handler = Callable[[InboundMessage], None]


class SubscriptionRegistry:
    """Pattern -> handler bindings, dispatched in registration order.

    Handlers run synchronously on the thread that calls dispatch() (the
    receive loop), so they must not block.
    """

    def __init__(self, name: str = "registry"):
        self.name = name
        self._bindings: List[Tuple[int, MessagePattern, Handler]] = []
        self._ids = itertools.count(1)
        self._lock = threading.Lock()

    def bind(self, pattern: Union[MessagePattern, str], handler: Handler) -> int:
        if isinstance(pattern, str):
            pattern = MessagePattern.parse(pattern)
        with self._lock:
            binding_id = next(self._ids)
            self._bindings.append((binding_id, pattern, handler))
        logging.debug(f"[registry:{self.name}] bound {pattern.name}/{pattern.arity} id={binding_id}")
        return binding_id

    def unbind(self, binding_id: int) -> bool:
        with self._lock:
            before = len(self._bindings)
            self._bindings = [b for b in self._bindings if b[0] != binding_id]
            return len(self._bindings) != before

    def patterns(self) -> List[str]:
        with self._lock:
            return [p.text for _, p, _ in self._bindings]

    def __len__(self):
        with self._lock:
            return len(self._bindings)

    def dispatch(self, text: str, host: Optional[str] = None) -> int:
        """Invoke every handler whose pattern matches text. Returns the call count."""
        with self._lock:
            bindings = list(self._bindings)
        sender, _, _ = split_line(text)
        now = time.time()
        called = 0
        for binding_id, pattern, handler in bindings:
            try:
                fields = pattern.match(text)
            except MalformedMessage as e:
                # not actionable; other patterns are still tried
                logging.debug(f"[registry:{self.name}] drop malformed line ({e}): {text!r}")
                continue
            if fields is None:
                continue
            msg = InboundMessage(
                sender=sender, name=pattern.name, fields=fields, pattern=pattern,
                timestamp=now, host=host, raw=text,
            )
            try:
                handler(msg)
            except Exception:
                logging.exception(f"[registry:{self.name}] handler error for {pattern.name} (binding {binding_id})")
            called += 1
        return called
