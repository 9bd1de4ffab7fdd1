"""Periodic publishers.

One publisher owns one synthetic telemetry stream: a private state record, a
fixed period and a message template. Its loop runs on its own thread:

    emit (snapshot state, format, publish) -> wait for next deadline -> update state

so every message carries the pre-update values of its tick. Pacing is fixed
rate on a monotonic clock (deadline += period), not sleep-after-work.
Cancellation is cooperative: stop() sets an event that the loop checks before
each publish and that also wakes the wait.
"""

import copy
import logging
import threading
import time
from enum import Enum
from typing import Any, Callable, Optional, Sequence

from capsim.core.codec import MessageTemplate, format_message
from capsim.core.errors import PublisherLoopFailure
from capsim.core.packet import NodeIdentity


class PublisherStatus(Enum):
    IDLE = "idle"
    RUNNING = "running"
    STOPPED = "stopped"


class PeriodicPublisher:
    """Base class; subclasses set TEMPLATE/STATE and implement values()/update()."""

    stream = "periodic"
    period = 1.0
    TEMPLATE: MessageTemplate = None
    STATE: Callable[[], Any] = None
    # messages without a downlink variant are sent in one form only
    HAS_FORWARDED = True

    def __init__(self, bus, identity: NodeIdentity, state=None, period: Optional[float] = None,
                 clock: Callable[[], float] = time.monotonic):
        self.bus = bus
        self.identity = identity
        self.period = float(period if period is not None else type(self).period)
        if self.period <= 0:
            raise ValueError(f"period must be positive, got {self.period}")
        self.state = state if state is not None else self.STATE()
        # variant is fixed once here, never per message
        self.forwarded = self.HAS_FORWARDED and not identity.debug
        self.template = self.TEMPLATE.forwarded() if self.forwarded else self.TEMPLATE
        self.status = PublisherStatus.IDLE
        self.error: Optional[PublisherLoopFailure] = None
        self.ticks = 0
        self.published = 0
        self._clock = clock
        self._stop = threading.Event()
        self._lock = threading.Lock()
        self._thread: Optional[threading.Thread] = None

    # ---- stream hooks ----
    def values(self, state) -> Sequence[Any]:
        raise NotImplementedError()

    def update(self, state) -> None:
        """Advance state by one tick. Default: no evolving state."""

    # ---- one tick ----
    def snapshot(self):
        return copy.copy(self.state)

    def format(self, state=None) -> str:
        values = list(self.values(self.snapshot() if state is None else state))
        if self.forwarded:
            values.insert(0, self.identity.name)
        return format_message(self.identity.name, self.template, values)

    def emit(self) -> str:
        line = self.format(self.snapshot())
        self.bus.publish(line)
        self.published += 1
        return line

    def advance(self) -> None:
        self.update(self.state)
        self.ticks += 1

    def tick(self) -> str:
        """Emit then advance, without waiting."""
        line = self.emit()
        self.advance()
        return line

    # ---- lifecycle ----
    def start(self):
        with self._lock:
            if self.status is not PublisherStatus.IDLE:
                raise RuntimeError(f"publisher {self.stream} already {self.status.value}")
            self.status = PublisherStatus.RUNNING
            self._thread = threading.Thread(target=self._loop, name=f"publisher-{self.stream}", daemon=False)
            self._thread.start()
        logging.info(f"[publisher:{self.stream}] started period={self.period}s forwarded={self.forwarded}")

    def stop(self):
        self._stop.set()
        with self._lock:
            if self.status is PublisherStatus.IDLE:
                self.status = PublisherStatus.STOPPED

    def join(self, timeout: Optional[float] = None) -> bool:
        thr = self._thread
        if thr is not None:
            thr.join(timeout)
            return not thr.is_alive()
        return True

    @property
    def running(self) -> bool:
        return self.status is PublisherStatus.RUNNING

    def _fail(self, e: Exception):
        self.error = PublisherLoopFailure(self.stream, e)
        logging.exception(f"[publisher:{self.stream}] tick failed; stopping this stream")

    def _loop(self):
        deadline = self._clock()
        try:
            while not self._stop.is_set():
                try:
                    self.emit()
                except Exception as e:
                    self._fail(e)
                    return
                deadline += self.period
                delay = deadline - self._clock()
                if delay < -self.period:
                    # fell more than a whole period behind; realign instead of bursting
                    logging.warning(f"[publisher:{self.stream}] overrun by {-delay:.3f}s; realigning")
                    deadline = self._clock()
                    delay = 0.0
                if self._stop.wait(max(0.0, delay)):
                    break
                try:
                    self.advance()
                except Exception as e:
                    self._fail(e)
                    return
        finally:
            with self._lock:
                self.status = PublisherStatus.STOPPED
            logging.info(f"[publisher:{self.stream}] stopped after {self.published} messages")
