import re
import threading
import time

import pytest

from capsim.core.errors import CodecError, PublisherLoopFailure
from capsim.core.packet import NodeIdentity
from capsim.core.publisher import PublisherStatus
from capsim.core.streams import (
    STREAMS, CameraPayloadPublisher, CameraSnapshotPublisher, CameraSnapshotState,
    MoveWaypointPublisher, MoveWaypointState, TimeBroadcastPublisher,
)


class RecordingBus:
    def __init__(self):
        self.lines = []
        self._lock = threading.Lock()

    def publish(self, text):
        with self._lock:
            self.lines.append(text)
        return True


LOCAL = NodeIdentity(name="node", bus="loopback", debug=True)
FORWARDED = NodeIdentity(name="node", bus="loopback", debug=False)


def fields_of(line):
    return line.split()[2:]


def test_camera_snapshot_four_ticks():
    bus = RecordingBus()
    pub = CameraSnapshotPublisher(bus, LOCAL, state=CameraSnapshotState(snapshot_image_number=0, camera_state=0))

    after = []
    for _ in range(4):
        pub.tick()
        after.append((pub.state.camera_state, pub.state.snapshot_image_number))

    # state observed after each tick (incremented before the next send)
    assert [c for c, _ in after] == [1, 2, 0, 1]
    assert [n for _, n in after] == [1, 2, 3, 4]
    # each message carries the pre-increment values of its tick
    sent = [fields_of(line) for line in bus.lines]
    assert [f[1] for f in sent] == ["0", "1", "2", "0"]
    assert [f[2] for f in sent] == ["0", "1", "2", "3"]


@pytest.mark.parametrize("k", [0, 1, 2, 3, 7, 10])
def test_camera_snapshot_state_after_k_ticks(k):
    pub = CameraSnapshotPublisher(RecordingBus(), LOCAL, state=CameraSnapshotState(snapshot_image_number=5))
    for _ in range(k):
        pub.tick()
    assert pub.state.camera_state == k % 3
    assert pub.state.snapshot_image_number == 5 + k
    assert pub.ticks == k


def test_image_number_wraps_at_sixteen_bits():
    pub = CameraSnapshotPublisher(RecordingBus(), LOCAL, state=CameraSnapshotState(snapshot_image_number=65535))
    pub.tick()
    assert pub.state.snapshot_image_number == 0


def test_camera_snapshot_variants():
    bus = RecordingBus()
    CameraSnapshotPublisher(bus, LOCAL).tick()
    CameraSnapshotPublisher(bus, FORWARDED).tick()
    assert bus.lines[0] == "node CAMERA_SNAPSHOT 12345 0 0 1 30.100000 33.299999"
    assert bus.lines[1] == "node CAMERA_SNAPSHOT_DL node 12345 0 0 1 30.100000 33.299999"


def test_camera_payload_elapsed_seconds():
    bus = RecordingBus()
    pub = CameraPayloadPublisher(bus, LOCAL)
    for _ in range(3):
        pub.tick()
    assert [fields_of(line)[0] for line in bus.lines] == ["0.000000", "2.000000", "4.000000"]
    assert bus.lines[0] == "node CAMERA_PAYLOAD 0.000000 30 60 1 0"

    fwd = RecordingBus()
    CameraPayloadPublisher(fwd, FORWARDED).tick()
    assert fwd.lines[0] == "node CAMERA_PAYLOAD_DL node 0.000000 30 60 1 0"


@pytest.mark.parametrize("k", [0, 1, 4, 9])
def test_move_waypoint_ramps(k):
    initial = MoveWaypointState()
    pub = MoveWaypointPublisher(RecordingBus(), FORWARDED)
    for _ in range(k):
        pub.tick()
    assert pub.state.alt == initial.alt + 10000 * k
    assert pub.state.lat == initial.lat + 100 * k
    assert pub.state.lon == initial.lon


def test_move_waypoint_has_a_single_form():
    for identity in (LOCAL, FORWARDED):
        bus = RecordingBus()
        MoveWaypointPublisher(bus, identity).tick()
        assert bus.lines == ["node MOVE_WP 18 1 418155620 -1119824370 1350000"]


def test_move_waypoint_saturates_instead_of_overflowing():
    top = 2 ** 31 - 1
    pub = MoveWaypointPublisher(RecordingBus(), LOCAL, state=MoveWaypointState(alt=top - 5, lat=top - 5))
    pub.tick()
    pub.tick()
    assert pub.state.alt == top
    assert pub.state.lat == top


def test_time_broadcast_uses_wall_clock_at_send_time():
    now = [1700000000.75]
    bus = RecordingBus()
    pub = TimeBroadcastPublisher(bus, FORWARDED, wall_clock=lambda: now[0])
    pub.tick()
    now[0] += 5
    pub.tick()
    assert bus.lines == ["node TIME 1700000000", "node TIME 1700000005"]


def test_default_periods():
    assert {name: cls.period for name, cls in STREAMS.items()} == {
        "camera_snapshot": 1.0,
        "camera_payload": 2.0,
        "move_waypoint": 3.0,
        "time_broadcast": 5.0,
    }


def test_invalid_period():
    with pytest.raises(ValueError):
        CameraSnapshotPublisher(RecordingBus(), LOCAL, period=0)


def test_stop_before_start_and_restart_rejected():
    pub = CameraSnapshotPublisher(RecordingBus(), LOCAL)
    assert pub.status is PublisherStatus.IDLE
    pub.stop()
    assert pub.status is PublisherStatus.STOPPED
    with pytest.raises(RuntimeError):
        pub.start()


def test_stop_wakes_a_long_wait():
    bus = RecordingBus()
    pub = CameraSnapshotPublisher(bus, LOCAL, period=10.0)
    pub.start()
    time.sleep(0.05)
    pub.stop()
    assert pub.join(1.0)
    assert pub.status is PublisherStatus.STOPPED
    assert pub.published == 1
    # stopped during the wait: the state is not advanced afterwards
    assert pub.ticks == 0


def test_two_streams_concurrently():
    bus = RecordingBus()
    duration = 0.4
    fast = CameraSnapshotPublisher(bus, LOCAL, period=0.02)
    slow = MoveWaypointPublisher(bus, LOCAL, period=0.05)
    fast.start()
    slow.start()
    time.sleep(duration)
    fast.stop()
    slow.stop()
    assert fast.join(2.0) and slow.join(2.0)

    for pub in (fast, slow):
        expected = int(duration / pub.period)
        assert abs(pub.published - expected) <= 1, (pub.stream, pub.published, expected)

    snapshot_re = re.compile(r"^node CAMERA_SNAPSHOT 12345 [0-2] \d+ 1 30\.100000 33\.299999$")
    wp_re = re.compile(r"^node MOVE_WP 18 1 \d+ -1119824370 \d+$")
    for line in bus.lines:
        assert snapshot_re.match(line) or wp_re.match(line), line
    assert len(bus.lines) == fast.published + slow.published

    # per-stream order is the stream's own loop order
    images = [int(line.split()[4]) for line in bus.lines if "CAMERA_SNAPSHOT" in line]
    assert images == list(range(len(images)))


def test_failing_publisher_stops_alone():
    bus = RecordingBus()
    # camera_id does not fit uint16: formatting fails on the first tick
    bad = CameraSnapshotPublisher(bus, LOCAL, state=CameraSnapshotState(camera_id=70000), period=0.02)
    good = MoveWaypointPublisher(bus, LOCAL, period=0.02)
    bad.start()
    good.start()
    try:
        assert bad.join(1.0)
        assert bad.status is PublisherStatus.STOPPED
        assert isinstance(bad.error, PublisherLoopFailure)
        assert isinstance(bad.error.cause, CodecError)
        assert bad.published == 0
        time.sleep(0.1)
        assert good.running
        assert good.published >= 2
    finally:
        good.stop()
        good.join(1.0)


def test_camera_payload_step_ignores_period_override():
    bus = RecordingBus()
    pub = CameraPayloadPublisher(bus, LOCAL, period=0.5)
    pub.tick()
    pub.tick()
    assert fields_of(bus.lines[-1])[0] == "2.000000"
    assert pub.state.timestamp == 4.0


class SlowBus(RecordingBus):
    """Each publish takes most of a period."""

    def __init__(self, work):
        super().__init__()
        self.work = work

    def publish(self, text):
        time.sleep(self.work)
        return super().publish(text)


def test_pacing_is_fixed_rate_not_sleep_after_work():
    period, work, duration = 0.05, 0.03, 0.5
    pub = MoveWaypointPublisher(SlowBus(work), LOCAL, period=period)
    pub.start()
    time.sleep(duration)
    pub.stop()
    assert pub.join(1.0)
    # sleep-after-work would give about duration / (period + work) == 6
    assert 9 <= pub.published <= 11, pub.published


class StallingBus(RecordingBus):
    """The first publish jumps the publisher clock forward by `stall` seconds."""

    def __init__(self, offset, stall):
        super().__init__()
        self.offset = offset
        self.stall = stall
        self.times = []

    def publish(self, text):
        if not self.times:
            self.offset[0] += self.stall
        self.times.append(time.monotonic())
        return super().publish(text)


def test_overrun_realigns_instead_of_bursting(caplog):
    period = 0.1
    offset = [0.0]
    bus = StallingBus(offset, stall=3.5 * period)
    pub = MoveWaypointPublisher(bus, LOCAL, period=period, clock=lambda: time.monotonic() + offset[0])
    pub.start()
    try:
        end = time.time() + 2.0
        while pub.published < 4 and time.time() < end:
            time.sleep(0.01)
    finally:
        pub.stop()
        assert pub.join(1.0)

    assert len(bus.times) >= 4
    # one catch-up publish right after the stall, then the normal period again
    assert bus.times[1] - bus.times[0] < period / 2
    assert bus.times[2] - bus.times[1] >= period * 0.8
    assert bus.times[3] - bus.times[2] >= period * 0.8
    assert "realigning" in caplog.text
