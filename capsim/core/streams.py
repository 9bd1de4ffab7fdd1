"""The synthetic telemetry streams of the simulated payload computer.

Field layouts follow the pprzlink message definitions:

    CAMERA_SNAPSHOT   camera_id:uint16 camera_state:uint8 (UNKNOWN|OK|ERROR)
                      snapshot_image_number:uint16 snapshot_valid:uint8
                      lens_temp:float array_temp:float (NaN if not measured)
    CAMERA_PAYLOAD    timestamp:float used_memory:uint8 used_disk:uint8
                      door_status:uint8 (UNKNOWN|CLOSE|OPEN)
                      error_code:uint8 (NONE|CAMERA_ERR|DOOR_ERR)
    MOVE_WP           wp_id:uint8 ac_id:uint8 lat:int32 (1e7deg)
                      lon:int32 (1e7deg) alt:int32 (mm above MSL)
    TIME              t:uint32 (seconds since epoch)

The *_DL variants of CAMERA_SNAPSHOT and CAMERA_PAYLOAD are the forwarded
form and carry the aircraft id first.
"""

import time
from dataclasses import dataclass
from typing import Callable, Dict, Type

import numpy as np

from capsim.core.codec import FieldType, MessageTemplate, saturate, wrap
from capsim.core.constants import (
    CAMERA_PAYLOAD, CAMERA_SNAPSHOT, MOVE_WP, TIME,
    STREAM_CAMERA_PAYLOAD, STREAM_CAMERA_SNAPSHOT, STREAM_MOVE_WAYPOINT, STREAM_TIME_BROADCAST,
)
from capsim.core.publisher import PeriodicPublisher


@dataclass
class CameraSnapshotState:
    camera_id: int = 12345
    camera_state: int = 0
    snapshot_image_number: int = 0
    snapshot_valid: int = 1
    lens_temp: float = 30.1
    array_temp: float = 33.3


class CameraSnapshotPublisher(PeriodicPublisher):
    stream = STREAM_CAMERA_SNAPSHOT
    period = 1.0
    STATE = CameraSnapshotState
    CAMERA_STATES = 3
    TEMPLATE = MessageTemplate(CAMERA_SNAPSHOT, (
        ("camera_id", FieldType.UINT16),
        ("camera_state", FieldType.UINT8),
        ("snapshot_image_number", FieldType.UINT16),
        ("snapshot_valid", FieldType.UINT8),
        ("lens_temp", FieldType.FLOAT),
        ("array_temp", FieldType.FLOAT),
    ))

    def values(self, s):
        return (s.camera_id, s.camera_state, s.snapshot_image_number,
                s.snapshot_valid, s.lens_temp, s.array_temp)

    def update(self, s):
        s.camera_state = (s.camera_state + 1) % self.CAMERA_STATES
        s.snapshot_image_number = wrap(s.snapshot_image_number + 1, FieldType.UINT16)


@dataclass
class CameraPayloadState:
    timestamp: float = 0.0      # payload computer seconds since startup
    used_memory: int = 30
    used_disk: int = 60
    door_status: int = 1
    error_code: int = 0


class CameraPayloadPublisher(PeriodicPublisher):
    stream = STREAM_CAMERA_PAYLOAD
    period = 2.0
    STATE = CameraPayloadState
    # seconds added per tick, whatever the configured period
    ELAPSED_STEP = 2.0
    TEMPLATE = MessageTemplate(CAMERA_PAYLOAD, (
        ("timestamp", FieldType.FLOAT),
        ("used_memory", FieldType.UINT8),
        ("used_disk", FieldType.UINT8),
        ("door_status", FieldType.UINT8),
        ("error_code", FieldType.UINT8),
    ))

    def values(self, s):
        return (s.timestamp, s.used_memory, s.used_disk, s.door_status, s.error_code)

    def update(self, s):
        # accumulate in single precision, like the payload computer does
        s.timestamp = float(np.float32(s.timestamp) + np.float32(self.ELAPSED_STEP))


@dataclass
class MoveWaypointState:
    wp_id: int = 18             # WP_PAYLOAD in the flight plan
    ac_id: int = 1
    lat: int = 418155620        # 1e-7 deg
    lon: int = -1119824370      # 1e-7 deg
    alt: int = 1350 * 1000      # mm


class MoveWaypointPublisher(PeriodicPublisher):
    stream = STREAM_MOVE_WAYPOINT
    period = 3.0
    STATE = MoveWaypointState
    HAS_FORWARDED = False
    ALT_STEP_MM = 10 * 1000
    LAT_STEP = 100
    TEMPLATE = MessageTemplate(MOVE_WP, (
        ("wp_id", FieldType.UINT8),
        ("ac_id", FieldType.UINT8),
        ("lat", FieldType.INT32),
        ("lon", FieldType.INT32),
        ("alt", FieldType.INT32),
    ))

    def values(self, s):
        return (s.wp_id, s.ac_id, s.lat, s.lon, s.alt)

    def update(self, s):
        s.alt = saturate(s.alt + self.ALT_STEP_MM, FieldType.INT32)
        s.lat = saturate(s.lat + self.LAT_STEP, FieldType.INT32)


@dataclass
class TimeBroadcastState:
    pass


class TimeBroadcastPublisher(PeriodicPublisher):
    """Broadcasts wall-clock time for synchronization between components."""

    stream = STREAM_TIME_BROADCAST
    period = 5.0
    STATE = TimeBroadcastState
    HAS_FORWARDED = False
    TEMPLATE = MessageTemplate(TIME, (("t", FieldType.UINT32),))

    def __init__(self, bus, identity, state=None, period=None, clock=time.monotonic,
                 wall_clock: Callable[[], float] = time.time):
        super().__init__(bus, identity, state=state, period=period, clock=clock)
        self._wall_clock = wall_clock

    def values(self, s):
        return (int(self._wall_clock()),)


STREAMS: Dict[str, Type[PeriodicPublisher]] = {
    cls.stream: cls
    for cls in (CameraSnapshotPublisher, CameraPayloadPublisher, MoveWaypointPublisher, TimeBroadcastPublisher)
}
