
# Inbound message patterns (sender wildcard, fixed name, positional wildcards)
WP_MOVED = r"^(\S*) WP_MOVED (\S*) (\S*) (\S*) (\S*) (\S*)"
VECTORNAV_INFO = r"^(\S*) VECTORNAV_INFO (\S*) (\S*) (\S*) (\S*) (\S*) (\S*) (\S*) (\S*) (\S*)"
ATTITUDE = r"^(\S*) ATTITUDE (\S*) (\S*) (\S*)"
GPS_LLA = r"^(\S*) GPS_LLA (\S*) (\S*) (\S*) (\S*) (\S*) (\S*) (\S*) (\S*) (\S*) (\S*)"
ROTORCRAFT_FP = r"^(\S*) ROTORCRAFT_FP (\S*) (\S*) (\S*) (\S*) (\S*) (\S*) (\S*) (\S*) (\S*) (\S*) (\S*) (\S*) (\S*) (\S*)"

INBOUND_PATTERNS = (WP_MOVED, VECTORNAV_INFO, ATTITUDE, GPS_LLA, ROTORCRAFT_FP)

# Outbound message names
CAMERA_SNAPSHOT = "CAMERA_SNAPSHOT"
CAMERA_PAYLOAD = "CAMERA_PAYLOAD"
MOVE_WP = "MOVE_WP"
TIME = "TIME"
# forwarded (downlink) variants carry this suffix and an aircraft-id token
FORWARDED_SUFFIX = "_DL"

# Stream names
STREAM_CAMERA_SNAPSHOT = "camera_snapshot"
STREAM_CAMERA_PAYLOAD = "camera_payload"
STREAM_MOVE_WAYPOINT = "move_waypoint"
STREAM_TIME_BROADCAST = "time_broadcast"
STREAM_NAMES = (
    STREAM_CAMERA_SNAPSHOT, STREAM_CAMERA_PAYLOAD,
    STREAM_MOVE_WAYPOINT, STREAM_TIME_BROADCAST,
)

# Defaults
DEFAULT_NAME = "aggiecap"
DEFAULT_BUS = "127.255.255.255:2010"
BUS_ENV_VAR = "IVYBUS"
DEFAULT_READY_MESSAGE = "AggieCapTest READY"
DEFAULT_PEER_TIMEOUT = 10.0
DEFAULT_QUEUE_SIZE = 1024
DEFAULT_MQTT_PORT = 1883
DEFAULT_MQTT_PREFIX = "capsim/v1"
MQTT_BUS_TOPIC = "{root}/bus"
START_STAGGER_SECS = 0.1
