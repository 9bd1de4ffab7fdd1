"""Bus over an MQTT broker.

Every node publishes its lines to ``<prefix>/bus`` and subscribes to the same
topic, so the broker plays the role of the broadcast domain. The paho network
loop runs on its own thread and feeds received lines to the receive loop.
"""

import logging
import queue
import threading
import time
from typing import Optional
from urllib.parse import urlparse

import paho.mqtt.client as mqtt

from capsim.core.constants import DEFAULT_MQTT_PORT, DEFAULT_MQTT_PREFIX, MQTT_BUS_TOPIC
from capsim.core.errors import ConfigurationError
from capsim.transports.bus import BufferFull, BusConnection


def parse_mqtt_url(url: str):
    """'mqtt://host[:port][/prefix]' -> (host, port, prefix)."""
    u = urlparse(url)
    if u.scheme != "mqtt" or not u.hostname:
        raise ConfigurationError(f"invalid mqtt bus address {url!r}")
    try:
        port = u.port or DEFAULT_MQTT_PORT
    except ValueError:
        raise ConfigurationError(f"invalid mqtt port in {url!r}") from None
    prefix = u.path.strip("/") or DEFAULT_MQTT_PREFIX
    return u.hostname, port, prefix


class MqttBus(BusConnection):
    connect_timeout = 5.0

    def __init__(self, name: str, host: str, port: int = DEFAULT_MQTT_PORT,
                 prefix: str = DEFAULT_MQTT_PREFIX, keepalive: int = 30, **kwargs):
        super().__init__(name, **kwargs)
        self.host = host
        self.port = int(port)
        self.topic = MQTT_BUS_TOPIC.format(root=prefix)
        self._keepalive = keepalive
        self._rxq: "queue.Queue" = queue.Queue()
        self._connected = threading.Event()
        self._client = mqtt.Client(
            mqtt.CallbackAPIVersion.VERSION2,
            client_id=f"capsim-{name}-{int(time.time() * 1000)}",
        )
        self._client.on_connect = self._on_connect
        self._client.on_disconnect = self._on_disconnect
        self._client.on_message = self._on_message
        self._client.max_queued_messages_set(self._txq.maxsize)

    def _open(self):
        logging.info(f"[bus:{self.name}] connecting to mqtt {self.host}:{self.port} topic={self.topic}")
        # connect_async + loop_start: paho keeps reconnecting on its own thread
        self._client.connect_async(self.host, self.port, keepalive=self._keepalive)
        self._client.loop_start()
        if not self._connected.wait(timeout=self.connect_timeout):
            logging.warning(f"[bus:{self.name}] connect not confirmed within {self.connect_timeout}s; paho will retry")

    def _close(self):
        try:
            self._client.disconnect()
        finally:
            self._client.loop_stop()
            self._connected.clear()

    def _send_line(self, text: str):
        if not self._connected.is_set():
            raise BufferFull("not connected to the broker")
        info = self._client.publish(self.topic, text, qos=0)
        if info.rc == mqtt.MQTT_ERR_QUEUE_SIZE:
            raise BufferFull("paho outgoing queue full")
        if info.rc != mqtt.MQTT_ERR_SUCCESS:
            raise OSError(f"publish error rc={info.rc}")

    def _recv_line(self, timeout: float):
        try:
            return self._rxq.get(timeout=timeout)
        except queue.Empty:
            return None

    # ---- paho callbacks ----
    def _on_connect(self, client, userdata, flags, reason_code, properties=None):
        if reason_code == 0:
            logging.info(f"[bus:{self.name}] mqtt connected")
            client.subscribe(self.topic, qos=0)
            self._connected.set()
        else:
            logging.warning(f"[bus:{self.name}] mqtt connect failed rc={reason_code}")

    def _on_disconnect(self, client, userdata, disconnect_flags, reason_code, properties=None):
        self._connected.clear()
        if not self.closed:
            logging.warning(f"[bus:{self.name}] mqtt disconnected rc={reason_code}; paho will reconnect")

    def _on_message(self, client, userdata, msg):
        try:
            text = msg.payload.decode("utf-8")
        except UnicodeDecodeError:
            logging.debug(f"[bus:{self.name}] drop undecodable payload on {msg.topic}")
            return
        # the broker hides the origin host; report lines as arriving via the broker
        self._rxq.put((text.strip(), self.host))
