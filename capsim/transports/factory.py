from capsim.core.errors import ConfigurationError
from capsim.transports.bus import BusConnection
from capsim.transports.loopback import LoopbackBus, LoopbackHub
from capsim.transports.mqtt_bus import MqttBus, parse_mqtt_url
from capsim.transports.udp_bus import UdpBus


def create_bus(address: str, name: str, **kwargs) -> BusConnection:
    """Build the transport for a bus address.

    - ``loopback`` / ``loopback://<hub>``: in-process hub
    - ``mqtt://host[:port][/prefix]``: MQTT broker
    - ``udp://net:port`` / ``net:port``: broadcast UDP domain
    """
    if not address or not address.strip():
        raise ConfigurationError("empty bus address")
    address = address.strip()
    if address == "loopback" or address.startswith("loopback://"):
        hub = address[len("loopback://"):] if "://" in address else "default"
        return LoopbackBus(name, hub=LoopbackHub.named(hub or "default"), **kwargs)
    if address.startswith("mqtt://"):
        host, port, prefix = parse_mqtt_url(address)
        return MqttBus(name, host, port=port, prefix=prefix, **kwargs)
    if "://" in address and not address.startswith("udp://"):
        raise ConfigurationError(f"unsupported bus scheme in {address!r}")
    return UdpBus(name, domain=address, **kwargs)
