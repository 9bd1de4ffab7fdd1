"""Broadcast-domain UDP transport.

A domain is written like an Ivy bus domain, ``network[,network...]:port``,
e.g. ``127.255.255.255:2010``. Every node binds the port with address reuse
and sends each line as one datagram to every broadcast network of the domain.
"""

import errno
import logging
import socket
from typing import List, Optional, Tuple

from capsim.core.constants import DEFAULT_BUS
from capsim.core.errors import ConfigurationError
from capsim.transports.bus import BufferFull, BusConnection

_DROP_ERRNOS = (errno.ENOBUFS, errno.EAGAIN, errno.EWOULDBLOCK)


def parse_domain(domain: str) -> Tuple[List[str], int]:
    """Parse 'udp://net[,net]:port' or 'net[,net]:port' into (networks, port)."""
    if domain.startswith("udp://"):
        domain = domain[len("udp://"):]
    if ":" not in domain:
        raise ConfigurationError(f"invalid bus domain {domain!r}, expected network:port")
    nets, port_s = domain.rsplit(":", 1)
    try:
        port = int(port_s)
    except ValueError:
        raise ConfigurationError(f"invalid bus port {port_s!r} in {domain!r}") from None
    if not 0 < port < 65536:
        raise ConfigurationError(f"bus port out of range: {port}")
    default_net = DEFAULT_BUS.rsplit(":", 1)[0]
    networks = [n.strip() for n in nets.split(",") if n.strip()] or [default_net]
    for n in networks:
        try:
            socket.inet_aton(n)
        except OSError:
            raise ConfigurationError(f"invalid bus network {n!r} in {domain!r}") from None
    return networks, port


class UdpBus(BusConnection):
    bufsize = 65535

    def __init__(self, name: str, domain: str = DEFAULT_BUS, **kwargs):
        super().__init__(name, **kwargs)
        self.domain = domain
        self.networks, self.port = parse_domain(domain)
        self._sock: Optional[socket.socket] = None

    def _open(self):
        sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        if hasattr(socket, "SO_REUSEPORT"):
            try:
                sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEPORT, 1)
            except OSError:
                pass
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_BROADCAST, 1)
        sock.bind(("", self.port))
        sock.settimeout(self.poll_interval)
        self._sock = sock
        logging.info(f"[bus:{self.name}] udp domain {','.join(self.networks)}:{self.port}")

    def _close(self):
        if self._sock:
            self._sock.close()
            self._sock = None

    def _send_line(self, text: str):
        data = (text + "\n").encode("ascii", errors="replace")
        for net in self.networks:
            try:
                self._sock.sendto(data, (net, self.port))
            except OSError as e:
                if e.errno in _DROP_ERRNOS:
                    raise BufferFull(str(e)) from e
                raise

    def _recv_line(self, timeout: float):
        try:
            data, addr = self._sock.recvfrom(self.bufsize)
        except socket.timeout:
            return None
        return data.decode("ascii", errors="replace").strip(), addr[0]
