"""Stream and datagram sockets carrying serialized packets.

TCP messages are framed by a 4-byte little-endian payload length.  UDP
datagrams carry one serialized packet each.  :class:`TypedSocket` adds packet
(de)serialization on top of either transport.
"""

from __future__ import annotations

import ipaddress
import socket
import struct
import threading
from typing import Any, Iterable, Union

from .serialization import DeserializationPacket, SerialType, SerializationPacket

__all__ = [
    "SocketShutdown",
    "InvalidPacket",
    "UDP",
    "TCP",
    "TCPListener",
    "TypedSocket",
]

_UDP_RECEIVE_SIZE = 2000
_HEADER = struct.Struct("<I")
_MSG_DONTWAIT = getattr(socket, "MSG_DONTWAIT", 0)
_MSG_NOSIGNAL = getattr(socket, "MSG_NOSIGNAL", 0)

Address = Union[str, ipaddress.IPv4Address, ipaddress.IPv6Address]
Chunks = Union[SerializationPacket, bytes, bytearray, memoryview, Iterable[bytes]]


class SocketShutdown(Exception):
    """Raised when the peer has closed the connection."""

    def __init__(self) -> None:
        super().__init__("Socket shutdown")


class InvalidPacket(Exception):
    """Raised when a received packet cannot be used."""

    def __init__(self) -> None:
        super().__init__("Invalid packet")


def _new_socket(kind: int) -> socket.socket:
    """Create an IPv6 socket, or an IPv4 one where IPv6 is unavailable."""
    try:
        return socket.socket(socket.AF_INET6, kind)
    except OSError:
        return socket.socket(socket.AF_INET, kind)


def _sockaddr(family: int, address: Address, port: int) -> tuple:
    ip = ipaddress.ip_address(address)
    if family == socket.AF_INET6:
        if isinstance(ip, ipaddress.IPv4Address):
            ip = ipaddress.IPv6Address("::ffff:" + str(ip))
        return (str(ip), port, 0, 0)
    if not isinstance(ip, ipaddress.IPv4Address):
        raise OSError(f"cannot reach IPv6 address {ip} from an IPv4 socket")
    return (str(ip), port)


def _any_address(family: int) -> str:
    return "::" if family == socket.AF_INET6 else "0.0.0.0"


def _chunks(data: Chunks) -> list[bytes]:
    if isinstance(data, SerializationPacket):
        return data.spans()
    if isinstance(data, (bytes, bytearray, memoryview)):
        return [bytes(data)]
    return [bytes(chunk) for chunk in data]


class _SocketBase:
    """Owns an operating-system socket, released on exit or on close."""

    def __init__(self, sock: socket.socket | None = None) -> None:
        self.sock = sock

    def _release(self) -> None:
        if self.sock is not None:
            self.sock.close()
            self.sock = None

    def _socket(self) -> socket.socket:
        if self.sock is None:
            raise ValueError("socket is closed")
        return self.sock

    def __bool__(self) -> bool:
        return self.sock is not None

    def __enter__(self):
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self._release()


class UDP(_SocketBase):
    """Datagram socket; each datagram is one packet."""

    def __init__(self) -> None:
        super().__init__(_new_socket(socket.SOCK_DGRAM))

    def bind(self, port: int) -> None:
        """Listen on ``port`` on every local address."""
        sock = self._socket()
        sock.bind(_sockaddr(sock.family, _any_address(sock.family), port))

    def connect(self, address: Address, port: int) -> None:
        """Set the default destination and only accept datagrams from it."""
        sock = self._socket()
        sock.connect(_sockaddr(sock.family, address, port))

    def receive_raw(self) -> DeserializationPacket:
        """Block until a datagram arrives and return it."""
        return DeserializationPacket(self._socket().recv(_UDP_RECEIVE_SIZE))

    def receive_from_raw(self) -> tuple[DeserializationPacket, tuple]:
        """Block until a datagram arrives; return it with the sender's address."""
        data, address = self._socket().recvfrom(_UDP_RECEIVE_SIZE)
        return DeserializationPacket(data), address

    def send_raw(self, data: Chunks) -> None:
        """Send bytes or a list of chunks as a single datagram."""
        sock = self._socket()
        if isinstance(data, (bytes, bytearray, memoryview)):
            sock.send(data)
        else:
            sock.sendmsg(_chunks(data))

    def set_receive_buffer_size(self, size: int) -> None:
        """Ask the kernel for a receive buffer of ``size`` bytes."""
        self._socket().setsockopt(socket.SOL_SOCKET, socket.SO_RCVBUF, size)

    def set_send_buffer_size(self, size: int) -> None:
        """Ask the kernel for a send buffer of ``size`` bytes."""
        self._socket().setsockopt(socket.SOL_SOCKET, socket.SO_SNDBUF, size)

    def close(self) -> None:
        """Close the socket; further calls do nothing."""
        self._release()


class TCP(_SocketBase):
    """Stream socket exchanging length-prefixed messages."""

    def __init__(
        self,
        address: Address | None = None,
        port: int | None = None,
        *,
        sock: socket.socket | None = None,
    ) -> None:
        if sock is None:
            if address is None or port is None:
                raise ValueError("TCP needs either an address and a port, or a socket")
            ip = ipaddress.ip_address(address)
            family = socket.AF_INET if isinstance(ip, ipaddress.IPv4Address) else socket.AF_INET6
            sock = socket.socket(family, socket.SOCK_STREAM)
            try:
                sock.connect(_sockaddr(family, ip, port))
            except OSError:
                sock.close()
                raise
        try:
            sock.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)
        except OSError:
            sock.close()
            raise
        super().__init__(sock)
        self._buffer = bytearray()
        self._lock = threading.Lock()

    def receive_raw(self) -> DeserializationPacket:
        """Read what is available without blocking.

        Returns the complete message once it has arrived, or an empty packet
        while it is still incomplete.  Raises :class:`SocketShutdown` when the
        peer closed the connection.
        """
        sock = self._socket()
        already = len(self._buffer)
        if already < _HEADER.size:
            expected = _HEADER.size - already
        else:
            (payload_size,) = _HEADER.unpack_from(self._buffer)
            expected = payload_size + _HEADER.size - already

        data = sock.recv(expected, _MSG_DONTWAIT)
        if not data:
            raise SocketShutdown()
        self._buffer += data

        if len(self._buffer) < _HEADER.size:
            return DeserializationPacket()
        (payload_size,) = _HEADER.unpack_from(self._buffer)
        if len(self._buffer) < _HEADER.size + payload_size:
            return DeserializationPacket()

        message, self._buffer = bytes(self._buffer), bytearray()
        return DeserializationPacket(message, _HEADER.size)

    def send_raw(self, spans: Chunks) -> None:
        """Send the chunks as one length-prefixed message; safe across threads."""
        chunks = _chunks(spans)
        size = sum(len(chunk) for chunk in chunks)
        if size > 0xFFFFFFFF:
            raise ValueError(f"message too large: {size} bytes")
        views = [memoryview(_HEADER.pack(size))]
        views += [memoryview(chunk) for chunk in chunks if chunk]

        with self._lock:
            sock = self._socket()
            while views:
                sent = sock.sendmsg(views, [], _MSG_NOSIGNAL)
                if sent == 0:
                    raise SocketShutdown()
                while views and sent >= len(views[0]):
                    sent -= len(views[0])
                    views.pop(0)
                if views:
                    views[0] = views[0][sent:]

    def close(self) -> None:
        """Close the connection; further calls do nothing."""
        self._release()


class TCPListener(_SocketBase):
    """Listening stream socket accepting one pending connection at a time."""

    def __init__(self, port: int | None = None) -> None:
        if port is None:
            super().__init__(None)
            return
        sock = _new_socket(socket.SOCK_STREAM)
        try:
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            sock.bind(_sockaddr(sock.family, _any_address(sock.family), port))
            sock.listen(1)
        except OSError:
            sock.close()
            raise
        super().__init__(sock)

    def accept(self) -> tuple[TCP, tuple]:
        """Wait for a connection; return it as a :class:`TCP` with the peer address."""
        conn, address = self._socket().accept()
        return TCP(sock=conn), address

    def close(self) -> None:
        """Stop listening; further calls do nothing."""
        self._release()


class TypedSocket:
    """Socket that receives ``received_type`` values and sends ``sent_type`` values.

    ``sent_type`` is normally a :class:`~wivrn.serialization.Variant`, so the
    alternative index precedes every sent packet.
    """

    def __init__(self, transport: UDP | TCP, received_type: SerialType, sent_type: SerialType) -> None:
        self.transport = transport
        self.received_type = received_type
        self.sent_type = sent_type

    def receive(self) -> Any:
        """Return the next packet, or None if no complete packet is available."""
        packet = self.transport.receive_raw()
        if packet.empty():
            return None
        return packet.deserialize(self.received_type)

    def send(self, packet: Any) -> None:
        """Serialize and send one packet."""
        out = SerializationPacket()
        out.serialize(self.sent_type, packet)
        self.transport.send_raw(out)

    def close(self) -> None:
        """Close the underlying transport."""
        self.transport.close()

    def __enter__(self):
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()