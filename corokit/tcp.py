"""Non-blocking TCP clients and servers driven by an :class:`~corokit.io_scheduler.IoScheduler`."""

from __future__ import annotations

import enum
import errno
import ipaddress
import socket
from typing import Any, Optional, Tuple, Union

from .poll import PollOp, PollStatus

__all__ = ["ConnectStatus", "RecvStatus", "SendStatus", "TcpClient", "TcpServer"]

IpAddress = Union[ipaddress.IPv4Address, ipaddress.IPv6Address]
Buffer = Union[bytes, bytearray, memoryview, str]


class ConnectStatus(enum.Enum):
    """Outcome of a connection attempt."""

    CONNECTED = "connected"
    TIMEOUT = "timeout"
    ERROR = "error"


class RecvStatus(enum.Enum):
    """Outcome of a receive call."""

    OK = "ok"
    CLOSED = "closed"
    TRY_AGAIN = "try_again"
    CONNECTION_RESET = "connection_reset"
    CONNECTION_REFUSED = "connection_refused"
    NOT_CONNECTED = "not_connected"
    BAD_FILE_DESCRIPTOR = "bad_file_descriptor"
    INTERRUPTED = "interrupted"
    NO_MEMORY = "no_memory"
    ERROR = "error"


class SendStatus(enum.Enum):
    """Outcome of a send call."""

    OK = "ok"
    TRY_AGAIN = "try_again"
    BROKEN_PIPE = "broken_pipe"
    CONNECTION_RESET = "connection_reset"
    NOT_CONNECTED = "not_connected"
    BAD_FILE_DESCRIPTOR = "bad_file_descriptor"
    INTERRUPTED = "interrupted"
    NO_MEMORY = "no_memory"
    MESSAGE_TOO_BIG = "message_too_big"
    ERROR = "error"


_RECV_ERRORS = {
    errno.EAGAIN: RecvStatus.TRY_AGAIN,
    errno.EWOULDBLOCK: RecvStatus.TRY_AGAIN,
    errno.ECONNRESET: RecvStatus.CONNECTION_RESET,
    errno.ECONNREFUSED: RecvStatus.CONNECTION_REFUSED,
    errno.ENOTCONN: RecvStatus.NOT_CONNECTED,
    errno.EBADF: RecvStatus.BAD_FILE_DESCRIPTOR,
    errno.EINTR: RecvStatus.INTERRUPTED,
    errno.ENOMEM: RecvStatus.NO_MEMORY,
}

_SEND_ERRORS = {
    errno.EAGAIN: SendStatus.TRY_AGAIN,
    errno.EWOULDBLOCK: SendStatus.TRY_AGAIN,
    errno.EPIPE: SendStatus.BROKEN_PIPE,
    errno.ECONNRESET: SendStatus.CONNECTION_RESET,
    errno.ENOTCONN: SendStatus.NOT_CONNECTED,
    errno.EBADF: SendStatus.BAD_FILE_DESCRIPTOR,
    errno.EINTR: SendStatus.INTERRUPTED,
    errno.ENOMEM: SendStatus.NO_MEMORY,
    errno.EMSGSIZE: SendStatus.MESSAGE_TOO_BIG,
}


def _parse_address(address: Union[str, IpAddress]) -> IpAddress:
    if isinstance(address, (ipaddress.IPv4Address, ipaddress.IPv6Address)):
        return address
    return ipaddress.ip_address(address)


def _family(address: IpAddress) -> int:
    return socket.AF_INET6 if address.version == 6 else socket.AF_INET


def _as_view(data: Buffer) -> memoryview:
    if isinstance(data, str):
        data = data.encode("utf-8")
    view = memoryview(data)
    return view if view.format == "B" and view.ndim == 1 else view.cast("B")


class TcpClient:
    """A non-blocking TCP connection.

    Sending and receiving never block: poll for readiness with :meth:`poll`
    before :meth:`recv` and after a partial :meth:`send`.
    """

    def __init__(self, scheduler: Any, address: Union[str, IpAddress] = "127.0.0.1", port: int = 8080) -> None:
        if scheduler is None:
            raise ValueError("tcp client cannot have a None scheduler")
        parsed = _parse_address(address)
        sock = socket.socket(_family(parsed), socket.SOCK_STREAM)
        sock.setblocking(False)
        self._setup(scheduler, sock, parsed, port, None)

    @classmethod
    def _from_socket(cls, scheduler: Any, sock: socket.socket, address: IpAddress, port: int) -> "TcpClient":
        client = cls.__new__(cls)
        client._setup(scheduler, sock, address, port, ConnectStatus.CONNECTED)
        return client

    def _setup(
        self,
        scheduler: Any,
        sock: socket.socket,
        address: IpAddress,
        port: int,
        status: Optional[ConnectStatus],
    ) -> None:
        self._scheduler = scheduler
        self._socket = sock
        self._address = address
        self._port = port
        self._connect_status = status

    @property
    def socket(self) -> socket.socket:
        """The underlying socket."""
        return self._socket

    @property
    def address(self) -> IpAddress:
        """The remote address."""
        return self._address

    @property
    def port(self) -> int:
        """The remote port."""
        return self._port

    def fileno(self) -> int:
        """Return the socket's file descriptor, -1 once closed."""
        return self._socket.fileno()

    async def connect(self, timeout: Any = 0) -> ConnectStatus:
        """Connect to the address and port; a zero timeout waits indefinitely.

        Once a connection attempt has finished its status is returned again
        without reconnecting.
        """
        if self._connect_status is not None:
            return self._connect_status

        result = self._socket.connect_ex((str(self._address), self._port))
        if result == 0:
            self._connect_status = ConnectStatus.CONNECTED
            return self._connect_status
        if result not in (errno.EINPROGRESS, errno.EWOULDBLOCK, errno.EAGAIN):
            self._connect_status = ConnectStatus.ERROR
            return self._connect_status

        status = await self._scheduler.poll(self._socket, PollOp.WRITE, timeout)
        if status is PollStatus.EVENT:
            error = self._socket.getsockopt(socket.SOL_SOCKET, socket.SO_ERROR)
            self._connect_status = ConnectStatus.CONNECTED if error == 0 else ConnectStatus.ERROR
        elif status is PollStatus.TIMEOUT:
            self._connect_status = ConnectStatus.TIMEOUT
        else:
            self._connect_status = ConnectStatus.ERROR
        return self._connect_status

    async def poll(self, op: PollOp, timeout: Any = 0) -> PollStatus:
        """Wait until the socket is ready for ``op``; a zero timeout waits indefinitely."""
        return await self._scheduler.poll(self._socket, op, timeout)

    def recv(self, size: int) -> Tuple[RecvStatus, bytes]:
        """Receive up to ``size`` bytes; return the status and the bytes received."""
        if size <= 0:
            return RecvStatus.OK, b""
        try:
            data = self._socket.recv(size)
        except OSError as error:
            return _RECV_ERRORS.get(error.errno, RecvStatus.ERROR), b""
        if not data:
            # A zero length read on a stream socket means the peer closed it.
            return RecvStatus.CLOSED, b""
        return RecvStatus.OK, data

    def send(self, data: Buffer) -> Tuple[SendStatus, memoryview]:
        """Send ``data`` (text is sent as UTF-8); return the status and what was not sent."""
        view = _as_view(data)
        if len(view) == 0:
            return SendStatus.OK, view
        try:
            sent = self._socket.send(view)
        except OSError as error:
            return _SEND_ERRORS.get(error.errno, SendStatus.ERROR), view
        return SendStatus.OK, view[sent:]

    def close(self) -> None:
        """Close the socket."""
        self._socket.close()

    def __enter__(self) -> "TcpClient":
        return self

    def __exit__(self, exc_type: Any, exc: Any, tb: Any) -> None:
        self.close()


class TcpServer:
    """A listening TCP socket that accepts :class:`TcpClient` connections."""

    def __init__(
        self,
        scheduler: Any,
        address: Union[str, IpAddress] = "0.0.0.0",
        port: int = 8080,
        backlog: int = 128,
    ) -> None:
        if scheduler is None:
            raise ValueError("tcp server cannot have a None scheduler")
        self._scheduler = scheduler
        self._address = _parse_address(address)
        self._backlog = backlog
        sock = socket.socket(_family(self._address), socket.SOCK_STREAM)
        try:
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            sock.bind((str(self._address), port))
            sock.listen(backlog)
            sock.setblocking(False)
        except OSError:
            sock.close()
            raise
        self._socket = sock

    @property
    def socket(self) -> socket.socket:
        """The listening socket."""
        return self._socket

    @property
    def address(self) -> IpAddress:
        """The address the server is bound to."""
        return self._address

    @property
    def port(self) -> int:
        """The port the server is bound to."""
        return self._socket.getsockname()[1]

    def fileno(self) -> int:
        """Return the listening socket's file descriptor, -1 once closed."""
        return self._socket.fileno()

    async def poll(self, timeout: Any = 0) -> PollStatus:
        """Wait for an incoming connection; a zero timeout waits indefinitely."""
        return await self._scheduler.poll(self._socket, PollOp.READ, timeout)

    def accept(self) -> TcpClient:
        """Accept a pending connection; raises OSError if none can be accepted."""
        conn, peer = self._socket.accept()
        conn.setblocking(False)
        return TcpClient._from_socket(self._scheduler, conn, ipaddress.ip_address(peer[0]), peer[1])

    def close(self) -> None:
        """Close the listening socket."""
        self._socket.close()

    def __enter__(self) -> "TcpServer":
        return self

    def __exit__(self, exc_type: Any, exc: Any, tb: Any) -> None:
        self.close()