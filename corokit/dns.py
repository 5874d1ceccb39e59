"""Resolving host names to IP addresses without blocking the executor."""

from __future__ import annotations

import contextlib
import dataclasses
import enum
import ipaddress
import socket
import threading
from typing import Any, Union

from .poll import PollOp, PollStatus

__all__ = ["DnsStatus", "DnsResult", "Resolver"]

IpAddress = Union[ipaddress.IPv4Address, ipaddress.IPv6Address]


class DnsStatus(enum.Enum):
    """Outcome of a host name lookup."""

    COMPLETE = "complete"
    ERROR = "error"


@dataclasses.dataclass
class DnsResult:
    """The status of a lookup and, when complete, the addresses found."""

    status: DnsStatus = DnsStatus.COMPLETE
    ip_addresses: list[IpAddress] = dataclasses.field(default_factory=list)


class _Lookup:
    """Resolves one host name for IPv4 and IPv6 on a background thread."""

    def __init__(self, hostname: str) -> None:
        self._hostname = hostname
        self._succeeded = False
        self._addresses: list[IpAddress] = []

    def run(self, notify: socket.socket) -> None:
        try:
            for family in (socket.AF_INET, socket.AF_INET6):
                self._resolve(family)
        finally:
            with contextlib.suppress(OSError):
                notify.send(b"\x01")
            notify.close()

    def _resolve(self, family: int) -> None:
        try:
            infos = socket.getaddrinfo(self._hostname, None, family, socket.SOCK_STREAM)
        except (OSError, UnicodeError):
            return
        self._succeeded = True
        for *_, sockaddr in infos:
            try:
                address = ipaddress.ip_address(sockaddr[0])
            except ValueError:
                continue
            if address not in self._addresses:
                self._addresses.append(address)

    def result(self) -> DnsResult:
        if not self._succeeded:
            return DnsResult(DnsStatus.ERROR, [])
        return DnsResult(DnsStatus.COMPLETE, list(self._addresses))


class Resolver:
    """Looks up host names, waiting for the answer through an I/O executor's ``poll``.

    ``timeout`` bounds each lookup in the units the executor's ``poll`` takes;
    zero waits indefinitely.
    """

    def __init__(self, executor: Any, timeout: Any) -> None:
        if executor is None:
            raise ValueError("dns resolver cannot have a None executor")
        self._executor = executor
        self._timeout = timeout

    async def host_by_name(self, hostname: str) -> DnsResult:
        """Resolve ``hostname`` to its IPv4 and IPv6 addresses.

        The status is COMPLETE when at least one address family resolved, and
        ERROR when none did or the lookup did not finish within the timeout.
        """
        lookup = _Lookup(hostname)
        recv_sock, send_sock = socket.socketpair()
        try:
            worker = threading.Thread(target=lookup.run, args=(send_sock,), name="dns-lookup", daemon=True)
            worker.start()
            status = await self._executor.poll(recv_sock, PollOp.READ, self._timeout)
        finally:
            recv_sock.close()

        if status is not PollStatus.EVENT:
            return DnsResult(DnsStatus.ERROR, [])
        return lookup.result()