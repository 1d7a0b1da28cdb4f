"""TCP dialling that records DNS and connect latency."""

from __future__ import annotations

import ipaddress
import socket
import time
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from .connectivity import ZERO_TIME


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class LatencyInfo:
    """Timings of the name lookup and TCP connect of one dial."""

    dns: timedelta = timedelta(0)
    connect: timedelta = timedelta(0)
    dns_start: datetime = ZERO_TIME
    connect_start: datetime = ZERO_TIME

    def dns_started(self) -> None:
        self.dns_start = _now()

    def dns_done(self) -> None:
        self.dns = _now() - self.dns_start

    def connect_started(self) -> None:
        if self.connect_start == ZERO_TIME:
            self.connect_start = _now()

    def connect_done(self) -> None:
        self.connect = _now() - self.connect_start


class DNSError(Exception):
    """A failed host name lookup."""

    def __init__(self, err: str, name: str, server: str = "") -> None:
        super().__init__(err)
        self.err = err
        self.name = name
        self.server = server

    def __str__(self) -> str:
        where = f" on {self.server}" if self.server else ""
        return f"lookup {self.name}{where}: {self.err}"


class DialError(Exception):
    """A failed network operation; ``err`` holds the underlying cause."""

    def __init__(
        self,
        op: str,
        net: str,
        err: BaseException,
        addr: str = "",
        latency: LatencyInfo | None = None,
    ) -> None:
        super().__init__(op, net, err)
        self.op = op
        self.net = net
        self.err = err
        self.addr = addr
        self.latency = latency if latency is not None else LatencyInfo()

    def __str__(self) -> str:
        text = self.op
        if self.net:
            text += f" {self.net}"
        if self.addr:
            text += f" {self.addr}"
        return f"{text}: {self.err}"


def is_dns_error(error: BaseException | None) -> bool:
    """True if ``error`` is a dial failure caused by a name lookup."""
    return isinstance(error, DialError) and isinstance(error.err, DNSError)


def _split_host_port(address: str) -> tuple[str, str]:
    if address.startswith("["):
        host, sep, rest = address[1:].partition("]")
        if not sep or not rest.startswith(":"):
            raise ValueError(f"address {address}: missing port in address")
        return host, rest[1:]
    host, sep, port = address.rpartition(":")
    if not sep:
        raise ValueError(f"address {address}: missing port in address")
    if ":" in host:
        raise ValueError(f"address {address}: too many colons in address")
    return host, port


def _join_host_port(host: str, port: object) -> str:
    return f"[{host}]:{port}" if ":" in host else f"{host}:{port}"


def _is_ip_literal(host: str) -> bool:
    try:
        ipaddress.ip_address(host)
    except ValueError:
        return False
    return True


def dial_tcp(address: str, timeout: float) -> tuple[socket.socket, LatencyInfo]:
    """Open a TCP connection to ``host:port``, timing lookup and connect.

    Returns the connected socket and the timings. On failure a DialError is
    raised whose ``latency`` holds the timings gathered so far.
    """
    latency = LatencyInfo()
    try:
        host, port = _split_host_port(address)
    except ValueError as err:
        raise DialError("dial", "tcp", err, latency=latency) from err

    deadline = time.monotonic() + timeout
    if _is_ip_literal(host):
        try:
            infos = socket.getaddrinfo(
                host, port, type=socket.SOCK_STREAM, flags=socket.AI_NUMERICHOST
            )
        except socket.gaierror as err:
            raise DialError("dial", "tcp", err, latency=latency) from err
    else:
        latency.dns_started()
        try:
            infos = socket.getaddrinfo(host or None, port, type=socket.SOCK_STREAM)
        except socket.gaierror as err:
            latency.dns_done()
            message = err.strerror or str(err)
            raise DialError("dial", "tcp", DNSError(message, host), latency=latency) from err
        latency.dns_done()

    last_error: BaseException = OSError("no addresses to dial")
    last_addr = ""
    for family, socktype, proto, _, sockaddr in infos:
        last_addr = _join_host_port(str(sockaddr[0]), sockaddr[1])
        remaining = deadline - time.monotonic()
        if remaining <= 0:
            last_error = TimeoutError("i/o timeout")
            break
        sock = socket.socket(family, socktype, proto)
        latency.connect_started()
        try:
            sock.settimeout(remaining)
            sock.connect(sockaddr)
        except OSError as err:
            latency.connect_done()
            sock.close()
            last_error = err
            continue
        latency.connect_done()
        sock.settimeout(timeout)
        return sock, latency
    raise DialError("dial", "tcp", last_error, addr=last_addr, latency=latency)