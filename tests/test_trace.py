import socket
from datetime import timedelta
from unittest import mock

import pytest

from netcheckop.connectivity import ZERO_TIME
from netcheckop.trace import DNSError, DialError, LatencyInfo, dial_tcp, is_dns_error


def test_connect_started_keeps_first_time():
    latency = LatencyInfo()
    latency.connect_started()
    first = latency.connect_start
    latency.connect_started()
    assert latency.connect_start == first
    assert first > ZERO_TIME


def test_done_measures_from_start():
    latency = LatencyInfo()
    latency.dns_started()
    latency.dns_done()
    latency.connect_started()
    latency.connect_done()
    assert latency.dns >= timedelta(0)
    assert latency.connect >= timedelta(0)
    assert latency.connect_start >= latency.dns_start


def test_dial_error_messages():
    plain = DialError("connect", "tcp", RuntimeError("test error"))
    dns = DialError("connect", "tcp", DNSError("test error", "host"))
    assert str(plain) == "connect tcp: test error"
    assert str(dns) == "connect tcp: lookup host: test error"


def test_is_dns_error():
    assert is_dns_error(DialError("connect", "tcp", DNSError("test error", "host")))
    assert not is_dns_error(DialError("connect", "tcp", RuntimeError("test error")))
    assert not is_dns_error(DNSError("test error", "host"))
    assert not is_dns_error(None)


def test_dial_ip_literal_skips_dns():
    with socket.create_server(("127.0.0.1", 0)) as server:
        port = server.getsockname()[1]
        sock, latency = dial_tcp(f"127.0.0.1:{port}", 5)
        sock.close()
    assert latency.dns == timedelta(0)
    assert latency.dns_start == ZERO_TIME
    assert latency.connect_start > ZERO_TIME
    assert latency.connect >= timedelta(0)


def test_dial_refused_is_not_dns_error():
    with socket.create_server(("127.0.0.1", 0)) as server:
        port = server.getsockname()[1]
    with pytest.raises(DialError) as info:
        dial_tcp(f"127.0.0.1:{port}", 5)
    assert not is_dns_error(info.value)
    assert info.value.latency.connect_start > ZERO_TIME


def test_dial_lookup_failure_is_dns_error():
    failure = socket.gaierror(socket.EAI_NONAME, "Name or service not known")
    with mock.patch("socket.getaddrinfo", side_effect=failure):
        with pytest.raises(DialError) as info:
            dial_tcp("example.invalid:80", 1)
    assert is_dns_error(info.value)
    assert info.value.err.name == "example.invalid"
    assert info.value.latency.dns_start > ZERO_TIME
    assert info.value.latency.connect_start == ZERO_TIME


def test_dial_missing_port():
    with pytest.raises(DialError, match="missing port"):
        dial_tcp("localhost", 1)