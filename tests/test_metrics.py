from datetime import timedelta

import pytest

from netcheckop.metrics import CounterVec, GaugeVec, MetricsContext, register_metrics
from netcheckop.trace import DialError, DNSError, LatencyInfo


def test_register_metrics_is_idempotent():
    first = register_metrics()
    assert register_metrics() is first
    assert first.endpoint_check_counter.name == "pod_network_connectivity_check_count"
    assert (
        first.tcp_connect_latency_gauge.name
        == "pod_network_connectivity_check_tcp_connect_latency_gauge"
    )


def test_counter_labels_success_with_dns():
    ctx = MetricsContext("ns", "labels-success")
    latency = LatencyInfo(dns=timedelta(milliseconds=1), connect=timedelta(milliseconds=1))
    labels = ctx.counter_labels("host:443", latency, None)
    assert labels == {
        "component": "ns",
        "checkName": "labels-success",
        "targetEndpoint": "host:443",
        "dnsResolve": "success",
        "tcpConnect": "success",
    }


def test_counter_labels_dns_failure():
    ctx = MetricsContext("ns", "labels-dns")
    error = DialError("connect", "tcp", DNSError("test error", "host"))
    labels = ctx.counter_labels("host:443", LatencyInfo(dns=timedelta(1)), error)
    assert (labels["dnsResolve"], labels["tcpConnect"]) == ("failure", "")


def test_counter_labels_tcp_failure_without_dns():
    ctx = MetricsContext("ns", "labels-tcp")
    error = DialError("connect", "tcp", OSError("refused"))
    labels = ctx.counter_labels("10.0.0.1:443", LatencyInfo(), error)
    assert (labels["dnsResolve"], labels["tcpConnect"]) == ("", "failure")


def test_update_counts_and_sets_gauges():
    ctx = MetricsContext("ns", "update-check")
    latency = LatencyInfo(connect=timedelta(milliseconds=1))
    labels = ctx.counter_labels("h:1", latency, None)
    before = ctx.metrics.endpoint_check_counter.value(labels)
    ctx.update("h:1", latency, None)
    ctx.update("h:1", latency, None)
    assert ctx.metrics.endpoint_check_counter.value(labels) == before + 2
    gauge_labels = {"component": "ns", "checkName": "update-check", "targetEndpoint": "h:1"}
    assert ctx.metrics.tcp_connect_latency_gauge.value(gauge_labels) == 1_000_000.0
    assert ctx.metrics.dns_resolve_latency_gauge.value(gauge_labels) is None


def test_vec_rejects_wrong_labels():
    counter = CounterVec("c", "a counter", ["a", "b"])
    gauge = GaugeVec("g", "a gauge", ["a"])
    with pytest.raises(ValueError):
        counter.inc({"a": "x"})
    with pytest.raises(ValueError):
        gauge.set({"b": "x"}, 1.0)


def test_vec_values_are_per_label_set():
    counter = CounterVec("c", "a counter", ["a"])
    counter.inc({"a": "x"})
    assert counter.value({"a": "x"}) == 1.0
    assert counter.value({"a": "y"}) == 0.0
    gauge = GaugeVec("g", "a gauge", ["a"])
    gauge.set({"a": "x"}, 2.5)
    assert gauge.value({"a": "x"}) == 2.5