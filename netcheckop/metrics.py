"""Counters and gauges describing the results of connectivity checks."""

from __future__ import annotations

import threading
from dataclasses import dataclass
from datetime import timedelta
from typing import Mapping

from .trace import LatencyInfo, is_dns_error


class _MetricVec:
    def __init__(self, name: str, description: str, label_names: list[str]) -> None:
        self.name = name
        self.description = description
        self.label_names = tuple(label_names)
        self._lock = threading.Lock()
        self._values: dict[tuple[str, ...], float] = {}

    def _key(self, labels: Mapping[str, str]) -> tuple[str, ...]:
        if set(labels) != set(self.label_names):
            raise ValueError(
                f"{self.name}: expected labels {sorted(self.label_names)}, got {sorted(labels)}"
            )
        return tuple(labels[name] for name in self.label_names)


class CounterVec(_MetricVec):
    """Monotonic counters, one per combination of label values."""

    def inc(self, labels: Mapping[str, str]) -> None:
        key = self._key(labels)
        with self._lock:
            self._values[key] = self._values.get(key, 0.0) + 1.0

    def value(self, labels: Mapping[str, str]) -> float:
        key = self._key(labels)
        with self._lock:
            return self._values.get(key, 0.0)


class GaugeVec(_MetricVec):
    """Gauges, one per combination of label values."""

    def set(self, labels: Mapping[str, str], value: float) -> None:
        key = self._key(labels)
        with self._lock:
            self._values[key] = float(value)

    def value(self, labels: Mapping[str, str]) -> float | None:
        """The gauge's value, or None if it was never set."""
        key = self._key(labels)
        with self._lock:
            return self._values.get(key)


@dataclass(frozen=True)
class ConnectivityMetrics:
    endpoint_check_counter: CounterVec
    tcp_connect_latency_gauge: GaugeVec
    dns_resolve_latency_gauge: GaugeVec


_registry_lock = threading.Lock()
_registered: ConnectivityMetrics | None = None


def register_metrics() -> ConnectivityMetrics:
    """Create the process-wide connectivity metrics once and return them."""
    global _registered
    with _registry_lock:
        if _registered is None:
            _registered = ConnectivityMetrics(
                endpoint_check_counter=CounterVec(
                    "pod_network_connectivity_check_count",
                    "Report status of pod network connectivity checks over time.",
                    ["component", "checkName", "targetEndpoint", "tcpConnect", "dnsResolve"],
                ),
                tcp_connect_latency_gauge=GaugeVec(
                    "pod_network_connectivity_check_tcp_connect_latency_gauge",
                    "Report latency of TCP connect to target endpoint over time.",
                    ["component", "checkName", "targetEndpoint"],
                ),
                dns_resolve_latency_gauge=GaugeVec(
                    "pod_network_connectivity_check_dns_resolve_latency_gauge",
                    "Report latency of DNS resolve of target endpoint over time.",
                    ["component", "checkName", "targetEndpoint"],
                ),
            )
        return _registered


def _nanoseconds(duration: timedelta) -> int:
    return (duration // timedelta(microseconds=1)) * 1000


class MetricsContext:
    """Updates the connectivity metrics for one named check."""

    def __init__(self, component_name: str, check_name: str) -> None:
        self.metrics = register_metrics()
        self.component_name = component_name
        self.check_name = check_name

    def update(
        self,
        target_endpoint: str,
        latency: LatencyInfo,
        check_error: BaseException | None,
    ) -> None:
        """Count the check's outcome and record its latencies."""
        self.metrics.endpoint_check_counter.inc(
            self.counter_labels(target_endpoint, latency, check_error)
        )
        if latency.connect > timedelta(0):
            self.metrics.tcp_connect_latency_gauge.set(
                self._labels(target_endpoint), float(_nanoseconds(latency.connect))
            )
        if latency.dns > timedelta(0):
            self.metrics.dns_resolve_latency_gauge.set(
                self._labels(target_endpoint), float(_nanoseconds(latency.dns))
            )

    def counter_labels(
        self,
        target_endpoint: str,
        latency: LatencyInfo,
        check_error: BaseException | None,
    ) -> dict[str, str]:
        """Labels of the counter sample describing the check's outcome."""
        labels = self._labels(target_endpoint)
        labels["dnsResolve"] = ""
        labels["tcpConnect"] = ""
        if is_dns_error(check_error):
            labels["dnsResolve"] = "failure"
            return labels
        if latency.dns != timedelta(0):
            labels["dnsResolve"] = "success"
        labels["tcpConnect"] = "failure" if check_error is not None else "success"
        return labels

    def _labels(self, target_endpoint: str) -> dict[str, str]:
        return {
            "component": self.component_name,
            "checkName": self.check_name,
            "targetEndpoint": target_endpoint,
        }