"""Periodic TCP checks of one endpoint and the status changes they cause."""

from __future__ import annotations

import logging
import re
import ssl
import threading
from datetime import datetime, timedelta
from typing import Callable, Protocol, Sequence

from .connectivity import (
    CONDITION_FALSE,
    CONDITION_TRUE,
    CONDITION_UNKNOWN,
    LOG_REASON_DNS_ERROR,
    LOG_REASON_DNS_RESOLVE,
    LOG_REASON_TCP_CONNECT,
    LOG_REASON_TCP_CONNECT_ERROR,
    REACHABLE,
    ZERO_TIME,
    CheckCondition,
    CheckStatus,
    ConnectivityCheck,
    LogEntry,
    OutageEntry,
    UpdateStatusFunc,
    add_failure_log_entry,
    add_success_log_entry,
    set_condition,
    update_status,
)
from .metrics import MetricsContext
from .trace import DialError, LatencyInfo, dial_tcp, is_dns_error
from .updates import UpdatesManager

log = logging.getLogger(__name__)

CHECK_PERIOD = timedelta(minutes=1)
CHECK_TIMEOUT = timedelta(seconds=10)
MAX_OUTAGE_LOGS = 5
MAX_OUTAGES = 20

_DESCRIPTION_PREFIX = re.compile(".*-to-")

GetCheckFunc = Callable[[], "ConnectivityCheck | None"]
# Returns (certificate file, key file) pairs to present during the TLS handshake.
CertificatesGetter = Callable[[], "Sequence[tuple[str, str]] | None"]


class _Recorder(Protocol):
    def eventf(self, reason: str, message_fmt: str, *args: object) -> None: ...

    def warningf(self, reason: str, message_fmt: str, *args: object) -> None: ...


class _CheckClient(Protocol):
    def get(self, name: str) -> ConnectivityCheck: ...

    def update_status(self, check: ConnectivityCheck) -> ConnectivityCheck: ...


def _host_of(address: str) -> str:
    if address.startswith("["):
        host, sep, rest = address[1:].partition("]")
        return host if sep and rest.startswith(":") else ""
    host, sep, _ = address.rpartition(":")
    if not sep or ":" in host:
        return ""
    return host


def _format_duration(duration: timedelta) -> str:
    """Format a duration as e.g. '1h2m3.5s', '1.5ms' or '0s'."""
    micros = duration // timedelta(microseconds=1)
    sign = "-" if micros < 0 else ""
    micros = abs(micros)
    if micros == 0:
        return "0s"
    if micros < 1000:
        return f"{sign}{micros}µs"
    if micros < 1_000_000:
        whole, frac = divmod(micros, 1000)
        frac_text = f".{frac:03d}".rstrip("0") if frac else ""
        return f"{sign}{whole}{frac_text}ms"
    secs, frac = divmod(micros, 1_000_000)
    text = f"{secs % 60}" + (f".{frac:06d}".rstrip("0") if frac else "") + "s"
    minutes = secs // 60
    if minutes:
        text = f"{minutes % 60}m{text}"
        hours = minutes // 60
        if hours:
            text = f"{hours}h{text}"
    return sign + text


def _format_rfc3339_nano(moment: datetime) -> str:
    text = moment.strftime("%Y-%m-%dT%H:%M:%S")
    if moment.microsecond:
        text += f".{moment.microsecond:06d}".rstrip("0")
    offset = moment.utcoffset()
    if offset is None or offset == timedelta(0):
        return text + "Z"
    sign = "+" if offset >= timedelta(0) else "-"
    minutes = abs(int(offset.total_seconds())) // 60
    return f"{text}{sign}{minutes // 60:02d}:{minutes % 60:02d}"


def manage_status_logs(
    check: ConnectivityCheck,
    check_error: BaseException | None,
    latency: LatencyInfo,
) -> tuple[list[UpdateStatusFunc], datetime]:
    """Status updates recording the outcome of one check, and when it started."""
    updates: list[UpdateStatusFunc] = []
    description = _DESCRIPTION_PREFIX.sub("", check.name)
    target = check.spec.target_endpoint
    host = _host_of(target)

    if is_dns_error(check_error):
        log.debug(
            "%7s | %-15s | %10s | Failure looking up host %s: %s",
            "Failure", "DNSError", _format_duration(latency.dns), host, check_error,
        )
        updates.append(
            add_failure_log_entry(
                LogEntry(
                    start=latency.dns_start,
                    success=False,
                    reason=LOG_REASON_DNS_ERROR,
                    message=f"{description}: failure looking up host {host}: {check_error}",
                    latency=latency.dns,
                )
            )
        )
        return updates, latency.dns_start

    overall_start = ZERO_TIME
    if latency.dns != timedelta(0):
        log.debug(
            "%7s | %-15s | %10s | Resolved host name %s successfully",
            "Success", "DNSResolve", _format_duration(latency.dns), host,
        )
        updates.append(
            add_success_log_entry(
                LogEntry(
                    start=latency.dns_start,
                    success=True,
                    reason=LOG_REASON_DNS_RESOLVE,
                    message=f"{description}: resolved host name {host} successfully",
                    latency=latency.dns,
                )
            )
        )
        overall_start = latency.dns_start
    if overall_start == ZERO_TIME:
        overall_start = latency.connect_start

    if check_error is not None:
        log.debug(
            "%7s | %-15s | %10s | Failed to establish a TCP connection to %s: %s",
            "Failure", "TCPConnectError", _format_duration(latency.connect), target, check_error,
        )
        updates.append(
            add_failure_log_entry(
                LogEntry(
                    start=latency.connect_start,
                    success=False,
                    reason=LOG_REASON_TCP_CONNECT_ERROR,
                    message=(
                        f"{description}: failed to establish a TCP connection to "
                        f"{target}: {check_error}"
                    ),
                    latency=latency.connect,
                )
            )
        )
        return updates, overall_start

    log.debug(
        "%7s | %-15s | %10s | TCP connection to %s succeeded",
        "Success", "TCPConnect", _format_duration(latency.connect), target,
    )
    updates.append(
        add_success_log_entry(
            LogEntry(
                start=latency.connect_start,
                success=True,
                reason=LOG_REASON_TCP_CONNECT,
                message=f"{description}: tcp connection to {target} succeeded",
                latency=latency.connect,
            )
        )
    )
    return updates, overall_start


def manage_status_outage(recorder: _Recorder) -> UpdateStatusFunc:
    """Return an update that opens, extends or closes outages from the latest log entries.

    It assumes at most one log entry was added since it last ran.
    """

    def update(status: CheckStatus) -> None:
        current = None
        if status.outages and status.outages[0].end == ZERO_TIME:
            current = status.outages[0]
        latest_failure = status.failures[0] if status.failures else LogEntry()
        latest_success = status.successes[0] if status.successes else LogEntry()

        if current is None and latest_failure.start > latest_success.start:
            new_outage = OutageEntry(
                start=latest_failure.start,
                start_logs=[latest_failure],
                end_logs=[latest_failure],
                message=(
                    "Connectivity outage detected at "
                    f"{_format_rfc3339_nano(latest_failure.start)}"
                ),
            )
            status.outages = [new_outage, *status.outages]
            recorder.warningf(
                "ConnectivityOutageDetected",
                "Connectivity outage detected: %s",
                latest_failure.message,
            )
        elif current is not None and latest_failure.start > latest_success.start:
            if not current.start_logs or (
                len(current.start_logs) < MAX_OUTAGE_LOGS
                and current.start_logs[0].message != latest_failure.message
            ):
                current.start_logs = [latest_failure, *current.start_logs]
            current.end_logs = [latest_failure, *current.end_logs][:MAX_OUTAGE_LOGS]
        elif current is not None and latest_success.start > latest_failure.start:
            current.end = latest_success.start
            outage_duration = _format_duration(current.end - current.start)
            current.end_logs = [latest_success, *current.end_logs][:MAX_OUTAGE_LOGS]
            current.message = f"Connectivity restored after {outage_duration}"
            recorder.eventf(
                "ConnectivityRestored",
                "Connectivity restored after %s: %s",
                outage_duration,
                latest_success.message,
            )

        if len(status.outages) > MAX_OUTAGES:
            status.outages = status.outages[:MAX_OUTAGES]

    return update


def manage_status_conditions(status: CheckStatus) -> None:
    """Set the Reachable condition from the latest outage and log entries."""
    condition = CheckCondition(type=REACHABLE, status=CONDITION_UNKNOWN)
    if not status.outages or status.outages[0].end != ZERO_TIME:
        latest_success = status.successes[0] if status.successes else LogEntry()
        condition.status = CONDITION_TRUE
        condition.reason = "TCPConnectSuccess"
        condition.message = latest_success.message
    else:
        latest_failure = status.failures[0] if status.failures else LogEntry()
        condition.status = CONDITION_FALSE
        condition.reason = latest_failure.reason
        condition.message = latest_failure.message
    set_condition(status.conditions, condition)


class ConnectionChecker:
    """Checks one connection periodically and records the results in its status."""

    def __init__(
        self,
        name: str,
        pod_name: str,
        pod_namespace: str,
        get_check: GetCheckFunc,
        client: _CheckClient,
        client_cert_getter: CertificatesGetter,
        recorder: _Recorder,
        *,
        check_period: timedelta = CHECK_PERIOD,
        check_timeout: timedelta = CHECK_TIMEOUT,
    ) -> None:
        self.name = name
        self.pod_name = pod_name
        self.check_period = check_period
        self.check_timeout = check_timeout
        self._get_check = get_check
        self._client = client
        self._client_cert_getter = client_cert_getter
        self._recorder = recorder
        self.updates = UpdatesManager(check_period, check_timeout, self._process_updates)
        self.metrics = MetricsContext(pod_namespace, name)
        self._stopped = threading.Event()

    def _process_updates(self, *updates: UpdateStatusFunc) -> None:
        update_status(self._client, self.name, *updates)

    def run(self) -> None:
        """Check the connection every period until stop() is called."""
        log.debug("Started connectivity check %s.", self.name)
        while not self._stopped.wait(self.check_period.total_seconds()):
            threading.Thread(target=self._check_once, daemon=True).start()
        log.debug("Stopped connectivity check %s.", self.name)

    def stop(self) -> None:
        """Push out ready status updates and stop the periodic checks."""
        self._update_status()
        self._stopped.set()

    def _check_once(self) -> None:
        check = self._get_check()
        if check is not None and check.spec.source_pod == self.pod_name and check.spec.target_endpoint:
            self.check_endpoint(check)
        self._update_status()

    def _update_status(self) -> None:
        # Updates that fail stay queued and are retried on the next call.
        try:
            self.updates.process(False)
        except Exception as err:  # noqa: BLE001 - status updates are best effort
            log.warning("Unable to update status of %s: %s", self.name, err)

    def check_endpoint(self, check: ConnectivityCheck) -> None:
        """Perform the check and queue the status changes that result."""
        latency, error = self._tcp_connect_latency(check.spec.target_endpoint)
        updates, timestamp = manage_status_logs(check, error, latency)
        if updates:
            updates.append(manage_status_outage(self._recorder))
            updates.append(manage_status_conditions)
        self.updates.add(timestamp, *updates)

    def _tls_context(self) -> ssl.SSLContext:
        context = ssl.SSLContext(ssl.PROTOCOL_TLS_CLIENT)
        context.check_hostname = False
        context.verify_mode = ssl.CERT_NONE
        for certfile, keyfile in self._client_cert_getter() or ():
            try:
                context.load_cert_chain(certfile, keyfile)
            except (OSError, ValueError) as err:
                log.debug("error loading tls client key pair: %s", err)
        return context

    def _tcp_connect_latency(self, address: str) -> tuple[LatencyInfo, BaseException | None]:
        log.debug("Check BEGIN: %s", address)
        try:
            try:
                sock, latency = dial_tcp(address, self.check_timeout.total_seconds())
            except DialError as err:
                self.metrics.update(address, err.latency, err)
                return err.latency, err

            # A TLS handshake keeps TLS endpoints from logging aborted connections.
            host = _host_of(address)
            try:
                tls_sock = self._tls_context().wrap_socket(sock, server_hostname=host or None)
            except (OSError, ValueError) as err:
                log.debug("%s: tls error ignored: %s", address, err)
                sock.close()
            else:
                tls_sock.close()
            self.metrics.update(address, latency, None)
            return latency, None
        finally:
            log.debug("Check END  : %s", address)