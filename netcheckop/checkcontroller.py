"""Runs one connection checker for each connectivity check of this pod."""

from __future__ import annotations

import logging
import os
import ssl
import tempfile
import threading
from pathlib import Path
from typing import Iterable, Mapping, Protocol

from .backoff import BackoffEventRecorder
from .checker import CertificatesGetter, ConnectionChecker, GetCheckFunc
from .connectivity import ConnectivityCheck

log = logging.getLogger(__name__)

# Data fields of a TLS secret: the certificate, then its private part.
TLS_DATA_FIELDS = ("tls.crt", "tls.key")


class _CheckLister(Protocol):
    def list(self) -> Iterable[ConnectivityCheck]: ...

    def get(self, name: str) -> ConnectivityCheck: ...


class _ChecksClient(Protocol):
    def update_status(self, check: ConnectivityCheck) -> ConnectivityCheck: ...


class _SecretLister(Protocol):
    def get(self, namespace: str, name: str) -> Mapping[str, bytes | str]: ...


class _Recorder(Protocol):
    def event(self, reason: str, message: str) -> None: ...

    def warning(self, reason: str, message: str) -> None: ...


def _as_bytes(value: bytes | str | None) -> bytes:
    if value is None:
        return b""
    return value.encode() if isinstance(value, str) else bytes(value)


def _write_file(path: Path, data: bytes) -> None:
    staging = path.with_name(path.name + ".tmp")
    staging.write_bytes(data)
    os.chmod(staging, 0o600)
    os.replace(staging, path)


class PodNetworkConnectivityCheckController:
    """Keeps a running ConnectionChecker for every check whose source is this pod.

    ``check_lister`` lists and gets the checks of the pod's namespace,
    ``checks_client`` stores status changes, and ``secret_lister`` looks up
    the secrets holding client certificates.
    """

    def __init__(
        self,
        pod_name: str,
        pod_namespace: str,
        checks_client: _ChecksClient,
        check_lister: _CheckLister,
        secret_lister: _SecretLister,
        recorder: _Recorder,
    ) -> None:
        self.pod_name = pod_name
        self.pod_namespace = pod_namespace
        self.recorder = BackoffEventRecorder(recorder)
        self.checkers: dict[str, ConnectionChecker] = {}
        self._checks_client = checks_client
        self._check_lister = check_lister
        self._secret_lister = secret_lister
        self._lock = threading.Lock()
        self._cert_dir = tempfile.TemporaryDirectory(prefix="netcheckop-certs-")

    def sync(self) -> None:
        """Start checkers for new checks of this pod and stop those no longer wanted."""
        checks = [
            check for check in self._check_lister.list() if check.spec.source_pod == self.pod_name
        ]
        wanted = {check.name for check in checks}
        with self._lock:
            for check in checks:
                if check.name in self.checkers:
                    continue
                checker = ConnectionChecker(
                    check.name,
                    self.pod_name,
                    self.pod_namespace,
                    self._check_getter(check.name),
                    self,
                    self.client_certs(check),
                    self.recorder,
                )
                self.checkers[check.name] = checker
                threading.Thread(
                    target=checker.run, name=f"check-{check.name}", daemon=True
                ).start()
            for name in [name for name in self.checkers if name not in wanted]:
                self.checkers.pop(name).stop()

    def _check_getter(self, name: str) -> GetCheckFunc:
        def get_check() -> ConnectivityCheck | None:
            try:
                return self._check_lister.get(name)
            except Exception:  # noqa: BLE001 - a missing check means nothing to do
                return None

        return get_check

    def client_certs(self, check: ConnectivityCheck) -> CertificatesGetter:
        """Return a getter for the check's client certificate and key files.

        The getter returns None when the check names no secret, or the secret
        cannot be read or does not hold a valid key pair.
        """
        secret_name = check.spec.tls_client_cert
        cert_field, private_field = TLS_DATA_FIELDS

        def get_certs() -> list[tuple[str, str]] | None:
            if not secret_name:
                return None
            try:
                data = self._secret_lister.get(self.pod_namespace, secret_name)
            except Exception as err:  # noqa: BLE001 - reported and treated as absent
                log.debug("secret/%s: %s", secret_name, err)
                return None
            directory = Path(self._cert_dir.name) / secret_name
            directory.mkdir(parents=True, exist_ok=True)
            cert_path = directory / cert_field
            private_path = directory / private_field
            try:
                _write_file(cert_path, _as_bytes(data.get(cert_field)))
                _write_file(private_path, _as_bytes(data.get(private_field)))
                ssl.SSLContext(ssl.PROTOCOL_TLS_CLIENT).load_cert_chain(
                    str(cert_path), str(private_path)
                )
            except (OSError, ValueError) as err:
                log.debug("error loading tls client key pair: %s", err)
                return None
            return [(str(cert_path), str(private_path))]

        return get_certs

    def get(self, name: str) -> ConnectivityCheck:
        """Look up a check of this pod's namespace by name."""
        return self._check_lister.get(name)

    def update_status(self, check: ConnectivityCheck) -> ConnectivityCheck:
        """Store the check's status."""
        return self._checks_client.update_status(check)