"""Templates for connectivity checks named '$(SOURCE)-to-$(TARGET)'."""

from __future__ import annotations

from typing import Callable

from .connectivity import CheckSpec, ConnectivityCheck

TEMPLATE_NAME = "$(SOURCE)-to-$(TARGET)"

CheckOption = Callable[[ConnectivityCheck], None]


def new_check_template(address: str, namespace: str, *options: CheckOption) -> ConnectivityCheck:
    """Build a check of ``address`` whose name still holds the source and target tokens."""
    check = ConnectivityCheck(
        name=TEMPLATE_NAME,
        namespace=namespace,
        spec=CheckSpec(target_endpoint=address),
    )
    for option in options:
        option(check)
    return check


def with_tls_client_cert(secret_name: str) -> CheckOption:
    """Name the secret holding the client certificate used by the check."""

    def option(check: ConnectivityCheck) -> None:
        if secret_name:
            check.spec.tls_client_cert = secret_name

    return option


def with_source(source: str) -> CheckOption:
    """Replace the $(SOURCE) token in the check name."""

    def option(check: ConnectivityCheck) -> None:
        check.name = check.name.replace("$(SOURCE)", source)

    return option


def with_target(target: str) -> CheckOption:
    """Replace the $(TARGET) token in the check name."""

    def option(check: ConnectivityCheck) -> None:
        check.name = check.name.replace("$(TARGET)", target)

    return option