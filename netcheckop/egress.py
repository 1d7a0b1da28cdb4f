"""Configuration helpers for the egress router."""

from __future__ import annotations

import ipaddress
import json
import logging
from dataclasses import dataclass
from typing import Iterable

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class L4RedirectRule:
    """Redirects traffic arriving on ``port``/``protocol`` to ``destination_ip``."""

    destination_ip: str
    port: int = 0
    protocol: str = ""
    target_port: int = 0


def _rule_config(rule: L4RedirectRule) -> str:
    if rule.port != 0 and rule.protocol:
        if rule.target_port != 0:
            return f"{rule.port} {rule.protocol} {rule.destination_ip} {rule.target_port}"
        return f"{rule.port} {rule.protocol} {rule.destination_ip}"
    return rule.destination_ip


def allowed_destinations_config_json(redirect_rules: Iterable[L4RedirectRule]) -> str:
    """Encode redirect rules as the compact JSON list the router plugin reads.

    Entries keep the field order the plugin expects: port, protocol,
    destination and target port.
    """
    text = json.dumps(
        [_rule_config(rule) for rule in redirect_rules],
        separators=(",", ":"),
        ensure_ascii=False,
    )
    for char, escaped in (
        ("<", "\\u003c"),
        (">", "\\u003e"),
        ("&", "\\u0026"),
        ("\u2028", "\\u2028"),
        ("\u2029", "\\u2029"),
    ):
        text = text.replace(char, escaped)
    return text


def is_valid_cidr(cidr: str) -> bool:
    """True for an address with a numeric prefix length, such as 10.0.0.5/24."""
    address, sep, prefix = cidr.partition("/")
    if not sep or not prefix.isdigit() or "%" in address:
        log.error("invalid CIDR address: %s", cidr)
        return False
    try:
        ipaddress.ip_interface(cidr)
    except ValueError:
        log.error("invalid CIDR address: %s", cidr)
        return False
    return True


def is_valid_ip_address(ip: str) -> bool:
    """True for a plain IPv4 or IPv6 address."""
    if "%" in ip:
        return False
    try:
        ipaddress.ip_address(ip)
    except ValueError:
        return False
    return True