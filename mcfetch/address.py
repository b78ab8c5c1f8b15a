from __future__ import annotations

import ipaddress
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, Tuple

import dns.asyncresolver
import dns.exception

from .errors import ValidationError

logger = logging.getLogger(__name__)

DEFAULT_PORT = 25565
SRV_SERVICE = "_minecraft._tcp"

SrvLookup = Callable[[str], Awaitable[Optional[Tuple[str, int]]]]


@dataclass(frozen=True)
class ResolvedServerAddress:
    """Where to connect, and what to present in the handshake.

    The original pair is always what the user typed (or the default port);
    an SRV record only changes the connect pair.
    """

    connect_host: str
    connect_port: int
    original_host: str
    original_port: int


def _parse_port(value: str, text: str) -> int:
    if not value.isdigit():
        raise ValidationError(f"Invalid port in server address '{text}'.")
    port = int(value)
    if not 0 < port < 65536:
        raise ValidationError(f"Port out of range in server address '{text}'.")
    return port


def parse_address(text: str) -> Tuple[str, Optional[int]]:
    value = text.strip()
    if not value:
        raise ValidationError("Server address must not be empty.")

    if value.startswith("["):
        end = value.find("]")
        if end < 0:
            raise ValidationError(f"Unterminated IPv6 literal in '{text}'.")
        host, rest = value[1:end], value[end + 1:]
        if not rest:
            return host, None
        if not rest.startswith(":"):
            raise ValidationError(f"Unexpected text after IPv6 literal in '{text}'.")
        return host, _parse_port(rest[1:], text)

    if value.count(":") == 1:
        host, port = value.split(":")
        if not host:
            raise ValidationError(f"Missing host in server address '{text}'.")
        return host, _parse_port(port, text)

    # Bare IPv6 literal, or a host without a port.
    return value, None


def is_ip_literal(host: str) -> bool:
    try:
        ipaddress.ip_address(host)
    except ValueError:
        return False
    return True


async def resolve_server_address(text: str, srv_lookup: Optional[SrvLookup] = None) -> ResolvedServerAddress:
    host, port = parse_address(text)
    if port is not None or is_ip_literal(host) or srv_lookup is None:
        port = port or DEFAULT_PORT
        return ResolvedServerAddress(host, port, host, port)

    record = await srv_lookup(f"{SRV_SERVICE}.{host}")
    if record is None:
        return ResolvedServerAddress(host, DEFAULT_PORT, host, DEFAULT_PORT)

    target, target_port = record
    logger.debug("SRV %s -> %s:%d", host, target, target_port)
    return ResolvedServerAddress(target, target_port, host, DEFAULT_PORT)


async def dns_srv_lookup(name: str, timeout: float = 5.0) -> Optional[Tuple[str, int]]:
    try:
        answer = await dns.asyncresolver.resolve(name, "SRV", lifetime=timeout)
    except dns.exception.DNSException as exc:
        logger.debug("No SRV record for %s: %s", name, exc)
        return None

    records = sorted(answer, key=lambda record: (record.priority, -record.weight))
    if not records:
        return None
    best = records[0]
    return best.target.to_text().rstrip("."), int(best.port)
