"""Shared security utilities: SSRF validation.

Every URL is checked here before any network access, and again at every
redirect hop. DNS answers are never cached so a rebinding host cannot flip
from public to private between check and fetch.
"""

import asyncio
import ipaddress
import logging
import socket
from dataclasses import dataclass
from urllib.parse import urlparse

logger = logging.getLogger(__name__)

ALLOWED_SCHEMES = ("http", "https")
LOCALHOST_NAMES = ("localhost", "localhost.localdomain")
# WHATWG forbidden domain code points, besides whitespace and controls
FORBIDDEN_HOST_CHARS = frozenset("#%/:<>?@[\\]^|")

# Private/reserved network ranges
PRIVATE_NETS = [
    ipaddress.ip_network("0.0.0.0/32"),  # unspecified
    ipaddress.ip_network("127.0.0.0/8"),
    ipaddress.ip_network("10.0.0.0/8"),
    ipaddress.ip_network("172.16.0.0/12"),
    ipaddress.ip_network("192.168.0.0/16"),
    ipaddress.ip_network("169.254.0.0/16"),  # link-local / cloud metadata
    ipaddress.ip_network("::/128"),
    ipaddress.ip_network("::1/128"),
    ipaddress.ip_network("fc00::/7"),  # unique local, includes fd00::/8
    ipaddress.ip_network("fe80::/10"),  # link-local
]

# Never echo the resolved address back to the caller
PRIVATE_ADDRESS_REASON = "Hostname resolves to a private/reserved IP address"


@dataclass(frozen=True)
class ValidationResult:
    """Outcome of a validation step; ``reason`` is set only when invalid."""

    valid: bool
    reason: str | None = None

    @classmethod
    def ok(cls) -> "ValidationResult":
        return cls(valid=True)

    @classmethod
    def reject(cls, reason: str) -> "ValidationResult":
        return cls(valid=False, reason=reason)


def _is_malformed_host(hostname: str, bracketed: bool) -> bool:
    """True for hosts a browser URL parser would refuse."""
    if bracketed:
        try:
            ipaddress.IPv6Address(hostname.split("%", 1)[0])
        except ValueError:
            return True
        return False
    return any(
        c in FORBIDDEN_HOST_CHARS or c.isspace() or ord(c) < 0x20 or ord(c) == 0x7F
        for c in hostname
    )


def validate_url(raw: str) -> ValidationResult:
    """Static, pre-network checks on a URL string.

    Checks in order: parseable, http/https scheme, no embedded credentials,
    non-empty hostname that is not a localhost name. No I/O.
    """
    try:
        parsed = urlparse(raw)
        # Accessing .port validates it
        parsed.port
    except (ValueError, TypeError, AttributeError):
        return ValidationResult.reject("Invalid URL format")
    if not parsed.scheme:
        return ValidationResult.reject("Invalid URL format")

    scheme = parsed.scheme.lower()
    if scheme not in ALLOWED_SCHEMES:
        return ValidationResult.reject(f"Disallowed protocol: {scheme}:")

    # user:pass@host is a common trick to confuse naive hostname checks
    if parsed.username or parsed.password or "@" in parsed.netloc:
        return ValidationResult.reject("URLs with credentials are not allowed")

    hostname = (parsed.hostname or "").rstrip(".")
    if not hostname:
        return ValidationResult.reject("Empty hostname")
    if _is_malformed_host(hostname, bracketed=parsed.netloc.startswith("[")):
        return ValidationResult.reject("Invalid URL format")
    if hostname in LOCALHOST_NAMES:
        return ValidationResult.reject("Localhost is not allowed")

    return ValidationResult.ok()


def is_private_ip(ip: str) -> bool:
    """Return True if ``ip`` is a private/reserved address literal.

    Malformed literals count as private. IPv6 zone suffixes are ignored and
    IPv4-mapped IPv6 addresses (``::ffff:a.b.c.d``) are classified by their
    embedded IPv4 address.
    """
    literal = ip.strip().split("%", 1)[0]
    try:
        addr = ipaddress.ip_address(literal)
    except ValueError:
        return True

    if isinstance(addr, ipaddress.IPv6Address) and addr.ipv4_mapped is not None:
        addr = addr.ipv4_mapped

    return any(addr in net for net in PRIVATE_NETS)


def _resolve_host(hostname: str) -> list[str]:
    """Blocking resolver call; returns every address in the answer."""
    infos = socket.getaddrinfo(hostname, None, proto=socket.IPPROTO_TCP)
    addresses: list[str] = []
    for info in infos:
        sockaddr = info[4]
        if sockaddr and sockaddr[0] and sockaddr[0] not in addresses:
            addresses.append(str(sockaddr[0]))
    return addresses


async def validate_resolved_ip(hostname: str) -> ValidationResult:
    """Resolve ``hostname`` now and reject it if any answer is private.

    Runs fresh on every call; nothing here caches DNS answers.
    """
    try:
        addresses = await asyncio.to_thread(_resolve_host, hostname)
    except (OSError, UnicodeError) as e:
        return ValidationResult.reject(f"DNS resolution failed: {e}")

    if not addresses:
        return ValidationResult.reject("DNS resolution failed: no addresses returned")

    for address in addresses:
        if is_private_ip(address):
            logger.warning(f"Blocked {hostname}: resolves to private address {address}")
            return ValidationResult.reject(PRIVATE_ADDRESS_REASON)

    return ValidationResult.ok()
