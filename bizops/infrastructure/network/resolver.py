"""
Startup DNS workaround for the database host.

Some hosting networks advertise IPv6 routes they can't actually reach,
so connecting to a dual-stack database hostname fails intermittently.
Before anything opens a database connection we:

1. Make every getaddrinfo() lookup in this process return IPv4 first.
2. Resolve the DATABASE_URL hostname to an IPv4 address once and write
   the literal back into the environment.

libpq does its own DNS lookups outside Python's socket module, which is
why step 2 exists on top of step 1.

Nothing here is fatal. A failed lookup is logged and the original
hostname is kept.
"""

import asyncio
import logging
import os
import re
import socket
from dataclasses import dataclass, replace
from typing import Awaitable, Callable, MutableMapping, Optional, Union
from urllib.parse import urlsplit, urlunsplit

logger = logging.getLogger(__name__)

DATABASE_URL_ENV = "DATABASE_URL"

_IPV4_LITERAL = re.compile(r"^(\d{1,3}\.){3}\d{1,3}$")

# Original getaddrinfo, kept so prefer_ipv4() wraps it exactly once
_system_getaddrinfo: Optional[Callable] = None


# ---------------------------------------------------------------------------
# Address family preference
# ---------------------------------------------------------------------------

def _ipv4_first_getaddrinfo(*args, **kwargs):
    results = _system_getaddrinfo(*args, **kwargs)
    # sorted() is stable, so resolver order is kept within each family
    return sorted(results, key=lambda info: info[0] != socket.AF_INET)


def prefer_ipv4() -> bool:
    """
    Make IPv4 results come first for every lookup in this process.

    Installed once and never removed. Returns False if the preference
    was already in place.
    """
    global _system_getaddrinfo

    if _system_getaddrinfo is not None:
        return False

    _system_getaddrinfo = socket.getaddrinfo
    socket.getaddrinfo = _ipv4_first_getaddrinfo
    logger.info("DNS result order set to ipv4first")
    return True


# ---------------------------------------------------------------------------
# Connection descriptor
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ConnectionDescriptor:
    """
    A database URL split into its parts.

    Only the hostname is ever changed. Everything else is kept as the
    raw text it was parsed from so to_url() reproduces it exactly,
    including percent-escapes in credentials.
    """
    scheme: str
    userinfo: str
    hostname: str
    port: str
    path: str
    query: str
    fragment: str

    @classmethod
    def from_url(cls, url: str) -> "ConnectionDescriptor":
        """Parse a connection URL. Raises ValueError if there's no hostname."""
        parts = urlsplit(url)
        if not parts.scheme or not parts.netloc:
            raise ValueError("connection string is not a URL")

        netloc = parts.netloc
        userinfo, _, hostport = netloc.rpartition("@")

        if hostport.startswith("["):
            # IPv6 literal: [::1]:5432
            bracket_end = hostport.find("]")
            if bracket_end == -1:
                raise ValueError("unterminated IPv6 literal in host")
            hostname = hostport[1:bracket_end]
            port = hostport[bracket_end + 2:] if hostport[bracket_end + 1:].startswith(":") else ""
        else:
            hostname, _, port = hostport.partition(":")

        if not hostname:
            raise ValueError("connection string has no hostname")

        return cls(
            scheme=parts.scheme,
            userinfo=userinfo,
            hostname=hostname,
            port=port,
            path=parts.path,
            query=parts.query,
            fragment=parts.fragment,
        )

    def with_hostname(self, hostname: str) -> "ConnectionDescriptor":
        return replace(self, hostname=hostname)

    @property
    def netloc(self) -> str:
        host = f"[{self.hostname}]" if ":" in self.hostname else self.hostname
        if self.port:
            host = f"{host}:{self.port}"
        if self.userinfo:
            return f"{self.userinfo}@{host}"
        return host

    def to_url(self) -> str:
        return urlunsplit((self.scheme, self.netloc, self.path, self.query, self.fragment))


def is_ipv4_literal(hostname: str) -> bool:
    """True for dotted-decimal hosts like 10.0.0.5; those skip DNS entirely."""
    return bool(_IPV4_LITERAL.match(hostname))


# ---------------------------------------------------------------------------
# Resolution
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ResolvedHost:
    hostname: str
    address: str


@dataclass(frozen=True)
class ResolutionFailure:
    hostname: str
    reason: str


ResolutionResult = Union[ResolvedHost, ResolutionFailure]

# Async callable returning A-record addresses in resolver order
Resolver = Callable[[str], Awaitable[list[str]]]


async def lookup_a_records(hostname: str) -> list[str]:
    """Ask the system resolver for IPv4 addresses, keeping its order."""
    loop = asyncio.get_running_loop()
    infos = await loop.getaddrinfo(
        hostname, None, family=socket.AF_INET, type=socket.SOCK_STREAM
    )

    addresses: list[str] = []
    for _family, _type, _proto, _canonname, sockaddr in infos:
        address = sockaddr[0]
        if address not in addresses:
            addresses.append(address)
    return addresses


async def resolve_ipv4(
    hostname: str,
    resolver: Optional[Resolver] = None,
) -> ResolutionResult:
    """
    Resolve hostname to its first IPv4 address.

    Never raises: lookup errors and empty answers come back as
    ResolutionFailure so the caller can carry on with the hostname.
    """
    lookup = resolver or lookup_a_records

    try:
        addresses = await lookup(hostname)
    except (OSError, UnicodeError) as e:
        return ResolutionFailure(hostname=hostname, reason=str(e) or e.__class__.__name__)

    if not addresses:
        return ResolutionFailure(hostname=hostname, reason="no IPv4 addresses returned")

    return ResolvedHost(hostname=hostname, address=addresses[0])


# ---------------------------------------------------------------------------
# Bootstrap
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class BootstrapOutcome:
    """
    What the bootstrap did to DATABASE_URL.

    status is one of: missing, unparseable, skipped_ip_literal,
    resolved, resolution_failed. Only "resolved" changes the URL.
    """
    status: str
    original_url: Optional[str] = None
    effective_url: Optional[str] = None
    detail: Optional[str] = None

    @property
    def rewritten(self) -> bool:
        return self.status == "resolved"


async def bootstrap_database_host(
    environ: Optional[MutableMapping[str, str]] = None,
    resolver: Optional[Resolver] = None,
) -> BootstrapOutcome:
    """
    Rewrite the DATABASE_URL hostname in environ to an IPv4 literal.

    Fails open: a missing or malformed URL and DNS errors are logged and
    the environment is left untouched.
    """
    env = os.environ if environ is None else environ
    url = env.get(DATABASE_URL_ENV)

    if not url:
        logger.warning("DATABASE_URL is not set; skipping host resolution")
        return BootstrapOutcome(status="missing")

    try:
        descriptor = ConnectionDescriptor.from_url(url)
    except ValueError as e:
        logger.error(
            "Could not parse DATABASE_URL; leaving it unchanged",
            extra={"error": str(e)}
        )
        return BootstrapOutcome(
            status="unparseable", original_url=url, effective_url=url, detail=str(e)
        )

    if is_ipv4_literal(descriptor.hostname):
        logger.debug(
            "Database host is already an IPv4 address",
            extra={"host": descriptor.hostname}
        )
        return BootstrapOutcome(status="skipped_ip_literal", original_url=url, effective_url=url)

    logger.info("Resolving database host", extra={"host": descriptor.hostname})
    result = await resolve_ipv4(descriptor.hostname, resolver=resolver)

    if isinstance(result, ResolutionFailure):
        logger.error(
            "DNS resolution failed; using original hostname",
            extra={"host": result.hostname, "error": result.reason}
        )
        return BootstrapOutcome(
            status="resolution_failed",
            original_url=url,
            effective_url=url,
            detail=result.reason,
        )

    rewritten = descriptor.with_hostname(result.address).to_url()
    env[DATABASE_URL_ENV] = rewritten

    logger.info(
        "Resolved database host to IPv4",
        extra={"host": result.hostname, "address": result.address}
    )
    return BootstrapOutcome(
        status="resolved",
        original_url=url,
        effective_url=rewritten,
        detail=result.address,
    )


def run_bootstrap(
    environ: Optional[MutableMapping[str, str]] = None,
    resolver: Optional[Resolver] = None,
) -> BootstrapOutcome:
    """
    Run the whole startup sequence synchronously.

    Must be called before the database engine or HTTP listener is
    created. Blocks until resolution has finished either way.
    """
    prefer_ipv4()
    return asyncio.run(bootstrap_database_host(environ=environ, resolver=resolver))
