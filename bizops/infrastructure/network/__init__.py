"""
Network bootstrap helpers.

Runs once at process start, before the database pool exists.
"""

from .resolver import (
    BootstrapOutcome,
    ConnectionDescriptor,
    ResolutionFailure,
    ResolvedHost,
    bootstrap_database_host,
    is_ipv4_literal,
    prefer_ipv4,
    resolve_ipv4,
    run_bootstrap,
)

__all__ = [
    "BootstrapOutcome",
    "ConnectionDescriptor",
    "ResolutionFailure",
    "ResolvedHost",
    "bootstrap_database_host",
    "is_ipv4_literal",
    "prefer_ipv4",
    "resolve_ipv4",
    "run_bootstrap",
]
