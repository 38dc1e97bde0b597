"""Rate limit key derivation.

Maps the identifying attributes of a request to a stable, namespaced key.
Derivation is pure and total: when a request carries nothing usable the key
falls back to a configured default identity instead of failing.

Key shapes (with the default prefix):
    gatekeeper_ip:203.0.113.7
    gatekeeper_api_key:9f86d081884c7d65
    gatekeeper_principal:user-42
    gatekeeper_ip:203.0.113.7|/v1/ping      (scope_by_route=True)
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from gatekeeper.core.logging import hash_identifier


class KeySource(str, Enum):
    """Request attribute a KeyMaker identifies callers by."""

    HOSTNAME = "hostname"
    API_KEY = "api_key"
    PRINCIPAL = "principal"


@dataclass(frozen=True)
class RequestContext:
    """Transport-agnostic view of the request attributes used for keys."""

    remote_address: str | None = None
    forwarded_for: str | None = None
    api_key: str | None = None
    principal: str | None = None
    route: str | None = None


def _first_forwarded_address(forwarded_for: str | None) -> str | None:
    """Return the client entry of an X-Forwarded-For header, if any."""
    if not forwarded_for:
        return None
    first = forwarded_for.split(",", 1)[0].strip()
    return first or None


class KeyMaker:
    """Derives rate limit keys from a RequestContext.

    Attributes:
        source: Preferred identifying attribute.
        prefix: Namespace prepended to every key.
        trust_forwarded_for: Prefer X-Forwarded-For over the socket address.
        scope_by_route: Append the route so routes keep separate counters.
        default_identity: Identity used when nothing else is available.
    """

    def __init__(
        self,
        *,
        source: KeySource | str = KeySource.HOSTNAME,
        prefix: str = "gatekeeper_",
        trust_forwarded_for: bool = True,
        scope_by_route: bool = False,
        default_identity: str = "unknown",
    ) -> None:
        self.source = KeySource(source)
        self.prefix = prefix
        self.trust_forwarded_for = trust_forwarded_for
        self.scope_by_route = scope_by_route
        self.default_identity = default_identity or "unknown"

    def __repr__(self) -> str:  # pragma: no cover - representation only
        return (
            f"KeyMaker(source={self.source.value!r}, prefix={self.prefix!r}, "
            f"trust_forwarded_for={self.trust_forwarded_for}, scope_by_route={self.scope_by_route})"
        )

    def hostname(self, context: RequestContext) -> str:
        """Resolve the caller hostname, falling back to the default identity."""

        if self.trust_forwarded_for:
            forwarded = _first_forwarded_address(context.forwarded_for)
            if forwarded:
                return forwarded
        return context.remote_address or self.default_identity

    def identity(self, context: RequestContext) -> str:
        """Return the typed identity (``ip:...``, ``api_key:...``) for a request."""

        if self.source is KeySource.API_KEY and context.api_key:
            # Never let a raw secret reach the store
            return f"api_key:{hash_identifier(context.api_key)}"
        if self.source is KeySource.PRINCIPAL and context.principal:
            return f"principal:{context.principal}"
        return f"ip:{self.hostname(context)}"

    def derive(self, context: RequestContext) -> str:
        """Map a request context to its rate limit key. Never raises."""

        key = f"{self.prefix}{self.identity(context)}"
        if self.scope_by_route and context.route:
            key = f"{key}|{context.route}"
        return key
