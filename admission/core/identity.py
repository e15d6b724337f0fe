"""Caller identity resolution for admission control.

Authentication itself happens upstream. This module only decides *which*
principal a request is counted against:

1. ``request.state.principal`` set by the authentication layer
2. an ``X-API-Key`` header matching one of the configured ``APP_API_KEYS``,
   hashed so raw keys never become counter keys
3. the client IP, for policies that accept anonymous callers

Unrecognised API keys are ignored rather than trusted: a caller must not be
able to mint a fresh counter by inventing a key.
"""

from __future__ import annotations

import hashlib
import logging

from fastapi import Request

from admission.core.config import settings
from admission.core.errors import AuthenticationAppError
from admission.core.policies import Policy

logger = logging.getLogger(__name__)

_SINGLE_HOP_HEADERS = ("x-real-ip", "cf-connecting-ip")


def hash_identifier(value: str) -> str:
    """Hash an identifier for logging without exposing it."""
    return hashlib.sha256(value.encode()).hexdigest()[:16]


def parse_api_keys(keys_string: str | None) -> set[str]:
    """Parse comma-separated API keys into a set.

    Examples:
        >>> parse_api_keys("key1, key2 , key3 ")
        {'key1', 'key2', 'key3'}
        >>> parse_api_keys(None)
        set()
    """
    if not keys_string:
        return set()
    return {key.strip() for key in keys_string.split(",") if key.strip()}


def _forwarded_client(value: str) -> str | None:
    """Pick the client address appended by the outermost trusted proxy.

    Each trusted proxy appends the address it received the request from, so
    with N trusted proxies the client is the Nth hop from the right. Hops to
    the left of it were supplied by the caller and are not trusted.
    """
    hops = [hop.strip() for hop in value.split(",") if hop.strip()]
    if not hops:
        return None
    return hops[max(0, len(hops) - settings.app.trusted_proxy_count)]


def client_ip(request: Request) -> str:
    """Best-effort client address.

    Proxy headers are only honoured when ``APP_TRUST_FORWARDED_HEADERS`` is
    enabled; otherwise the socket peer is used.
    """
    if settings.app.trust_forwarded_headers:
        forwarded = request.headers.get("x-forwarded-for")
        if forwarded:
            address = _forwarded_client(forwarded)
            if address:
                return address
        for header in _SINGLE_HOP_HEADERS:
            value = request.headers.get(header, "").strip()
            if value:
                return value

    if request.client and request.client.host:
        return request.client.host
    return "unknown"


def _principal(request: Request) -> str | None:
    principal = getattr(request.state, "principal", None)
    if principal:
        return f"user:{principal}"

    api_key = request.headers.get("x-api-key")
    if not api_key:
        return None

    key_hash = hash_identifier(api_key)
    if api_key not in parse_api_keys(settings.app.api_keys):
        logger.warning(
            "admission.api_key_rejected",
            extra={"api_key_hash": key_hash, "request_path": request.url.path},
        )
        return None
    return f"key:{key_hash}"


def resolve_identity(request: Request, policy: Policy) -> str:
    """Return the identifier the request is counted against.

    Args:
        request: Incoming request.
        policy: Policy of the route being admitted.

    Returns:
        ``user:<id>``, ``key:<hash>`` or ``ip:<address>``.

    Raises:
        AuthenticationAppError: If the policy requires a principal and the
            request carries none (an unrecognised API key counts as none).
    """
    principal = _principal(request)
    if principal:
        return principal

    if policy.requires_principal:
        logger.warning(
            "admission.principal_missing",
            extra={"scope": policy.scope_name, "request_path": request.url.path},
        )
        raise AuthenticationAppError(
            code="principal_required",
            message="Authentication required",
            details={"scope": policy.scope_name, "hint": "Provide a valid X-API-Key"},
        )

    return f"ip:{client_ip(request)}"
