"""Client IP extraction for requests arriving through proxies."""

from __future__ import annotations

from starlette.requests import Request

_IPV4_MAPPED_PREFIX = "::ffff:"


def _first_forwarded(value: str) -> str:
    return value.split(",")[0].strip()


def get_client_ip(request: Request) -> str | None:
    """Best-effort client address for rate limiting.

    Precedence: ``X-Real-IP``, then the first hop of
    ``X-Vercel-Forwarded-For`` or ``X-Forwarded-For``, then the socket peer.
    IPv4-mapped IPv6 addresses are reduced to plain IPv4.

    Returns:
        The address, or None when it cannot be determined.
    """

    headers = request.headers
    client_ip = (headers.get("x-real-ip") or "").strip()

    if not client_ip:
        forwarded = headers.get("x-vercel-forwarded-for") or headers.get("x-forwarded-for")
        if forwarded:
            client_ip = _first_forwarded(forwarded)

    if not client_ip and request.client is not None:
        client_ip = request.client.host or ""

    if client_ip.lower().startswith(_IPV4_MAPPED_PREFIX):
        client_ip = client_ip[len(_IPV4_MAPPED_PREFIX):]

    return client_ip or None
