"""Request helpers for client identification and metrics access control."""

from __future__ import annotations

import hmac
from ipaddress import ip_address
from typing import Optional

from fastapi import HTTPException, Request, status


def client_address(request: Request, real_ip_header: str = "X-Real-IP") -> str:
    """Return the client address reported by the fronting proxy, else the socket peer.

    The peer is rendered as ``host:port`` when the server exposes a port.
    """
    forwarded = request.headers.get(real_ip_header)
    if forwarded:
        return forwarded
    client = request.client
    if client is None:
        return ""
    if client.port:
        return f"{client.host}:{client.port}"
    return client.host


def require_metrics_access(request: Request, token: Optional[str]) -> None:
    """Allow the bearer ``token`` when configured, otherwise loopback clients only."""
    if token:
        expected = f"Bearer {token}"
        auth_header = request.headers.get("authorization")
        if not auth_header or not hmac.compare_digest(auth_header, expected):
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid metrics token")
        return

    client_host = request.client.host if request.client else None
    if not client_host:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Metrics access denied")
    try:
        loopback = ip_address(client_host).is_loopback
    except ValueError:
        loopback = client_host == "localhost"
    if not loopback:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Metrics access restricted to localhost")
