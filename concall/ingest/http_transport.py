from __future__ import annotations

import ssl

import httpx

BROWSER_USER_AGENT = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/141.0.0.0 Safari/537.36"
)


def _tls12_context() -> ssl.SSLContext:
    ctx = ssl.create_default_context()
    ctx.minimum_version = ssl.TLSVersion.TLSv1_2
    return ctx


def build_http_client(
    *,
    timeout_s: float = 600.0,
    connect_timeout_s: float = 30.0,
    max_idle: int = 100,
    idle_timeout_s: float = 600.0,
) -> httpx.AsyncClient:
    """
    Shared outbound client for the feed and attachment host.

    - TLS 1.2 floor
    - keep-alive pool reused across requests
    - HTTP/1.1 only (the exchange CDN misbehaves on h2)
    """
    return httpx.AsyncClient(
        verify=_tls12_context(),
        http2=False,
        timeout=httpx.Timeout(timeout_s, connect=connect_timeout_s),
        limits=httpx.Limits(
            max_connections=max_idle,
            max_keepalive_connections=max_idle,
            keepalive_expiry=idle_timeout_s,
        ),
        headers={"user-agent": BROWSER_USER_AGENT},
        follow_redirects=True,
    )
