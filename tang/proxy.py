"""Reverse proxy from QA host names to preview backends."""

import logging
import re
from typing import Mapping, Optional

import requests
from fastapi import Request
from fastapi.responses import Response
from fastapi.concurrency import run_in_threadpool

from .errors import BackendError
from .models import BackendKey
from .responses import backend_error
from .router import BackendRouter

logger = logging.getLogger(__name__)

PROXY_TIMEOUT = 300

# Headers that describe one connection, not the message.
HOP_BY_HOP = {
    "connection", "keep-alive", "proxy-authenticate", "proxy-authorization",
    "te", "trailers", "transfer-encoding", "upgrade",
}
# requests decodes bodies, so the original framing no longer applies.
RESPONSE_DROP = HOP_BY_HOP | {"content-encoding", "content-length"}


def qa_host_pattern(domain: str) -> re.Pattern:
    """Regex for `<ref>.<repository>.<domain>`, with an optional port."""
    return re.compile(
        r"^(?P<ref>[A-Za-z0-9_-]+)\.(?P<repository>[A-Za-z0-9_-]+)\."
        + re.escape(domain.lower())
        + r"(?::\d+)?$"
    )


def match_host(host: str, domain: str) -> Optional[BackendKey]:
    """Routing key for a QA host name, or None if `host` is not one."""
    if not host or not domain:
        return None
    match = qa_host_pattern(domain).match(host.lower())
    if match is None:
        return None
    return BackendKey(ref=match.group("ref"), repository=match.group("repository"))


def forward(
    base_url: str,
    method: str,
    path: str,
    query: str,
    headers: Mapping[str, str],
    body: bytes,
    client_host: Optional[str] = None,
) -> requests.Response:
    """Send one request to the backend at `base_url` and return its response."""
    url = base_url.rstrip("/") + path
    if query:
        url += "?" + query

    outgoing = {k: v for k, v in headers.items() if k.lower() not in HOP_BY_HOP | {"content-length"}}
    host = next((v for k, v in headers.items() if k.lower() == "host"), None)
    if host:
        outgoing["X-Forwarded-Host"] = host
    if client_host:
        outgoing["X-Forwarded-For"] = client_host

    return requests.request(
        method,
        url,
        headers=outgoing,
        data=body or None,
        allow_redirects=False,
        timeout=PROXY_TIMEOUT,
    )


def relay_headers(headers: Mapping[str, str]) -> dict[str, str]:
    return {k: v for k, v in headers.items() if k.lower() not in RESPONSE_DROP}


async def proxy_request(request: Request, router: BackendRouter, key: BackendKey) -> Response:
    """Resolve (starting if needed) the backend for `key` and forward `request` to it."""
    backend = await run_in_threadpool(router.resolve, key)
    try:
        await run_in_threadpool(backend.ready)
    except BackendError as e:
        logger.warning(f"Backend for {key} failed: {e}")
        return backend_error(str(e))

    body = await request.body()
    try:
        resp = await run_in_threadpool(
            forward,
            backend.url,
            request.method,
            request.url.path,
            request.url.query,
            dict(request.headers),
            body,
            request.client.host if request.client else None,
        )
    except requests.RequestException as e:
        logger.warning(f"Proxying to {backend!r} failed: {e}")
        return backend_error(f"Bad gateway: {e}", status_code=502)

    return Response(
        content=resp.content,
        status_code=resp.status_code,
        headers=relay_headers(resp.headers),
    )
