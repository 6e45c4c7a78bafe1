from typing import Any, Mapping

import httpx
import structlog

from usageprobe.errors import (
    AuthenticationError,
    FetchTimeoutError,
    MalformedResponseError,
    NetworkError,
    ServerError,
)

logger = structlog.get_logger()


def raise_for_status(
    resp: "httpx.Response",
    provider: "str",
    auth_hint: "str" = "",
) -> "None":
    """
    2xx passes; 401/403 are authentication failures; any other status
    is a server error carrying the code and body.
    """
    if 200 <= resp.status_code < 300:
        return
    if resp.status_code in (401, 403):
        message = f"{provider} rejected the credentials (HTTP {resp.status_code})."
        detail = resp.text.strip()
        if detail:
            message = f"{message} {detail[:200]}"
        if auth_hint:
            message = f"{message} {auth_hint}"
        raise AuthenticationError(message)
    raise ServerError(resp.status_code, resp.text)


async def _request_json(
    client: "httpx.AsyncClient",
    method: "str",
    url: "str",
    provider: "str",
    headers: "Mapping[str, str] | None" = None,
    body: "Any" = None,
    auth_hint: "str" = "",
) -> "Any":
    logger.debug("http_fetch", provider=provider, method=method, url=url)
    try:
        resp = await client.request(method, url, headers=headers, json=body)
    except httpx.TimeoutException as e:
        raise FetchTimeoutError(f"{provider} request timed out: {url}") from e
    except httpx.TransportError as e:
        raise NetworkError(f"{provider} network error: {e}") from e

    raise_for_status(resp, provider, auth_hint)
    try:
        return resp.json()
    except ValueError as e:
        raise MalformedResponseError(f"{provider} returned invalid JSON from {url}") from e


async def get_json(
    client: "httpx.AsyncClient",
    url: "str",
    provider: "str",
    headers: "Mapping[str, str] | None" = None,
    auth_hint: "str" = "",
) -> "Any":
    """
    GETs url and returns the decoded JSON body, mapping every failure
    to a UsageError. Timeouts are not retried.
    """
    return await _request_json(client, "GET", url, provider, headers, auth_hint=auth_hint)


async def post_json(
    client: "httpx.AsyncClient",
    url: "str",
    provider: "str",
    body: "Any",
    headers: "Mapping[str, str] | None" = None,
    auth_hint: "str" = "",
) -> "Any":
    """
    same as get_json, POSTing body as JSON.
    """
    return await _request_json(client, "POST", url, provider, headers, body, auth_hint)
