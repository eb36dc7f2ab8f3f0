"""
HTTP calls to remote generators, with provider failures mapped to GenerationError.

No retries happen here. A failed call fails the stage.
"""

import logging

import httpx

from .errors import GenerationError

logger = logging.getLogger(__name__)


def error_kind_for_status(status_code: int) -> str:
    if status_code in (401, 403):
        return "auth"
    if status_code == 429:
        return "rate_limit"
    if 400 <= status_code < 500:
        return "validation"
    return "upstream"


_KIND_HINTS = {
    "auth": "authentication failed — the API key may be invalid or expired",
    "rate_limit": "rate limit exceeded — try again later",
    "validation": "rejected the request",
    "upstream": "returned a server error",
}


def raise_for_provider_status(response: httpx.Response, stage: str, provider: str) -> None:
    """Raise GenerationError for any non-2xx provider response."""
    if response.is_success:
        return

    code = response.status_code
    kind = error_kind_for_status(code)
    body = response.text[:300] if response.content else ""
    logger.error(f"{provider} API error ({stage}): {code} {body}")
    raise GenerationError(
        stage,
        f"{provider} API {_KIND_HINTS[kind]} ({code})" + (f": {body}" if body else ""),
        kind=kind,
        status_code=code,
    )


async def call_provider(
    client: httpx.AsyncClient,
    method: str,
    url: str,
    *,
    stage: str,
    provider: str,
    **kwargs,
) -> httpx.Response:
    """
    Issue one request and return the successful response.

    Transport failures become GenerationError(kind="timeout" | "network").
    """
    try:
        response = await client.request(method, url, **kwargs)
    except httpx.TimeoutException as e:
        raise GenerationError(stage, f"{provider} API timed out: {e}", kind="timeout", cause=e) from e
    except httpx.RequestError as e:
        raise GenerationError(stage, f"{provider} API unreachable: {e}", kind="network", cause=e) from e

    raise_for_provider_status(response, stage, provider)
    return response


def require_api_key(api_key: str, stage: str, provider: str, env_var: str) -> str:
    api_key = (api_key or "").strip()
    if not api_key:
        raise GenerationError(
            stage,
            f"{provider} API key is missing. Please set {env_var} in your environment variables.",
            kind="auth",
        )
    return api_key


def json_body(response: httpx.Response, stage: str, provider: str):
    try:
        return response.json()
    except ValueError as e:
        raise GenerationError(stage, f"{provider} returned a non-JSON response", kind="malformed", cause=e) from e
