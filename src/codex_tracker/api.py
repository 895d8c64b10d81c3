"""OpenAI rate-limit ping client."""

import logging
import re
from collections.abc import Mapping
from datetime import datetime, timezone
from typing import Any

import requests

from codex_tracker.errors import HttpError, InvalidResponseError, NotConfiguredError, TransportError
from codex_tracker.models import UsageSnapshot

log = logging.getLogger(__name__)

RESPONSES_URL = "https://api.openai.com/v1/responses"
REQUEST_TIMEOUT = 30

# The smallest request that still comes back with real rate-limit headers.
PING_INPUT = "ping"
PING_MAX_OUTPUT_TOKENS = 1

HEADER_LIMIT_REQUESTS = "x-ratelimit-limit-requests"
HEADER_REMAINING_REQUESTS = "x-ratelimit-remaining-requests"
HEADER_RESET_REQUESTS = "x-ratelimit-reset-requests"
HEADER_LIMIT_TOKENS = "x-ratelimit-limit-tokens"
HEADER_REMAINING_TOKENS = "x-ratelimit-remaining-tokens"
HEADER_RESET_TOKENS = "x-ratelimit-reset-tokens"

_INTEGER = re.compile(r"[+-]?[0-9]+", re.ASCII)


def header_str(headers: Mapping[str, str], name: str) -> str | None:
    """Case-insensitive header lookup."""
    wanted = name.lower()
    for key, value in headers.items():
        if key.lower() == wanted:
            return str(value)
    return None


def header_int(headers: Mapping[str, str], name: str) -> int | None:
    value = header_str(headers, name)
    if value is None:
        return None
    value = value.strip()
    if not _INTEGER.fullmatch(value):
        return None
    return int(value)


def _int_field(data: Mapping[str, Any], key: str) -> int | None:
    value = data.get(key)
    if isinstance(value, bool) or not isinstance(value, int):
        return None
    return value


def usage_total(body: Any) -> int | None:
    """Token count of the ping itself, from the response's ``usage`` object.

    The field names depend on the model family, so three layouts are tried:
    ``total_tokens``, ``input_tokens + output_tokens`` and
    ``prompt_tokens + completion_tokens``.
    """
    if not isinstance(body, Mapping):
        return None
    usage = body.get("usage")
    if not isinstance(usage, Mapping):
        return None

    total = _int_field(usage, "total_tokens")
    if total is not None:
        return total
    for first, second in (("input_tokens", "output_tokens"), ("prompt_tokens", "completion_tokens")):
        a, b = _int_field(usage, first), _int_field(usage, second)
        if a is not None and b is not None:
            return a + b
    return None


class RemoteUsageClient:
    def __init__(self, url: str = RESPONSES_URL, timeout: float = REQUEST_TIMEOUT) -> None:
        self.url = url
        self.timeout = timeout

    def fetch(self, auth_token: str, model: str) -> UsageSnapshot:
        """Send one ping request and read the quota from its response.

        Raises:
            NotConfiguredError: ``auth_token`` is blank.
            TransportError: the request never got a response.
            InvalidResponseError: the response object is unusable.
            HttpError: the API answered with a non-2xx status.
        """
        if not auth_token.strip():
            raise NotConfiguredError("No OpenAI API key configured.")

        try:
            resp = requests.post(
                self.url,
                headers={
                    "Authorization": f"Bearer {auth_token.strip()}",
                    "Content-Type": "application/json",
                },
                json={
                    "model": model,
                    "input": PING_INPUT,
                    "max_output_tokens": PING_MAX_OUTPUT_TOKENS,
                },
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            raise TransportError(f"OpenAI request failed: {e}") from e

        if not isinstance(resp, requests.Response):
            raise InvalidResponseError()

        if not 200 <= resp.status_code < 300:
            raise HttpError(resp.status_code, resp.text)

        try:
            body = resp.json()
        except ValueError:
            log.debug("Ping response body is not JSON")
            body = None

        headers = resp.headers
        snapshot = UsageSnapshot(
            fetched_at=datetime.now(timezone.utc),
            requests_limit=header_int(headers, HEADER_LIMIT_REQUESTS),
            requests_remaining=header_int(headers, HEADER_REMAINING_REQUESTS),
            requests_reset_label=header_str(headers, HEADER_RESET_REQUESTS),
            tokens_limit=header_int(headers, HEADER_LIMIT_TOKENS),
            tokens_remaining=header_int(headers, HEADER_REMAINING_TOKENS),
            tokens_reset_label=header_str(headers, HEADER_RESET_TOKENS),
            request_tokens_cost=usage_total(body),
        )
        log.info(
            "Rate limits: requests %s/%s, tokens %s/%s",
            snapshot.requests_remaining,
            snapshot.requests_limit,
            snapshot.tokens_remaining,
            snapshot.tokens_limit,
        )
        return snapshot
