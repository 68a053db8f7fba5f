# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

"""
Shared request path for second-stage review providers.

A review call runs three nested loops, strictly sequential:

- keys: round-robin from the rotator's start index, moving on only for
  auth/rate-limit statuses (401/403/429)
- endpoints: ordered candidates per key, moving on only for 404/405
- one optional provider-specific retry per endpoint (Anthropic drops
  extended thinking)

Subclasses only describe the wire format: headers, payload and how to dig
text out of a response body.
"""

import json
import logging
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, List, Optional, Sequence

import httpx

from ..constants import DEFAULT_TIMEOUT
from ..error_handler import (
    ClassifiedError,
    classify_status,
    configuration_error,
    empty_content_error,
    is_endpoint_fallthrough,
    is_failover_status,
    mask_credential,
    transport_error,
)
from ..failure_logger import log_failure
from ..key_pool import normalize_keys
from ..key_rotator import KeyRotator
from ..types import ReviewOptions, ReviewRequest, ReviewResult

lib_logger = logging.getLogger("review_library")
lib_logger.propagate = False
if not lib_logger.handlers:
    lib_logger.addHandler(logging.NullHandler())

PayloadTransform = Callable[[Dict[str, Any], ReviewRequest], Dict[str, Any]]


def first_string(data: Any, *path) -> Optional[str]:
    """
    Walk `path` (dict keys / list indexes) into `data`, returning the value
    only if it is a string.

    >>> first_string({"choices": [{"text": "hi"}]}, "choices", 0, "text")
    'hi'
    """
    for step in path:
        if isinstance(step, int):
            if not isinstance(data, list) or len(data) <= step:
                return None
        elif not isinstance(data, dict) or step not in data:
            return None
        data = data[step]
    return data if isinstance(data, str) else None


class ReviewClient(ABC):
    """
    Base class for a chat-completion provider used to review answers.

    Args:
        rotator: KeyRotator shared across calls; without one every call
            starts at the first key and nothing is persisted.
        endpoints: Ordered endpoint candidates overriding the defaults.
        payload_transform: Called with the built payload and request,
            returns the payload to send.
        http_client: Shared httpx.AsyncClient; one is created (and owned)
            when omitted.
        timeout: Per-call upstream timeout in seconds.
        debug: Emit operator diagnostics (key usage, failovers, upstream
            error snippets).
    """

    provider_name: str = ""
    default_endpoints: Sequence[str] = ()

    def __init__(
        self,
        rotator: Optional[KeyRotator] = None,
        endpoints: Optional[Sequence[str]] = None,
        payload_transform: Optional[PayloadTransform] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        timeout: float = DEFAULT_TIMEOUT,
        debug: bool = False,
    ):
        if payload_transform is not None and not callable(payload_transform):
            raise TypeError("payload_transform must be callable")
        self.rotator = rotator
        self._endpoint_overrides = list(endpoints) if endpoints is not None else None
        self.payload_transform = payload_transform
        self.timeout = timeout
        self.debug = debug
        self._owns_http_client = http_client is None
        self.http_client = http_client or httpx.AsyncClient(timeout=timeout)

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_http_client:
            await self.http_client.aclose()

    # =========================================================================
    # WIRE FORMAT (per provider)
    # =========================================================================

    @abstractmethod
    def build_headers(self, api_key: str) -> Dict[str, str]:
        """Request headers carrying `api_key`."""

    @abstractmethod
    def build_payload(self, request: ReviewRequest) -> Dict[str, Any]:
        """JSON body for `request`."""

    @abstractmethod
    def extract_text(self, data: Dict[str, Any]) -> str:
        """Pull the answer text out of a decoded JSON object body."""

    async def retry_after_error(
        self,
        endpoint: str,
        headers: Dict[str, str],
        payload: Dict[str, Any],
        request: ReviewRequest,
        response: httpx.Response,
    ) -> Optional[httpx.Response]:
        """
        Hook for a single protocol-specific retry after an error status.

        Returns a successful response to use instead, or None to keep the
        original failure.
        """
        return None

    # =========================================================================
    # PUBLIC API
    # =========================================================================

    @property
    def endpoints(self) -> List[str]:
        """Usable endpoint candidates; overrides that leave nothing fall back to defaults."""
        candidates = self._endpoint_overrides
        if not candidates:
            candidates = list(self.default_endpoints)
        usable = [str(e).strip() for e in candidates if _is_http_url(e)]
        return usable or list(self.default_endpoints)

    async def review(
        self,
        api_keys,
        model,
        system_prompt,
        question,
        answer,
        *,
        pool_name: Optional[str] = None,
        extended_thinking: bool = False,
        max_tokens: Optional[int] = None,
        thinking_budget_tokens: Optional[int] = None,
    ) -> ReviewResult:
        """
        Ask the provider to review `answer` to `question`.

        `api_keys` may be a single key or a list; it is normalized again
        here so nothing unsanitized ever reaches a header. With more than
        one key the call rotates and fails over within `pool_name`.

        Returns:
            ReviewResult with the reviewed text, or a classified error.
        """
        request = ReviewRequest.build(
            model,
            system_prompt,
            question,
            answer,
            ReviewOptions(
                extended_thinking=bool(extended_thinking),
                max_tokens=max_tokens,
                thinking_budget_tokens=thinking_budget_tokens,
            ),
        )
        keys = normalize_keys(api_keys)

        if not keys or not request.model:
            return ReviewResult.failure(configuration_error())

        payload = self.build_payload(request)
        if self.payload_transform is not None:
            payload = self.payload_transform(payload, request)

        return await self._review_with_rotation(
            keys, payload, request, pool_name or self.provider_name
        )

    # =========================================================================
    # KEY ROTATION
    # =========================================================================

    async def _review_with_rotation(
        self,
        keys: List[str],
        payload: Dict[str, Any],
        request: ReviewRequest,
        pool_name: str,
    ) -> ReviewResult:
        key_count = len(keys)
        rotating = self.rotator is not None and key_count > 1

        start_index = 0
        if rotating:
            start_index = await self._start_index(pool_name) % key_count

        last_error: Optional[ClassifiedError] = None
        for attempt in range(key_count):
            key_index = (start_index + attempt) % key_count
            api_key = keys[key_index]

            if key_count > 1:
                self._log_key_usage(pool_name, key_index, key_count)

            result = await self._send(api_key, payload, request, pool_name)

            if not result.ok:
                status = result.error.status
                if is_failover_status(status) and attempt < key_count - 1:
                    await self._log_failover(pool_name, key_index, status, key_count)
                    last_error = result.error
                    continue
                return ReviewResult.failure(result.error, key_index)

            if rotating:
                await self._advance_rotation(pool_name, key_count, attempt + 1)
            return ReviewResult.success(result.text, key_index)

        return ReviewResult.failure(last_error or transport_error(self.provider_name))

    async def _start_index(self, pool_name: str) -> int:
        try:
            return await self.rotator.get_current_index(pool_name)
        except Exception as e:
            lib_logger.error(
                f"Failed to read rotation index for pool={pool_name}, starting at key 1: {e}"
            )
            return 0

    async def _advance_rotation(self, pool_name: str, key_count: int, steps: int) -> None:
        """Step past every key tried in this call. A store failure never costs the answer."""
        try:
            await self.rotator.increment_index(pool_name, key_count, steps=steps)
        except Exception as e:
            lib_logger.error(
                f"Failed to persist rotation index for pool={pool_name}: {e}"
            )

    # =========================================================================
    # ENDPOINT LOOP
    # =========================================================================

    async def _post(
        self, endpoint: str, headers: Dict[str, str], payload: Dict[str, Any]
    ) -> httpx.Response:
        return await self.http_client.post(
            endpoint, headers=headers, json=payload, timeout=self.timeout
        )

    async def _send(
        self,
        api_key: str,
        payload: Dict[str, Any],
        request: ReviewRequest,
        pool_name: str,
    ) -> ReviewResult:
        """Try one key against the endpoint candidates."""
        headers = self.build_headers(api_key)
        last_error: Optional[ClassifiedError] = None

        for endpoint in self.endpoints:
            try:
                response = await self._post(endpoint, headers, payload)
            except httpx.RequestError as e:
                if self.debug:
                    lib_logger.warning(
                        f"{self.provider_name} transport error: endpoint={endpoint} "
                        f"key={mask_credential(api_key)} error={type(e).__name__}"
                    )
                last_error = transport_error(self.provider_name)
                break

            status_code = response.status_code
            if status_code >= 400:
                self._log_upstream_error(endpoint, status_code, response.text, api_key, pool_name)

            if is_endpoint_fallthrough(status_code):
                last_error = classify_status(self.provider_name, status_code)
                continue

            if status_code >= 400:
                retry = await self.retry_after_error(
                    endpoint, headers, payload, request, response
                )
                if retry is None:
                    return ReviewResult.failure(
                        classify_status(self.provider_name, status_code)
                    )
                response = retry

            text = self._parse_text(response)
            if not text:
                last_error = empty_content_error(self.provider_name)
                break

            return ReviewResult.success(text)

        return ReviewResult.failure(last_error or transport_error(self.provider_name))

    def _parse_text(self, response: httpx.Response) -> str:
        body = response.text
        try:
            data = json.loads(body)
        except ValueError:
            return body.strip()

        if isinstance(data, dict):
            return (self.extract_text(data) or "").strip()
        if isinstance(data, str):
            return data.strip()
        return ""

    # =========================================================================
    # DIAGNOSTICS
    # =========================================================================

    def _log_key_usage(self, pool_name: str, index: int, count: int) -> None:
        if self.rotator is not None:
            self.rotator.log_key_usage(pool_name, index, count)
        elif self.debug:
            lib_logger.info(
                f"{self.provider_name} API key rotation: pool={pool_name}, using key {index + 1}/{count}"
            )

    async def _log_failover(
        self, pool_name: str, failed_index: int, status: int, key_count: int
    ) -> None:
        if self.rotator is not None:
            await self.rotator.log_failover(pool_name, failed_index, status, key_count)
        elif self.debug:
            lib_logger.warning(
                f"{self.provider_name} API key failover: pool={pool_name}, key {failed_index + 1}/{key_count} "
                f"failed with status {status}, trying next key"
            )

    def _log_upstream_error(
        self, endpoint: str, status_code: int, body: str, api_key: str, pool_name: str
    ) -> None:
        if not self.debug:
            return
        log_failure(
            self.provider_name,
            endpoint,
            status_code,
            body=body,
            api_key=api_key,
            pool_name=pool_name,
        )
        lib_logger.warning(
            f"{self.provider_name} error: endpoint={endpoint} status={status_code}"
        )


def _is_http_url(value: Any) -> bool:
    if not isinstance(value, str):
        return False
    value = value.strip().lower()
    return value.startswith("https://") or value.startswith("http://")
