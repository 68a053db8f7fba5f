# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

import logging
from typing import Any, Dict, Optional

import httpx

from ..constants import (
    ANTHROPIC_DEFAULT_MAX_TOKENS,
    ANTHROPIC_DEFAULT_THINKING_BUDGET,
    ANTHROPIC_THINKING_MAX_TOKENS,
    ANTHROPIC_VERSION,
    DEFAULT_ANTHROPIC_ENDPOINTS,
)
from ..types import ReviewRequest
from .base import ReviewClient

lib_logger = logging.getLogger("review_library")


class AnthropicClient(ReviewClient):
    """
    Review client for the Anthropic Messages API.

    The system prompt goes in the top-level `system` field and `messages`
    carries only the user turn. Extended thinking attaches a `thinking`
    block; models that reject it get one retry without the block.
    """

    provider_name = "anthropic"
    default_endpoints = DEFAULT_ANTHROPIC_ENDPOINTS

    def build_headers(self, api_key: str) -> Dict[str, str]:
        return {
            "x-api-key": api_key,
            "anthropic-version": ANTHROPIC_VERSION,
            "Content-Type": "application/json",
            "Accept": "application/json",
        }

    def build_payload(self, request: ReviewRequest) -> Dict[str, Any]:
        options = request.options
        payload: Dict[str, Any] = {
            "model": request.model,
            "max_tokens": self._max_tokens(options.extended_thinking, options.max_tokens),
            "messages": [{"role": "user", "content": request.user_message}],
        }

        if request.system_prompt:
            payload["system"] = request.system_prompt

        if options.extended_thinking:
            budget = options.thinking_budget_tokens
            if budget is None:
                budget = ANTHROPIC_DEFAULT_THINKING_BUDGET
            payload["thinking"] = {
                "type": "enabled",
                "budget_tokens": max(0, int(budget)),
            }

        return payload

    @staticmethod
    def _max_tokens(extended_thinking: bool, override: Optional[int]) -> int:
        if override is None:
            return (
                ANTHROPIC_THINKING_MAX_TOKENS
                if extended_thinking
                else ANTHROPIC_DEFAULT_MAX_TOKENS
            )
        override = int(override)
        return override if override >= 1 else ANTHROPIC_DEFAULT_MAX_TOKENS

    def extract_text(self, data: Dict[str, Any]) -> str:
        content = data.get("content")
        if isinstance(content, list):
            parts = []
            for block in content:
                if isinstance(block, dict):
                    text = block.get("text")
                    if isinstance(text, str):
                        parts.append(text)
                elif isinstance(block, str):
                    parts.append(block)
            return "".join(parts)

        completion = data.get("completion")
        if isinstance(completion, str):
            return completion
        return ""

    async def retry_after_error(
        self,
        endpoint: str,
        headers: Dict[str, str],
        payload: Dict[str, Any],
        request: ReviewRequest,
        response: httpx.Response,
    ) -> Optional[httpx.Response]:
        """Retry once without `thinking` when extended thinking was requested."""
        if not request.options.extended_thinking or "thinking" not in payload:
            return None

        retry_payload = {k: v for k, v in payload.items() if k != "thinking"}
        try:
            retry = await self._post(endpoint, headers, retry_payload)
        except httpx.RequestError as e:
            if self.debug:
                lib_logger.warning(
                    f"anthropic retry without thinking failed: endpoint={endpoint} error={type(e).__name__}"
                )
            return None

        if retry.status_code >= 400:
            return None

        if self.debug:
            lib_logger.info(
                f"anthropic: model {request.model} rejected extended thinking "
                f"(status {response.status_code}), answered without it"
            )
        return retry
