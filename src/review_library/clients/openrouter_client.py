# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

from typing import Any, Dict, Optional, Sequence

import httpx

from ..constants import DEFAULT_OPENROUTER_ENDPOINTS, DEFAULT_TIMEOUT
from ..key_rotator import KeyRotator
from ..types import ReviewRequest
from .base import PayloadTransform, ReviewClient, first_string


class OpenRouterClient(ReviewClient):
    """
    Review client for OpenRouter's OpenAI-compatible chat completions.

    OpenRouter attributes traffic to the calling site through the
    `HTTP-Referer` and `X-Title` headers.
    """

    provider_name = "openrouter"
    default_endpoints = DEFAULT_OPENROUTER_ENDPOINTS

    def __init__(
        self,
        rotator: Optional[KeyRotator] = None,
        endpoints: Optional[Sequence[str]] = None,
        payload_transform: Optional[PayloadTransform] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        timeout: float = DEFAULT_TIMEOUT,
        debug: bool = False,
        site_url: str = "",
        site_name: str = "",
    ):
        super().__init__(
            rotator=rotator,
            endpoints=endpoints,
            payload_transform=payload_transform,
            http_client=http_client,
            timeout=timeout,
            debug=debug,
        )
        self.site_url = (site_url or "").strip()
        self.site_name = (site_name or "").strip()

    def build_headers(self, api_key: str) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
            "Accept": "application/json",
            "HTTP-Referer": self.site_url,
            "X-Title": self.site_name,
        }

    def build_payload(self, request: ReviewRequest) -> Dict[str, Any]:
        messages = []
        if request.system_prompt:
            messages.append({"role": "system", "content": request.system_prompt})
        messages.append({"role": "user", "content": request.user_message})
        return {"model": request.model, "messages": messages}

    def extract_text(self, data: Dict[str, Any]) -> str:
        text = first_string(data, "choices", 0, "message", "content")
        if text is None:
            text = first_string(data, "choices", 0, "text")
        return text or ""
