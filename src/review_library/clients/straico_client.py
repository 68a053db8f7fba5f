# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

from typing import Any, Dict, List

from ..constants import DEFAULT_STRAICO_ENDPOINTS
from ..types import ReviewRequest
from .base import ReviewClient, first_string

# Answer locations across the response shapes Straico has shipped, in order
STRAICO_TEXT_PATHS = (
    ("choices", 0, "message", "content"),
    ("choices", 0, "text"),
    ("answer",),
    ("response",),
    ("message",),
    ("output",),
)


def _text_blocks(text: str) -> List[Dict[str, str]]:
    return [{"type": "text", "text": text}]


class StraicoClient(ReviewClient):
    """
    Review client for Straico chat completions.

    Message content is a list of text blocks, never a bare string. Extra
    endpoint candidates (a regional proxy, say) come from `endpoints=` and
    are tried in order on 404/405.
    """

    provider_name = "straico"
    default_endpoints = DEFAULT_STRAICO_ENDPOINTS

    def build_headers(self, api_key: str) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
            "Accept": "application/json",
        }

    def build_payload(self, request: ReviewRequest) -> Dict[str, Any]:
        messages = []
        if request.system_prompt:
            messages.append(
                {"role": "system", "content": _text_blocks(request.system_prompt)}
            )
        messages.append({"role": "user", "content": _text_blocks(request.user_message)})
        return {"model": request.model, "messages": messages}

    def extract_text(self, data: Dict[str, Any]) -> str:
        for path in STRAICO_TEXT_PATHS:
            text = first_string(data, *path)
            if text is not None:
                return text
        return ""
