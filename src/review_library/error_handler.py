# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

"""
Error classification for review requests.

Upstream failures are never raised to callers. Clients turn them into a
ClassifiedError carrying a kind, an HTTP-equivalent status and the fixed
user-safe message. Raw upstream bodies only ever reach the diagnostic log,
tag-stripped and truncated.
"""

import html
import re
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from .constants import (
    BODY_SNIPPET_LENGTH,
    ENDPOINT_FALLTHROUGH_STATUS_CODES,
    FAILOVER_STATUS_CODES,
    REQUEST_FAILED_MESSAGE,
    STATUS_BAD_GATEWAY,
    STATUS_CONFIGURATION_ERROR,
    STATUS_FORBIDDEN,
)


class ErrorKind(str, Enum):
    """Kinds of review failure."""

    CONFIGURATION = "configuration_error"  # Missing model/keys, never sent
    ANTHROPIC_API = "anthropic_api_error"
    OPENROUTER_API = "openrouter_api_error"
    STRAICO_API = "straico_api_error"
    FORBIDDEN = "forbidden"  # Authorization hook rejected the caller


_API_ERROR_KINDS = {
    "anthropic": ErrorKind.ANTHROPIC_API,
    "openrouter": ErrorKind.OPENROUTER_API,
    "straico": ErrorKind.STRAICO_API,
}


def api_error_kind(provider: str) -> ErrorKind:
    """Returns the `{provider}_api_error` kind for a provider name."""
    try:
        return _API_ERROR_KINDS[provider]
    except KeyError:
        raise ValueError(f"Unknown provider: {provider}") from None


@dataclass(frozen=True)
class ClassifiedError:
    """A structured, user-safe representation of a failed review."""

    kind: ErrorKind
    status: int
    message: str = REQUEST_FAILED_MESSAGE

    @property
    def is_failover(self) -> bool:
        return is_failover_status(self.status)

    @property
    def code(self) -> str:
        return self.kind.value

    def __str__(self) -> str:
        return f"type={self.kind.value} status={self.status}"


def configuration_error() -> ClassifiedError:
    return ClassifiedError(ErrorKind.CONFIGURATION, STATUS_CONFIGURATION_ERROR)


def forbidden_error() -> ClassifiedError:
    return ClassifiedError(ErrorKind.FORBIDDEN, STATUS_FORBIDDEN)


def transport_error(provider: str) -> ClassifiedError:
    """Connection, DNS and timeout failures."""
    return ClassifiedError(api_error_kind(provider), STATUS_BAD_GATEWAY)


def empty_content_error(provider: str) -> ClassifiedError:
    """A 2xx answer with nothing usable in it."""
    return ClassifiedError(api_error_kind(provider), STATUS_BAD_GATEWAY)


def classify_status(provider: str, status_code: int) -> ClassifiedError:
    """
    Classify a non-2xx upstream status.

    The upstream status is kept when it is an error code; anything else
    collapses to 502 since the upstream cannot be trusted to have answered.
    """
    status = status_code if status_code >= 400 else STATUS_BAD_GATEWAY
    return ClassifiedError(api_error_kind(provider), status)


def is_failover_status(status_code: Optional[int]) -> bool:
    """Checks if a status should move a request on to the next key."""
    return status_code in FAILOVER_STATUS_CODES


def is_endpoint_fallthrough(status_code: int) -> bool:
    """Checks if a status means the candidate endpoint does not serve the route."""
    return status_code in ENDPOINT_FALLTHROUGH_STATUS_CODES


def mask_credential(credential: str) -> str:
    """
    Mask a credential for safe display in logs.

    Shows the last 6 characters of longer keys, nothing of short ones.
    """
    if len(credential) > 6:
        return f"...{credential[-6:]}"
    return "***"


_SCRIPT_STYLE_RE = re.compile(r"<(script|style)[^>]*?>.*?</\1>", re.IGNORECASE | re.DOTALL)
_TAG_RE = re.compile(r"<[^>]*>")


def strip_tags(text: str) -> str:
    """Removes HTML tags (and script/style bodies) and trims the result."""
    text = _SCRIPT_STYLE_RE.sub("", text)
    text = _TAG_RE.sub("", text)
    return html.unescape(text).strip()


def body_snippet(body, limit: int = BODY_SNIPPET_LENGTH) -> str:
    if not isinstance(body, str):
        return ""
    return strip_tags(body)[:limit]
