# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

"""
Constants and default values for the review library.

Upstream endpoints, failover status codes, timeouts and token defaults
live here so clients, the rotator and the app layer share one import point.
"""

# =============================================================================
# UPSTREAM ENDPOINTS
# =============================================================================

ANTHROPIC_API_BASE = "https://api.anthropic.com/v1"
OPENROUTER_API_BASE = "https://openrouter.ai/api/v1"
STRAICO_API_BASE = "https://api.straico.com/v2"

DEFAULT_ANTHROPIC_ENDPOINTS = (f"{ANTHROPIC_API_BASE}/messages",)
DEFAULT_OPENROUTER_ENDPOINTS = (f"{OPENROUTER_API_BASE}/chat/completions",)
DEFAULT_STRAICO_ENDPOINTS = (f"{STRAICO_API_BASE}/chat/completions",)

ANTHROPIC_VERSION = "2023-06-01"

# =============================================================================
# ROTATION & FAILOVER
# =============================================================================

# Auth and rate-limit errors are key-specific, so the next key may succeed
FAILOVER_STATUS_CODES = frozenset({401, 403, 429})

# A candidate endpoint answering one of these does not serve the route
ENDPOINT_FALLTHROUGH_STATUS_CODES = frozenset({404, 405})

# Bounded in-memory history of failover events kept by the rotator
FAILOVER_HISTORY_SIZE = 200

# =============================================================================
# REQUEST DEFAULTS
# =============================================================================

DEFAULT_TIMEOUT = 60.0

ANTHROPIC_DEFAULT_MAX_TOKENS = 1024
ANTHROPIC_THINKING_MAX_TOKENS = 2048
ANTHROPIC_DEFAULT_THINKING_BUDGET = 1024

USER_MESSAGE_TEMPLATE = "User question:\n{question}\n\nHumata answer:\n{answer}"

# =============================================================================
# ERROR REPORTING
# =============================================================================

REQUEST_FAILED_MESSAGE = (
    "Your message request failed. Try again. If the problem persists, contact us."
)

# Upper bound for upstream body snippets written to the diagnostic log
BODY_SNIPPET_LENGTH = 500

STATUS_CONFIGURATION_ERROR = 500
STATUS_BAD_GATEWAY = 502
STATUS_FORBIDDEN = 403

# Environment switch for operator-only diagnostics
DEBUG_ENV_VAR = "REVIEW_DEBUG"
