# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

from typing import Dict, Type

from .anthropic_client import AnthropicClient
from .base import ReviewClient
from .openrouter_client import OpenRouterClient
from .straico_client import StraicoClient

CLIENT_CLASSES: Dict[str, Type[ReviewClient]] = {
    "anthropic": AnthropicClient,
    "openrouter": OpenRouterClient,
    "straico": StraicoClient,
}

__all__ = [
    "CLIENT_CLASSES",
    "ReviewClient",
    "AnthropicClient",
    "OpenRouterClient",
    "StraicoClient",
]
