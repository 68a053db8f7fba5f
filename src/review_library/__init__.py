from typing import TYPE_CHECKING

from .error_handler import ClassifiedError, ErrorKind
from .key_pool import ApiKeyPool, normalize_keys
from .key_rotator import InMemoryRotationStore, JsonRotationStore, KeyRotator
from .types import FailoverEvent, ReviewOptions, ReviewRequest, ReviewResult

# Clients pull in httpx; they are lazy-loaded via __getattr__
if TYPE_CHECKING:
    from .clients import (
        CLIENT_CLASSES,
        AnthropicClient,
        OpenRouterClient,
        ReviewClient,
        StraicoClient,
    )

__all__ = [
    "ApiKeyPool",
    "normalize_keys",
    "KeyRotator",
    "InMemoryRotationStore",
    "JsonRotationStore",
    "ClassifiedError",
    "ErrorKind",
    "FailoverEvent",
    "ReviewOptions",
    "ReviewRequest",
    "ReviewResult",
    # Clients
    "CLIENT_CLASSES",
    "ReviewClient",
    "AnthropicClient",
    "OpenRouterClient",
    "StraicoClient",
]

_LAZY_CLIENTS = {
    "CLIENT_CLASSES",
    "ReviewClient",
    "AnthropicClient",
    "OpenRouterClient",
    "StraicoClient",
}


def __getattr__(name):
    """Lazy-load the provider clients to keep importing the key helpers cheap."""
    if name in _LAZY_CLIENTS:
        from . import clients

        return getattr(clients, name)
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
