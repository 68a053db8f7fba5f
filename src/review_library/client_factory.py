# src/review_library/client_factory.py

from .clients import CLIENT_CLASSES


def get_client_class(provider_name: str):
    """
    Returns the review client class for a given provider.
    """
    client_class = CLIENT_CLASSES.get(str(provider_name).strip().lower())
    if not client_class:
        raise ValueError(f"Unknown provider: {provider_name}")
    return client_class


def create_client(provider_name: str, **kwargs):
    """
    Instantiates the review client for a provider. Keyword arguments go to
    the client constructor; OpenRouter-only site headers are dropped for
    the other providers.
    """
    client_class = get_client_class(provider_name)
    if client_class.provider_name != "openrouter":
        kwargs.pop("site_url", None)
        kwargs.pop("site_name", None)
    return client_class(**kwargs)


def get_available_providers():
    """
    Returns a list of available provider names.
    """
    return list(CLIENT_CLASSES.keys())
