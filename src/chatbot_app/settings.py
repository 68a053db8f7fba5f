import json
import logging
import os
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Protocol

from dotenv import load_dotenv

from review_library.constants import DEBUG_ENV_VAR


class SecurityValidationError(RuntimeError):
    pass


def parse_bool_env(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def get_debug_enabled() -> bool:
    return parse_bool_env(DEBUG_ENV_VAR, False)


def get_data_dir() -> Path:
    raw = (os.getenv("REVIEW_DATA_DIR") or "").strip()
    return Path(raw) if raw else Path.cwd()


def get_rotation_backend() -> str:
    value = (os.getenv("ROTATION_BACKEND") or "json").strip().lower()
    if value not in {"json", "sql", "memory"}:
        logging.warning("Unknown ROTATION_BACKEND '%s', using json", value)
        return "json"
    return value


def get_rotation_state_path() -> Path:
    raw = (os.getenv("ROTATION_STATE_PATH") or "").strip()
    if raw:
        return Path(raw)
    return get_data_dir() / "key_rotation.json"


def get_request_timeout() -> float:
    raw = os.getenv("REVIEW_TIMEOUT_SECONDS", "60")
    try:
        timeout = float(raw)
    except ValueError:
        timeout = 60.0
    return min(max(timeout, 1.0), 300.0)


def get_service_api_key() -> str:
    value = (os.getenv("REVIEW_SERVICE_API_KEY") or "").strip()
    if not value:
        raise SecurityValidationError(
            "REVIEW_SERVICE_API_KEY environment variable not set."
        )
    return value


@dataclass(frozen=True)
class SiteSettings:
    url: str
    name: str


def get_site_settings() -> SiteSettings:
    return SiteSettings(
        url=(os.getenv("SITE_URL") or "").strip(),
        name=(os.getenv("SITE_NAME") or "").strip(),
    )


# =============================================================================
# OPTION STORE
# =============================================================================


class ConfigProvider(Protocol):
    """Read-only key/value option access, addressed by option name."""

    def get_option(self, name: str, default: Any = None) -> Any: ...


class DictConfigProvider:
    """Options held in a plain mapping."""

    def __init__(self, options: Optional[Mapping[str, Any]] = None):
        self._options: Dict[str, Any] = dict(options or {})

    def get_option(self, name: str, default: Any = None) -> Any:
        return self._options.get(name, default)


_NUMBERED_KEY_RE = re.compile(r"^(?P<base>.+_API_KEY)_(?P<n>\d+)$")


class EnvConfigProvider:
    """
    Options read from environment variables (option name upper-cased).

    Key pools follow the numbered convention: HUMATA_OPENROUTER_API_KEY,
    HUMATA_OPENROUTER_API_KEY_1, HUMATA_OPENROUTER_API_KEY_2... all land in
    one list, unnumbered first, then by number. A value that is a JSON array
    is expanded too.
    """

    def __init__(self, environ: Optional[Mapping[str, str]] = None, dotenv: bool = True):
        if dotenv and environ is None:
            load_dotenv()
        self._environ = environ if environ is not None else os.environ

    def get_option(self, name: str, default: Any = None) -> Any:
        env_name = name.upper()
        if env_name.endswith("_API_KEY"):
            keys = self._collect_keys(env_name)
            return keys if keys else default
        value = self._environ.get(env_name)
        return default if value is None else value

    def _collect_keys(self, env_name: str) -> List[str]:
        numbered = []
        for key, value in self._environ.items():
            match = _NUMBERED_KEY_RE.match(key)
            if match and match.group("base") == env_name:
                numbered.append((int(match.group("n")), value))

        values = []
        if env_name in self._environ:
            values.append(self._environ[env_name])
        values.extend(value for _, value in sorted(numbered))

        keys: List[str] = []
        for value in values:
            keys.extend(_expand_key_value(value))
        return keys


def _expand_key_value(value: str) -> List[str]:
    stripped = value.strip()
    if stripped.startswith("["):
        try:
            parsed = json.loads(stripped)
        except json.JSONDecodeError:
            logging.warning("Ignoring malformed JSON key list in environment")
            return []
        if isinstance(parsed, list):
            return [k for k in parsed if isinstance(k, str)]
        return []
    return [value]


def option_int(config: ConfigProvider, name: str, default: int = 0) -> int:
    value = config.get_option(name, default)
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def option_str(config: ConfigProvider, name: str, default: str = "") -> str:
    value = config.get_option(name, default)
    return value if isinstance(value, str) else default
