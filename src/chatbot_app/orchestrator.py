import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, FrozenSet, Mapping, Optional

from review_library.client_factory import create_client, get_available_providers
from review_library.clients import ReviewClient
from review_library.constants import REQUEST_FAILED_MESSAGE
from review_library.error_handler import (
    ClassifiedError,
    configuration_error,
    forbidden_error,
)
from review_library.key_pool import ApiKeyPool
from review_library.key_rotator import KeyRotator
from review_library.types import ReviewResult

from chatbot_app.settings import ConfigProvider, option_int, option_str

logger = logging.getLogger(__name__)

PROVIDER_NONE = "none"


@dataclass(frozen=True)
class StageConfig:
    name: str
    option_prefix: str
    provider_option: str
    valid_providers: FrozenSet[str]
    default_provider: str
    system_prompt_option: str
    legacy_straico_flag: bool = False


_ALL_PROVIDERS = frozenset(get_available_providers())

STAGES: Dict[str, StageConfig] = {
    "default": StageConfig(
        name="default",
        option_prefix="humata_",
        provider_option="humata_second_llm_provider",
        valid_providers=_ALL_PROVIDERS | {PROVIDER_NONE},
        default_provider=PROVIDER_NONE,
        system_prompt_option="humata_straico_system_prompt",
        legacy_straico_flag=True,
    ),
    # The first local stage answers from retrieved material, so it always
    # needs a provider
    "local_first": StageConfig(
        name="local_first",
        option_prefix="humata_local_first_",
        provider_option="humata_local_first_llm_provider",
        valid_providers=_ALL_PROVIDERS,
        default_provider="straico",
        system_prompt_option="humata_local_search_system_prompt",
    ),
    "local_second": StageConfig(
        name="local_second",
        option_prefix="humata_local_second_",
        provider_option="humata_local_second_llm_provider",
        valid_providers=_ALL_PROVIDERS | {PROVIDER_NONE},
        default_provider=PROVIDER_NONE,
        system_prompt_option="humata_local_second_stage_system_prompt",
    ),
}


@dataclass(frozen=True)
class StageSettings:
    provider: str
    pool: ApiKeyPool
    model: str
    system_prompt: str
    extended_thinking: bool


@dataclass(frozen=True)
class ReviewOutcome:
    """What the chat layer shows: the answer, or the fixed failure message."""

    answer: str
    provider: str
    reviewed: bool = False
    error: Optional[ClassifiedError] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def status(self) -> int:
        return self.error.status if self.error else 200


class ReviewOrchestrator:
    """
    Picks the review provider for a stage from configuration, builds its key
    pool and runs the client with rotation.

    Args:
        config: Option store.
        clients: Pre-built clients by provider name; missing ones are
            created on first use with `client_options`.
        rotator: Rotation state shared by every client created here.
        authorize: Optional zero-argument check run before any review.
        client_options: Extra constructor arguments for created clients
            (timeout, debug, site_url, site_name, endpoints...).
    """

    def __init__(
        self,
        config: ConfigProvider,
        clients: Optional[Mapping[str, ReviewClient]] = None,
        rotator: Optional[KeyRotator] = None,
        authorize: Optional[Callable[[], bool]] = None,
        client_options: Optional[Dict[str, Any]] = None,
    ):
        self.config = config
        self.rotator = rotator if rotator is not None else KeyRotator()
        self.authorize = authorize
        self._clients: Dict[str, ReviewClient] = dict(clients or {})
        self._owned_clients: Dict[str, ReviewClient] = {}
        self._client_options = dict(client_options or {})

    async def aclose(self) -> None:
        for client in self._owned_clients.values():
            await client.aclose()
        self._owned_clients.clear()

    def client_for(self, provider: str) -> ReviewClient:
        if provider not in self._clients:
            client = create_client(provider, rotator=self.rotator, **self._client_options)
            self._clients[provider] = client
            self._owned_clients[provider] = client
        return self._clients[provider]

    # =========================================================================
    # CONFIGURATION
    # =========================================================================

    @staticmethod
    def stage(stage: str) -> StageConfig:
        try:
            return STAGES[stage]
        except KeyError:
            raise ValueError(f"Unknown review stage: {stage}") from None

    def provider_for(self, stage: str) -> str:
        stage_config = self.stage(stage)
        raw = option_str(self.config, stage_config.provider_option).strip()

        if not raw and stage_config.legacy_straico_flag:
            legacy = option_int(self.config, "humata_straico_review_enabled", 0)
            return "straico" if legacy == 1 else PROVIDER_NONE

        if raw in stage_config.valid_providers:
            return raw
        return stage_config.default_provider

    @staticmethod
    def pool_name(stage: str, provider: str) -> str:
        if stage == "default":
            return provider
        return f"{stage}_{provider}"

    def settings_for(self, stage: str, provider: Optional[str] = None) -> StageSettings:
        stage_config = self.stage(stage)
        provider = provider or self.provider_for(stage)
        prefix = stage_config.option_prefix

        pool = ApiKeyPool.from_value(
            self.pool_name(stage, provider),
            self.config.get_option(f"{prefix}{provider}_api_key", []),
        )
        return StageSettings(
            provider=provider,
            pool=pool,
            model=option_str(self.config, f"{prefix}{provider}_model"),
            system_prompt=option_str(self.config, stage_config.system_prompt_option),
            extended_thinking=(
                provider == "anthropic"
                and option_int(self.config, f"{prefix}anthropic_extended_thinking", 0) == 1
            ),
        )

    # =========================================================================
    # REVIEW
    # =========================================================================

    def _is_authorized(self) -> bool:
        return self.authorize is None or bool(self.authorize())

    async def complete(
        self,
        stage: str,
        question: str,
        answer: str = "",
        system_prompt: Optional[str] = None,
        pool_name: Optional[str] = None,
    ) -> ReviewResult:
        """
        Run the stage's configured provider on arbitrary question/answer text.

        `system_prompt` and `pool_name` override the stage configuration.
        A stage with no provider yields a configuration error.
        """
        provider = self.provider_for(stage)
        if provider == PROVIDER_NONE:
            return ReviewResult.failure(configuration_error())

        settings = self.settings_for(stage, provider)
        client = self.client_for(provider)
        return await client.review(
            list(settings.pool.keys),
            settings.model,
            settings.system_prompt if system_prompt is None else system_prompt,
            question,
            answer,
            pool_name=pool_name or settings.pool.name,
            extended_thinking=settings.extended_thinking,
        )

    async def review_answer(
        self, question: str, answer: str, stage: str = "default"
    ) -> ReviewOutcome:
        """
        Second-stage review of `answer`.

        With no provider configured the answer passes through untouched.
        Failures never carry upstream text, only the fixed message.
        """
        if not self._is_authorized():
            return ReviewOutcome(
                answer=REQUEST_FAILED_MESSAGE,
                provider=PROVIDER_NONE,
                error=forbidden_error(),
            )

        provider = self.provider_for(stage)
        if provider == PROVIDER_NONE:
            return ReviewOutcome(answer=answer, provider=provider)

        result = await self.complete(stage, question, answer)
        if not result.ok:
            logger.warning(
                "Review failed: stage=%s provider=%s code=%s status=%d",
                stage,
                provider,
                result.error.code,
                result.error.status,
            )
            return ReviewOutcome(
                answer=result.error.message,
                provider=provider,
                error=result.error,
            )

        return ReviewOutcome(answer=result.text, provider=provider, reviewed=True)
