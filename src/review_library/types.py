# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

"""
Shared type definitions for the review library.
"""

import time
from dataclasses import dataclass, field
from typing import Optional

from .constants import USER_MESSAGE_TEMPLATE
from .error_handler import ClassifiedError


@dataclass(frozen=True)
class ReviewOptions:
    """Provider-specific knobs. Only Anthropic reads them today."""

    extended_thinking: bool = False
    max_tokens: Optional[int] = None
    thinking_budget_tokens: Optional[int] = None


@dataclass(frozen=True)
class ReviewRequest:
    """
    One second-stage review call.

    Built per call and never persisted. Text fields are stored trimmed.
    """

    model: str
    question: str
    answer: str
    system_prompt: str = ""
    options: ReviewOptions = field(default_factory=ReviewOptions)

    @classmethod
    def build(
        cls,
        model,
        system_prompt,
        question,
        answer,
        options: Optional[ReviewOptions] = None,
    ) -> "ReviewRequest":
        return cls(
            model=str(model or "").strip(),
            system_prompt=str(system_prompt or "").strip(),
            question=str(question or "").strip(),
            answer=str(answer or "").strip(),
            options=options or ReviewOptions(),
        )

    @property
    def user_message(self) -> str:
        return USER_MESSAGE_TEMPLATE.format(question=self.question, answer=self.answer)


@dataclass(frozen=True)
class ReviewResult:
    """Either non-empty review text or a classified error, never both."""

    text: Optional[str] = None
    error: Optional[ClassifiedError] = None
    key_index: Optional[int] = None  # Pool index of the key that produced the result

    @classmethod
    def success(cls, text: str, key_index: Optional[int] = None) -> "ReviewResult":
        return cls(text=text, key_index=key_index)

    @classmethod
    def failure(
        cls, error: ClassifiedError, key_index: Optional[int] = None
    ) -> "ReviewResult":
        return cls(error=error, key_index=key_index)

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def status(self) -> int:
        return self.error.status if self.error else 200


@dataclass(frozen=True)
class FailoverEvent:
    """A key in a pool failed with a failover-eligible status."""

    pool_name: str
    failed_index: int
    status: int
    key_count: int
    timestamp: float = field(default_factory=time.time)
