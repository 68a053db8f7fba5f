"""
Contextual query expansion for local search.

Follow-up questions ("what about dosage?") are rewritten into standalone
queries by the local first-stage LLM. Anything else, or an LLM failure,
falls back to merging salient keywords from recent history.
"""

import logging
import re
from collections import Counter
from typing import Any, List, Optional, Sequence

from chatbot_app.orchestrator import PROVIDER_NONE, ReviewOrchestrator

logger = logging.getLogger(__name__)

REFORMULATION_POOL = "query_reformulation"

FOLLOWUP_PATTERNS = [
    re.compile(p, re.IGNORECASE)
    for p in (
        r"^(what|how|and|or)\s+about\b",
        r"^(and|but|also|or)\s+",
        r"^what\s+if\b",
        r"^(same|similar)\s+(for|with)\b",
        r"^how\s+about\b",
        r"^(is|are|do|does|can|will)\s+(it|that|this|they)\b",
        r"^(what|where|when|why|how)\s+(is|are|about)\s+(it|that|this|they)\b",
    )
]

STOPWORDS = frozenset(
    """
    a an the and or but in on at to for of with by from as is was are were been
    be have has had do does did will would could should may might must shall can
    need it its this that these those i you he she we they what which who whom
    where when why how all each every both few more most other some such no nor
    not only own same so than too very just about also into over after before
    between under again there here up down out off if then else because yes yeah
    ok okay hi hello thanks thank please sorry well now get got like know think
    see want way look make go going come take tell me my your our their him her
    us them
    """.split()
)

MAX_CONTEXT_MESSAGES = 6  # 3 exchanges
MAX_CONTEXT_CHARS = 200
MAX_REFORMULATED_CHARS = 200
MAX_HISTORY_TERMS = 8
MAX_MERGED_TERMS = 15

_NON_WORD_RE = re.compile(r"[^\w\s]|_", re.UNICODE)
_WORD_COUNT_RE = re.compile(r"[A-Za-z'-]+")


def _history_items(history: Any):
    """Yield (type, content) for user/bot turns, most recent first."""
    if not isinstance(history, (list, tuple)):
        return
    for item in reversed(history):
        if not isinstance(item, dict):
            continue
        kind = str(item.get("type", "")).strip().lower()
        if kind == "assistant":
            kind = "bot"
        content = str(item.get("content") or "").strip()
        if kind in ("user", "bot") and content:
            yield kind, content


def is_followup(message: str) -> bool:
    message = (message or "").strip()
    if not message:
        return False
    # Four words or fewer reads as a follow-up
    if len(_WORD_COUNT_RE.findall(message)) <= 4:
        return True
    return any(p.search(message) for p in FOLLOWUP_PATTERNS)


def extract_terms(text: str) -> List[str]:
    text = _NON_WORD_RE.sub(" ", text.strip().lower())
    terms: List[str] = []
    for word in text.split():
        if len(word) < 3 or word in STOPWORDS or _is_number(word):
            continue
        if word not in terms:
            terms.append(word)
    return terms


def _is_number(word: str) -> bool:
    try:
        float(word)
    except ValueError:
        return False
    return True


def history_terms(history: Any) -> List[str]:
    weighted: List[str] = []
    for kind, content in list(_history_items(history))[:MAX_CONTEXT_MESSAGES]:
        terms = extract_terms(content)
        if kind == "user":
            # User turns carry the actual questions, count them twice
            for term in terms:
                weighted.extend((term, term))
        else:
            weighted.extend(terms[:5])
    return [term for term, _ in Counter(weighted).most_common(MAX_HISTORY_TERMS)]


def expand_with_keywords(message: str, history: Any) -> str:
    merged = extract_terms(message)
    for term in history_terms(history):
        if term not in merged:
            merged.append(term)
    return " ".join(merged[:MAX_MERGED_TERMS])


def build_reformulation_prompt(message: str, history: Sequence[Any]) -> Optional[str]:
    lines = []
    for kind, content in list(_history_items(history))[:MAX_CONTEXT_MESSAGES]:
        if len(content) > MAX_CONTEXT_CHARS:
            content = content[:MAX_CONTEXT_CHARS] + "..."
        prefix = "User" if kind == "user" else "Assistant"
        lines.append(f"{prefix}: {content}")

    if not lines:
        return None

    context = "\n".join(reversed(lines))
    return (
        f"Given this conversation history:\n\n{context}\n\n"
        f'The user now asks: "{message}"\n\n'
        "Rewrite this as a standalone search query that includes the necessary context. "
        "Output ONLY the reformulated query (under 15 words), nothing else."
    )


class QueryExpander:
    """Expands search queries with conversation context."""

    def __init__(self, orchestrator: Optional[ReviewOrchestrator] = None, stage: str = "local_first"):
        self.orchestrator = orchestrator
        self.stage = stage

    async def expand(self, message: str, history: Any) -> str:
        message = (message or "").strip()
        if not message:
            return ""
        if not isinstance(history, (list, tuple)) or not history:
            return message

        if is_followup(message) and self.orchestrator is not None:
            reformulated = await self.reformulate(message, history)
            if reformulated:
                return reformulated

        return expand_with_keywords(message, history)

    async def reformulate(self, message: str, history: Any) -> Optional[str]:
        """Rewrite a follow-up as a standalone query, or None when that fails."""
        if self.orchestrator is None:
            return None
        if self.orchestrator.provider_for(self.stage) == PROVIDER_NONE:
            return None

        prompt = build_reformulation_prompt(message, history)
        if prompt is None:
            return None

        result = await self.orchestrator.complete(
            self.stage,
            prompt,
            "",
            system_prompt="",
            pool_name=REFORMULATION_POOL,
        )
        if not result.ok:
            logger.warning("Query reformulation failed: %s", result.error)
            return None

        reformulated = result.text.strip()
        if not reformulated or len(reformulated) > MAX_REFORMULATED_CHARS:
            return None
        return reformulated.strip("\"'")
