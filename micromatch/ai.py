"""
Optional AI enrichment used by the matching cycle.

Two capabilities are modelled as small interfaces, each with a do-nothing
default so the cycle runs unchanged without an API key:

- TopicCanonicalizer: merges synonymous topic strings ("yoga" -> "fitness").
- StarterGenerator: proposes conversation-starter questions for a room.

The OpenAI-backed implementations use the Responses API with structured
outputs and never raise; on any failure they log a warning and return an
empty result so callers fall back to identity mapping or a generic starter.
"""
from __future__ import annotations

import json
import time
from typing import Any, Dict, List, Optional, Protocol

from loguru import logger

from .matching_models import CanonicalTopics, ConversationStarters


class TopicCanonicalizer(Protocol):
    def canonicalize(self, topics: List[str]) -> Dict[str, str]:
        ...


class StarterGenerator(Protocol):
    def generate(self, topic: str, count: int) -> List[str]:
        ...


class IdentityCanonicalizer:
    """Maps every topic to itself."""

    def canonicalize(self, topics: List[str]) -> Dict[str, str]:
        return {t: t for t in topics}


class NoStarterGenerator:
    """Never proposes starters; the provisioner uses its generic fallback."""

    def generate(self, topic: str, count: int) -> List[str]:
        return []


CANONICALIZE_PROMPT = (
    "You group free-text interest topics submitted by members of a community chat. "
    "Map every input topic to a short canonical category so that synonyms, spelling variants "
    "and closely related hobbies share one category (e.g. 'yoga' and 'gym' -> 'fitness', "
    "'movies' and 'cinema' -> 'cinema'). Reuse an input topic as the category when it already "
    "is one. Categories must be lowercase English, one to three words. "
    "Return one mapping per input topic, using the input string unchanged as 'raw'."
)

STARTERS_PROMPT = (
    "You write friendly, open-ended icebreaker questions for colleagues who just joined a chat "
    "room about a shared interest. Keep each question to one sentence, avoid yes/no questions, "
    "and do not use names or placeholders."
)


def _parse_with_retries(client: Any, model: str, messages: Any, text_format: Any, max_attempts: int) -> Any:
    for attempt in range(1, max_attempts + 1):
        try:
            parsed = client.responses.parse(  # type: ignore[call-arg]
                model=model,
                input=messages,
                text_format=text_format,  # type: ignore[arg-type]
            )
            if getattr(parsed, "output_parsed", None) is None:
                raise ValueError("Structured parse returned None")
            return parsed.output_parsed
        except Exception as e:
            if attempt < max_attempts:
                time.sleep(0.8 * attempt)
                continue
            raise e
    return None


class OpenAITopicCanonicalizer:
    """Canonicalize topics with a single structured OpenAI call per cycle."""

    def __init__(
        self,
        model: str = "gpt-5-mini",
        timeout: float = 20.0,
        max_attempts: int = 2,
        client: Optional[Any] = None,
    ):
        self.model = model
        self.timeout = timeout
        self.max_attempts = max_attempts
        self._client = client

    def _get_client(self) -> Any:
        if self._client is None:
            from openai import OpenAI

            self._client = OpenAI(timeout=self.timeout, max_retries=0)
        return self._client

    def canonicalize(self, topics: List[str]) -> Dict[str, str]:
        if not topics:
            return {}
        messages: Any = [
            {"role": "system", "content": CANONICALIZE_PROMPT},
            {"role": "user", "content": json.dumps({"topics": topics}, ensure_ascii=False)},
        ]
        try:
            result: CanonicalTopics = _parse_with_retries(
                self._get_client(), self.model, messages, CanonicalTopics, self.max_attempts
            )
        except Exception as e:
            logger.warning(f"Topic canonicalization failed ({e}). Using identity mapping.")
            return {}

        wanted = set(topics)
        mapping: Dict[str, str] = {}
        for item in result.mappings:
            # Ignore anything the model invented that was not asked for
            if item.raw in wanted and item.canonical.strip():
                mapping[item.raw] = item.canonical
        return mapping


class OpenAIStarterGenerator:
    """Generate icebreaker questions for a topic room."""

    def __init__(
        self,
        model: str = "gpt-5-mini",
        timeout: float = 20.0,
        max_attempts: int = 2,
        client: Optional[Any] = None,
    ):
        self.model = model
        self.timeout = timeout
        self.max_attempts = max_attempts
        self._client = client

    def _get_client(self) -> Any:
        if self._client is None:
            from openai import OpenAI

            self._client = OpenAI(timeout=self.timeout, max_retries=0)
        return self._client

    def generate(self, topic: str, count: int) -> List[str]:
        if count <= 0:
            return []
        messages: Any = [
            {"role": "system", "content": STARTERS_PROMPT},
            {"role": "user", "content": f"Write {count} icebreaker questions about: {topic}"},
        ]
        try:
            result: ConversationStarters = _parse_with_retries(
                self._get_client(), self.model, messages, ConversationStarters, self.max_attempts
            )
        except Exception as e:
            logger.warning(f"Starter generation failed for topic '{topic}' ({e}).")
            return []
        questions = [q.strip() for q in result.questions if q and q.strip()]
        return questions[:count]
