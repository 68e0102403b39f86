"""Topic cleanup and per-cycle canonicalization."""

from __future__ import annotations

import unicodedata
from typing import Dict, Iterable, List

from loguru import logger

from .ai import TopicCanonicalizer
from .data_models import ParticipantResponse


def clean_topic(raw: object) -> str:
    """Trim, collapse whitespace, strip accents and case-fold a topic string.

    Scripts without an ASCII decomposition (e.g. "日本") are kept as-is; room
    naming handles them. Returns an empty string for blank input.
    """
    text = " ".join(str(raw or "").split())
    decomposed = unicodedata.normalize("NFKD", text)
    text = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    return text.casefold()


def collect_raw_topics(responses: Iterable[ParticipantResponse]) -> List[str]:
    """Union of cleaned, non-empty topics across all responses, in first-seen order."""
    seen: Dict[str, None] = {}
    for response in responses:
        for raw in response.topics:
            topic = clean_topic(raw)
            if topic:
                seen.setdefault(topic, None)
    return list(seen)


def canonicalize_topics(topics: List[str], canonicalizer: TopicCanonicalizer) -> Dict[str, str]:
    """Map every cleaned topic to a canonical topic with one oracle call.

    Pseudocode:
    1. Call the canonicalizer once with the full topic list.
    2. On any error, continue with an empty mapping.
    3. Clean each returned canonical value; drop values that clean to "".
    4. Every input topic missing from the mapping maps to itself.
    """
    if not topics:
        return {}

    try:
        returned = canonicalizer.canonicalize(list(topics)) or {}
    except Exception as e:
        logger.warning(f"Canonicalization oracle failed ({e}). Falling back to exact topics.")
        returned = {}
    if not isinstance(returned, dict):
        logger.warning(f"Canonicalization oracle returned {type(returned).__name__}, expected a dict.")
        returned = {}

    mapping: Dict[str, str] = {}
    missing = 0
    for topic in topics:
        canonical = clean_topic(returned.get(topic, ""))
        if not canonical:
            missing += 1
            canonical = topic
        mapping[topic] = canonical
    if missing and returned:
        logger.debug(f"Oracle omitted {missing} of {len(topics)} topics; mapped them to themselves.")
    return mapping
