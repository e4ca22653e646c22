"""Keyword extraction for conversation summaries."""

import re
from collections import Counter
from typing import Iterable, Mapping

from replybot.memory.models import Message


MAX_TOPICS = 10

STOP_WORDS = frozenset({
    "the", "a", "an", "and", "or", "but", "in", "on", "at", "to", "for", "of",
    "with", "by", "is", "are", "was", "were", "be", "been", "have", "has", "had",
    "do", "does", "did", "will", "would", "could", "should", "may", "might",
    "can", "i", "you", "he", "she", "it", "we", "they", "me", "him", "her",
    "us", "them",
})

_PUNCTUATION = re.compile(r"[^\w\s]")


def tokenize(text: str) -> list[str]:
    """Lower-case, strip punctuation and drop stop words and short tokens."""
    words = _PUNCTUATION.sub("", text.lower()).split()
    return [w for w in words if len(w) > 2 and w not in STOP_WORDS]


def count_terms(messages: Iterable[Message], seed: Mapping[str, int] | None = None) -> Counter[str]:
    """
    Term frequencies across message bodies, added on top of ``seed``.

    Terms keep first-occurrence order, seeded terms first, so that
    ``Counter.most_common`` (a stable sort) breaks ties oldest-first.
    """
    counts: Counter[str] = Counter(seed or {})
    for message in messages:
        if message.body:
            counts.update(tokenize(message.body))
    return counts


def top_terms(counts: Counter[str], limit: int = MAX_TOPICS) -> list[str]:
    return [word for word, _ in counts.most_common(limit)]
