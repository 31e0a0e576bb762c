"""Derive chat titles from the first user messages.

Titles are a pure function of message text: an ordered keyword table is
checked first (first match wins, so the order doubles as priority), then a
short title is built from the first sentence, and finally a ``Chat HH:MM``
timestamp is used.

Last Grunted: 10/13/2026 04:10:00 PM UTC
"""
import re
from datetime import datetime
from typing import Any, Iterable, Mapping, Optional, Sequence, Union

import structlog

logger = structlog.get_logger(__name__)

# Maximum length for generated title
MAX_TITLE_LENGTH: int = 50

# Only the first N user messages contribute to a title
TITLE_SOURCE_MESSAGES: int = 3

DEFAULT_TITLE: str = "New Chat"

# Ordered (keywords, title) table. Payment/telecom families sit above the
# generic "ai"/"help" families so they win ties.
TITLE_PATTERNS: tuple[tuple[tuple[str, ...], str], ...] = (
    # Payment and financial
    (("payment", "pay", "bill", "money", "transfer"), "Payment Discussion"),
    (("airtime", "data", "bundle"), "Telecom Services"),
    (("electricity", "water", "utility"), "Utility Bills"),
    (("mtn", "vodafone", "airteltigo"), "Mobile Money"),
    # AI and tech
    (("ai", "artificial intelligence", "machine learning"), "AI Discussion"),
    (("code", "programming", "development"), "Programming Help"),
    (("help", "support", "problem"), "Support Request"),
    # Business and work
    (("business", "company", "work"), "Business Inquiry"),
    (("price", "cost", "buy", "purchase"), "Pricing Inquiry"),
    # Personal
    (("hello", "hi", "greet"), "General Chat"),
    (("thank", "thanks"), "Appreciation"),
)

STOP_WORDS: frozenset[str] = frozenset({
    "the", "a", "an", "and", "or", "but", "in", "on", "at", "to", "for", "of", "with",
    "by", "i", "you", "he", "she", "it", "we", "they", "me", "him", "her", "us", "them",
    "is", "are", "was", "were", "be", "been", "being", "have", "has", "had", "do", "does",
    "did", "will", "would", "could", "should", "may", "might", "can", "this", "that",
    "these", "those", "what", "when", "where", "why", "how", "my", "your", "his",
    "its", "our", "their",
})

_SENTENCE_SPLIT = re.compile(r"[.!?]")
_WORD_START = re.compile(r"\b\w")

MessageLike = Union[Mapping[str, Any], Any]


def _field(message: MessageLike, name: str) -> Any:
    if isinstance(message, Mapping):
        return message.get(name)
    return getattr(message, name, None)


def _user_texts(messages: Iterable[MessageLike]) -> list[str]:
    texts = [
        _field(m, "content") or ""
        for m in messages
        if _field(m, "role") == "user"
    ]
    return texts[:TITLE_SOURCE_MESSAGES]


def _match_keywords(text: str) -> Optional[str]:
    lowered = text.lower().strip()
    for keywords, title in TITLE_PATTERNS:
        if any(keyword in lowered for keyword in keywords):
            return title
    return None


def _title_from_first_sentence(text: str) -> Optional[str]:
    first_sentence = _SENTENCE_SPLIT.split(text, maxsplit=1)[0].strip()
    if not first_sentence:
        return None

    words = [
        word for word in first_sentence.split()
        if word.lower() not in STOP_WORDS and len(word) > 2
    ][:3]
    if not words:
        return None

    title = _WORD_START.sub(lambda m: m.group(0).upper(), " ".join(words))
    if len(title) > MAX_TITLE_LENGTH:
        title = title[:MAX_TITLE_LENGTH - 3] + "..."
    return title


def extract_title_from_text(text: str, now: Optional[datetime] = None) -> str:
    """
    Extract a concise title (max 50 characters) from combined message text.

    Args:
        text: Combined text of the first user messages
        now: Clock override for the ``Chat HH:MM`` fallback

    Returns:
        str: Keyword title, first-sentence title, or timestamp title
    """
    title = _match_keywords(text) or _title_from_first_sentence(text)
    if title:
        return title

    now = now or datetime.now()
    return f"Chat {now:%H:%M}"


def generate_chat_title(
    messages: Sequence[MessageLike],
    now: Optional[datetime] = None,
) -> str:
    """
    Generate a chat title from the first three user messages.

    Args:
        messages: Messages as dicts or objects with ``role`` and ``content``
        now: Clock override for the timestamp fallback

    Returns:
        str: A title of at most 50 characters (never empty)

    Example:
        >>> generate_chat_title([{"role": "user", "content": "Can you help me with a payment issue?"}])
        'Payment Discussion'

    Last Grunted: 10/13/2026 04:10:00 PM UTC
    """
    texts = _user_texts(messages)
    if not texts:
        return DEFAULT_TITLE

    title = extract_title_from_text(" ".join(texts), now=now)
    logger.debug("title_generation.heuristic", title=title, source_messages=len(texts))
    return title


def is_generic_title(title: Optional[str]) -> bool:
    return not title or title == DEFAULT_TITLE or title.startswith("Chat ")


def should_update_chat_title(
    messages: Sequence[MessageLike],
    current_title: Optional[str],
) -> Optional[str]:
    """
    Return a better title once a chat has enough context, else None.

    A new title is produced when there are at least two user messages and
    the current title is still generic.
    """
    user_count = sum(1 for m in messages if _field(m, "role") == "user")
    if user_count >= 2 and is_generic_title(current_title):
        return generate_chat_title(messages)
    return None
