"""Repetition detection for streamed generations.

This module provides:
1. is_repetitive() - flags degenerate output where a phrase keeps recurring
2. truncate_words() - cuts a transcript down to its leading words

Reasoning models occasionally fall into loops and repeat the same phrase
until the token budget runs out. The forwarder calls is_repetitive() on the
growing transcript every few dozen characters and aborts the stream as soon
as it fires.
"""

from collections import Counter

MIN_TEXT_CHARS: int = 40
MIN_TEXT_WORDS: int = 24
MAX_PHRASE_WORDS: int = 8
MIN_PHRASE_WORDS: int = 4
MAX_PHRASE_OCCURRENCES: int = 2


def _phrase_counts(words: list[str], phrase_len: int) -> Counter:
    """Count every contiguous window of phrase_len words."""
    return Counter(
        " ".join(words[i:i + phrase_len])
        for i in range(len(words) - phrase_len + 1)
    )


def is_repetitive(text: str) -> bool:
    """Check whether text contains a phrase repeated too many times.

    Longer phrases are checked first so the strongest signal exits early.
    Matching is case-insensitive and ignores whitespace differences.

    Args:
        text: Accumulated transcript

    Returns:
        True if any 4-8 word phrase occurs three or more times
    """
    if len(text) < MIN_TEXT_CHARS:
        return False

    words = text.lower().split()
    if len(words) < MIN_TEXT_WORDS:
        return False

    for phrase_len in range(MAX_PHRASE_WORDS, MIN_PHRASE_WORDS - 1, -1):
        counts = _phrase_counts(words, phrase_len)
        if counts and max(counts.values()) > MAX_PHRASE_OCCURRENCES:
            return True

    return False


def truncate_words(text: str, max_words: int) -> str:
    """Keep only the first max_words whitespace-delimited words."""
    return " ".join(text.split()[:max_words])
