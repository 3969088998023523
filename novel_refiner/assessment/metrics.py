"""Text statistics shared by the heuristic scorers."""

import re


def word_count(text: str) -> int:
    return len(text.split())


def repetition_rate(text: str, n: int = 3) -> float:
    """Calculate the ratio of repeated n-grams to total n-grams.

    Args:
        text: Input text to analyze.
        n: Size of n-grams to consider (default 3).

    Returns:
        Float between 0.0 (no repetition) and 1.0 (all repeated).
        Returns 0.0 if text is too short to form any n-grams.
    """
    words = text.lower().split()
    if len(words) < n:
        return 0.0

    ngrams = [tuple(words[i : i + n]) for i in range(len(words) - n + 1)]
    return 1.0 - (len(set(ngrams)) / len(ngrams))


def vocabulary_diversity(text: str) -> float:
    """Type-token ratio (unique words / total words); 0.0 for empty text."""
    words = text.lower().split()
    if not words:
        return 0.0
    return len(set(words)) / len(words)


def avg_sentence_length(text: str) -> float:
    """Average number of words per sentence, splitting on `.`, `!` and `?`."""
    sentences = [s.strip() for s in re.split(r"[.!?]+", text) if s.strip()]
    if not sentences:
        return 0.0
    return sum(len(s.split()) for s in sentences) / len(sentences)


def keyword_hits(text: str, keywords) -> int:
    """Count whole-word occurrences of any keyword (case-insensitive)."""
    lowered = text.lower()
    return sum(len(re.findall(rf"\b{re.escape(k)}\b", lowered)) for k in keywords)


def has_dialogue(text: str) -> bool:
    return bool(re.search(r"[\"“”「]", text))
