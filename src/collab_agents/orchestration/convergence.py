"""Lexical convergence scoring for debate rounds.

The score is a cheap overlap heuristic, not a judgement of agreement: two
replies that share most of their words score high even if they argue
opposite positions.
"""

from itertools import combinations


def word_set(text: str) -> set[str]:
    """Lowercase words longer than two characters, trimmed of punctuation."""
    words = set()
    for raw in text.lower().split():
        if len(raw) <= 2:
            continue
        word = _strip_non_alnum(raw)
        if word:
            words.add(word)
    return words


def _strip_non_alnum(word: str) -> str:
    start, end = 0, len(word)
    while start < end and not word[start].isalnum():
        start += 1
    while end > start and not word[end - 1].isalnum():
        end -= 1
    return word[start:end]


def jaccard_similarity(first: str, second: str) -> float:
    """Jaccard similarity of the two texts' word sets.

    Two texts without qualifying words are identical (1.0); exactly one empty
    text shares nothing (0.0).
    """
    a, b = word_set(first), word_set(second)
    if not a and not b:
        return 1.0
    if not a or not b:
        return 0.0
    return len(a & b) / len(a | b)


def convergence_score(replies: list[str]) -> float:
    """Average pairwise Jaccard similarity over one round's replies.

    Returns:
        A score in [0, 1]; 0.0 when fewer than two replies are available.
    """
    if len(replies) < 2:
        return 0.0
    scores = [jaccard_similarity(a, b) for a, b in combinations(replies, 2)]
    return sum(scores) / len(scores)
