import re
from collections import Counter


def _bigrams(text: str) -> Counter:
    return Counter(text[i:i + 2] for i in range(len(text) - 1))


def dice_coefficient(first: str, second: str) -> float:
    """
    Sørensen-Dice similarity over character bigrams, in [0, 1].

    Whitespace is ignored and comparison is case-sensitive. Identical strings
    score 1; strings shorter than two characters cannot share a bigram and
    score 0.
    """
    first = re.sub(r"\s+", "", first or "")
    second = re.sub(r"\s+", "", second or "")

    if first == second:
        return 1.0
    if len(first) < 2 or len(second) < 2:
        return 0.0

    overlap = sum((_bigrams(first) & _bigrams(second)).values())
    return 2.0 * overlap / (len(first) + len(second) - 2)
