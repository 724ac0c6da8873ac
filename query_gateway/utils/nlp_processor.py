from typing import List

from nltk.tokenize import wordpunct_tokenize


class NLPProcessor:
    """
    Local token analysis using NLTK.

    ``wordpunct_tokenize`` is regex based, so it needs no downloaded corpora
    and works offline.
    """

    def tokenize(self, text: str) -> List[str]:
        if not text:
            return []
        return wordpunct_tokenize(text)

    def count_tokens(self, *texts: str) -> int:
        """Estimate token usage when the translator does not report it."""
        return sum(len(self.tokenize(text)) for text in texts if text)
