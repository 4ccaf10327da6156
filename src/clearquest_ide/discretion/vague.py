"""
Non-substantive answer detection.
"""

from __future__ import annotations

import re

from clearquest_ide.policy.config import VagueAnswerDetection, VagueDetectionMode

# Words that carry no fact on their own once a vague phrase is removed.
FILLER_WORDS = {
    "i",
    "im",
    "i'm",
    "um",
    "uh",
    "umm",
    "sorry",
    "really",
    "honestly",
    "just",
    "that",
    "it",
    "was",
    "the",
    "exactly",
    "anymore",
    "so",
    "well",
    "and",
    "or",
    "but",
    "any",
    "of",
}


class VagueAnswerDetector:
    """
    Decides whether an answer is non-substantive.

    In TOKENS mode an answer is vague when, after removing every configured
    vague phrase, nothing but filler words remain. In MIN_LENGTH mode it is
    vague when shorter than `min_substantive_chars`. EITHER combines both.
    """

    def __init__(self, settings: VagueAnswerDetection | None = None) -> None:
        self._settings = settings or VagueAnswerDetection()
        phrases = sorted(
            (token.strip().lower() for token in self._settings.vague_tokens if token.strip()),
            key=len,
            reverse=True,
        )
        self._token_pattern = (
            re.compile(r"(?<![\w'])(?:" + "|".join(re.escape(p) for p in phrases) + r")(?![\w'])")
            if phrases
            else None
        )

    def is_non_substantive(self, answer_text: str | None) -> bool:
        """Whether the answer carries no usable fact."""
        text = (answer_text or "").strip()
        if not text:
            return True

        mode = self._settings.mode
        if mode in (VagueDetectionMode.MIN_LENGTH, VagueDetectionMode.EITHER):
            if len(text) < self._settings.min_substantive_chars:
                return True
        if mode in (VagueDetectionMode.TOKENS, VagueDetectionMode.EITHER):
            return self._is_only_vague_tokens(text)
        return False

    def _is_only_vague_tokens(self, text: str) -> bool:
        if self._token_pattern is None:
            return False
        lowered = text.lower().replace("’", "'")
        if not self._token_pattern.search(lowered):
            return False
        remainder = self._token_pattern.sub(" ", lowered)
        words = re.findall(r"[\w']+", remainder)
        return all(word in FILLER_WORDS for word in words)
