"""Heuristic token estimation for batch sizing."""

import math
import re


class TokenEstimator:
    """Cheap, deterministic approximation of how expensive a text is to send.

    No model tokenizer is involved: CJK ideographs cost 2 units each, every
    maximal run of Latin letters costs 1.3 units, and any other character
    costs 0.5 units. The result may be off by up to ~2x against a real
    tokenizer, so ceilings derived from it are advisory only.
    """

    CJK_WEIGHT: float = 2.0
    LATIN_RUN_WEIGHT: float = 1.3
    OTHER_WEIGHT: float = 0.5

    _CJK_PATTERN = re.compile(r"[\u4e00-\u9fff]")
    _LATIN_RUN_PATTERN = re.compile(r"[A-Za-z]+")

    def estimate(self, text: str) -> int:
        """Return the estimated token cost of ``text`` (0 for empty text)."""
        if not text:
            return 0

        cjk_count = len(self._CJK_PATTERN.findall(text))
        latin_runs = self._LATIN_RUN_PATTERN.findall(text)
        latin_chars = sum(len(run) for run in latin_runs)
        other_count = len(text) - cjk_count - latin_chars

        return math.ceil(
            cjk_count * self.CJK_WEIGHT
            + len(latin_runs) * self.LATIN_RUN_WEIGHT
            + other_count * self.OTHER_WEIGHT
        )


_DEFAULT_ESTIMATOR = TokenEstimator()


def estimate_tokens(text: str) -> int:
    """Module-level shortcut using a shared estimator."""
    return _DEFAULT_ESTIMATOR.estimate(text)
