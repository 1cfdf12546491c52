"""Token-bounded grouping of translation requests."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from fragment_translator import config
from fragment_translator.utils.token_counter import TokenEstimator

if TYPE_CHECKING:
    from fragment_translator.core.translation_request import TranslationRequest

logger = logging.getLogger(__name__)


class BatchGrouper:
    """Partition requests into groups whose estimated cost stays under a ceiling."""

    def __init__(
        self,
        max_tokens_per_group: int = config.MAX_TOKENS_PER_BATCH,
        estimator: TokenEstimator | None = None,
    ) -> None:
        self.max_tokens_per_group = max(1, max_tokens_per_group)
        self.estimator = estimator or TokenEstimator()

    def group(
        self,
        requests: list[TranslationRequest],
        max_tokens_per_group: int | None = None,
    ) -> list[list[TranslationRequest]]:
        """Greedy first-fit by arrival order.

        A request that alone exceeds the ceiling is emitted as its own group
        rather than truncated. Arrival order is preserved within and across
        groups because response indices are positional.
        """
        ceiling = max_tokens_per_group or self.max_tokens_per_group
        groups: list[list[TranslationRequest]] = []
        current: list[TranslationRequest] = []
        current_tokens = 0

        for request in requests:
            tokens = self.estimator.estimate(request.source_text)

            if tokens > ceiling:
                if current:
                    groups.append(current)
                    current = []
                    current_tokens = 0
                logger.warning(
                    "group=%d single request over limit tokens=%d",
                    len(groups) + 1,
                    tokens,
                )
                groups.append([request])
                continue

            if current and current_tokens + tokens > ceiling:
                groups.append(current)
                current = []
                current_tokens = 0

            current.append(request)
            current_tokens += tokens

        if current:
            groups.append(current)

        logger.debug("grouped %d requests into %d groups", len(requests), len(groups))
        return groups
