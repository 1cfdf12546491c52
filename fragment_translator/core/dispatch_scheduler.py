"""Bounded-concurrency dispatch of translation batches.

Each batch is sent as one numbered payload. A batch that fails (transport
error or unparseable response) is retried, then split into single-item calls
so one bad fragment cannot sink its siblings. Only a request whose own
single-item call fails is rejected.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from fragment_translator import config
from fragment_translator.core.errors import (
    PermanentTranslationError,
    TransientTranslationError,
)
from fragment_translator.core.response_parser import (
    ResponseParser,
    parse_single_translation,
)
from fragment_translator.core.transport import (
    BATCH_MESSAGE_TYPE,
    Transport,
    TransportErrorShape,
    normalize_transport_result,
)

if TYPE_CHECKING:
    from fragment_translator.core.cache import TranslationCache
    from fragment_translator.core.translation_request import TranslationRequest

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class DispatchMetrics:
    """Counters for one scheduler's lifetime."""

    batches_sent: int = 0
    batch_retries: int = 0
    fallbacks: int = 0
    single_calls: int = 0
    count_mismatches: int = 0
    quality_rejections: int = 0
    resolved: int = 0
    rejected: int = 0


@dataclass(slots=True)
class DedupedUnit:
    """One outbound text and every request that receives its result."""

    source_text: str
    requests: list[TranslationRequest] = field(default_factory=list)


def dedupe_batch(batch: list[TranslationRequest]) -> list[DedupedUnit]:
    """Collapse requests with identical source text, keeping first-seen order."""
    if len({request.source_text for request in batch}) == len(batch):
        return [DedupedUnit(request.source_text, [request]) for request in batch]

    units: dict[str, DedupedUnit] = {}
    for request in batch:
        unit = units.get(request.source_text)
        if unit is None:
            unit = units[request.source_text] = DedupedUnit(request.source_text)
        unit.requests.append(request)
    return list(units.values())


def build_batch_payload(texts: list[str]) -> str:
    """Number texts from 1 and separate them by a blank line."""
    return "\n\n".join(f"[{i}] {text}" for i, text in enumerate(texts, start=1))


class DispatchScheduler:
    """Send batches through a transport with a sliding concurrency window."""

    def __init__(  # noqa: PLR0913
        self,
        transport: Transport,
        cache: TranslationCache,
        parser: ResponseParser | None = None,
        max_concurrent_batches: int = config.MAX_CONCURRENT_BATCHES,
        max_retries: int = config.BATCH_MAX_RETRIES,
        retry_delay_seconds: float = config.BATCH_RETRY_DELAY_SECONDS,
        min_length_ratio: float = 0.1,
        max_length_ratio: float = 6.0,
        quality_min_source_length: int = 20,
        use_cache: bool = True,
    ) -> None:
        self.transport = transport
        self.cache = cache
        self.use_cache = use_cache
        self.parser = parser or ResponseParser()
        self.max_concurrent_batches = max(1, max_concurrent_batches)
        self.max_retries = max(0, max_retries)
        self.retry_delay_seconds = max(0.0, retry_delay_seconds)
        self.min_length_ratio = min_length_ratio
        self.max_length_ratio = max_length_ratio
        self.quality_min_source_length = quality_min_source_length
        self.metrics = DispatchMetrics()
        self._batch_semaphore = asyncio.Semaphore(self.max_concurrent_batches)
        self._item_semaphore = asyncio.Semaphore(self.max_concurrent_batches)
        self._batch_ids = itertools.count(1)

    async def dispatch_all(self, batches: list[list[TranslationRequest]]) -> None:
        """Dispatch every batch, at most ``max_concurrent_batches`` at a time.

        A new batch starts as soon as any in-flight batch finishes. Each
        batch only settles its own requests.
        """
        if not batches:
            return

        async def run(batch: list[TranslationRequest]) -> None:
            async with self._batch_semaphore:
                await self.dispatch_batch(batch)

        logger.info(
            "dispatching %d batches (max_concurrent=%d)",
            len(batches),
            self.max_concurrent_batches,
        )
        await asyncio.gather(*(run(batch) for batch in batches))

    async def dispatch_batch(self, batch: list[TranslationRequest]) -> None:
        """Translate one batch with retry, then fall back to per-item calls."""
        pending = [request for request in batch if not request.done]
        if not pending:
            return

        batch_id = next(self._batch_ids)
        units = dedupe_batch(pending)
        if len(units) < len(pending):
            logger.info(
                "batch=%d deduplicated %d requests to %d unique texts",
                batch_id,
                len(pending),
                len(units),
            )

        max_attempts = self.max_retries + 1
        for attempt in range(1, max_attempts + 1):
            try:
                texts = await self._send_batch(batch_id, units, pending[0].context)
            except Exception as exc:
                logger.warning(
                    "batch=%d attempt=%d/%d failed: %s",
                    batch_id,
                    attempt,
                    max_attempts,
                    exc,
                )
                if attempt < max_attempts:
                    self.metrics.batch_retries += 1
                    if self.retry_delay_seconds > 0:
                        await asyncio.sleep(self.retry_delay_seconds)
                continue
            else:
                self._distribute(batch_id, units, texts)
                return

        logger.warning(
            "batch=%d retry limit exceeded, falling back to %d single-item calls",
            batch_id,
            len(units),
        )
        self.metrics.fallbacks += 1
        await asyncio.gather(*(self._dispatch_unit(unit) for unit in units))

    async def translate_single(self, source_text: str, context: str = "") -> str:
        """Translate one text outside any batch, retrying like a batch.

        Returns the source text when the model answers with nothing or
        echoes the source.

        Raises:
            Exception: The last error once all attempts are exhausted.
        """
        max_attempts = self.max_retries + 1
        attempt = 0
        while True:
            attempt += 1
            try:
                text = await self._send_single(source_text, context)
            except Exception as exc:
                logger.warning(
                    "single attempt=%d/%d failed: %s", attempt, max_attempts, exc
                )
                if attempt >= max_attempts:
                    raise
                if self.retry_delay_seconds > 0:
                    await asyncio.sleep(self.retry_delay_seconds)
                continue

            if not text or text == source_text:
                return source_text
            if self.use_cache:
                self.cache.set(source_text, text)
            return text

    async def dispatch_single(self, requests: list[TranslationRequest]) -> None:
        """Send each request through the single-item path independently."""
        pending = [request for request in requests if not request.done]
        await asyncio.gather(*(self._dispatch_unit(u) for u in dedupe_batch(pending)))

    async def _send_batch(
        self, batch_id: int, units: list[DedupedUnit], context: str
    ) -> list[str | None]:
        texts = [unit.source_text for unit in units]
        message = {
            "type": BATCH_MESSAGE_TYPE,
            "context": context,
            "origin": build_batch_payload(texts),
            "count": len(texts),
        }
        self.metrics.batches_sent += 1
        logger.debug("batch=%d sending %d texts", batch_id, len(texts))

        result = normalize_transport_result(await self.transport(message))
        if isinstance(result, TransportErrorShape):
            msg = f"[{result.provider}] {result.message}"
            raise TransientTranslationError(msg)

        outcome = self.parser.parse(
            result.content, len(texts), request_id=f"batch-{batch_id}"
        )
        if not outcome.success:
            msg = outcome.reason or "Response could not be parsed"
            raise PermanentTranslationError(msg)

        if len(outcome.translations) != len(texts):
            self.metrics.count_mismatches += 1
            logger.warning(
                "batch=%d count mismatch: sent %d, received %d (method=%s)",
                batch_id,
                len(texts),
                len(outcome.translations),
                outcome.method,
            )
        return outcome.texts(len(texts))

    async def _send_single(self, source_text: str, context: str) -> str:
        self.metrics.single_calls += 1
        raw = await self.transport({"context": context, "origin": source_text})
        result = normalize_transport_result(raw)
        if isinstance(result, TransportErrorShape):
            msg = f"[{result.provider}] {result.message}"
            raise TransientTranslationError(msg)
        return parse_single_translation(result.content)

    async def _dispatch_unit(self, unit: DedupedUnit) -> None:
        if all(request.done for request in unit.requests):
            return
        context = unit.requests[0].context
        async with self._item_semaphore:
            try:
                text = await self.translate_single(unit.source_text, context)
            except Exception as exc:
                logger.exception(
                    "single-item translation failed for %d request(s)",
                    len(unit.requests),
                )
                for request in unit.requests:
                    if request.reject(exc):
                        self.metrics.rejected += 1
                return
        for request in unit.requests:
            if request.resolve(text):
                self.metrics.resolved += 1

    def _distribute(
        self, batch_id: int, units: list[DedupedUnit], texts: list[str | None]
    ) -> None:
        for unit, text in zip(units, texts, strict=True):
            if text is None:
                logger.debug("batch=%d missing entry, keeping source text", batch_id)
                final = unit.source_text
            elif not self._is_plausible(unit.source_text, text):
                self.metrics.quality_rejections += 1
                logger.warning(
                    "batch=%d implausible length ratio (%d -> %d chars), "
                    "keeping source text",
                    batch_id,
                    len(unit.source_text),
                    len(text),
                )
                final = unit.source_text
            else:
                if self.use_cache:
                    self.cache.set(unit.source_text, text)
                final = text

            for request in unit.requests:
                if request.resolve(final):
                    self.metrics.resolved += 1

    def _is_plausible(self, source_text: str, text: str) -> bool:
        if not text.strip():
            return False
        if len(source_text) < self.quality_min_source_length:
            return True
        ratio = len(text) / len(source_text)
        return self.min_length_ratio <= ratio <= self.max_length_ratio
