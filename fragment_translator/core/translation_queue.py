"""
Entry point for fragment translation.

Accumulates single translation requests over a short time window, groups
them by estimated token cost and hands the groups to the dispatch scheduler.
Every caller receives an ``asyncio.Future`` that is resolved with the
translation (or the source text as a safe fallback) or rejected when the
request could not be salvaged or the queue was cleared.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, replace
from typing import TYPE_CHECKING

from fragment_translator import config
from fragment_translator.core.batch_grouper import BatchGrouper
from fragment_translator.core.cache import TranslationCache
from fragment_translator.core.dispatch_scheduler import (
    DispatchMetrics,
    DispatchScheduler,
)
from fragment_translator.core.errors import QueueClearedError
from fragment_translator.core.translation_request import TranslationRequest
from fragment_translator.utils.text_preprocessor import is_valid_text

if TYPE_CHECKING:
    from types import TracebackType

    from fragment_translator.core.transport import Transport

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class QueueMetrics:
    """Snapshot of queue activity."""

    enqueued: int
    cache_hits: int
    skipped: int
    pending: int
    in_flight: int
    dispatch: DispatchMetrics


class TranslationQueue:
    """
    Buffer translation requests and dispatch them in token-bounded batches.

    All state lives on the instance, so independent queues can coexist. The
    queue runs on a single event loop; the only suspension points are the
    transport calls made by the scheduler.
    """

    def __init__(  # noqa: PLR0913
        self,
        transport: Transport,
        cache: TranslationCache | None = None,
        scheduler: DispatchScheduler | None = None,
        grouper: BatchGrouper | None = None,
        window_ms: int = config.BATCH_WINDOW_MS,
        min_batch_size: int = config.MIN_BATCH_SIZE,
        use_cache: bool = True,
    ) -> None:
        """
        Initialize the queue.

        Args:
            transport: Async callable that sends messages to the model
            cache: Shared translation cache (a new one when omitted)
            scheduler: Dispatch scheduler (built from transport and cache when omitted)
            grouper: Batch grouper (default token ceiling from config when omitted)
            window_ms: Accumulation window before pending requests are dispatched
            min_batch_size: Fewer pending requests than this are sent one by one
            use_cache: Consult and fill the cache
        """
        self.cache = cache if cache is not None else TranslationCache()
        self.scheduler = scheduler or DispatchScheduler(
            transport, self.cache, use_cache=use_cache
        )
        self.grouper = grouper or BatchGrouper()
        self.window_seconds = max(0, window_ms) / 1000
        self.min_batch_size = max(1, min_batch_size)
        self.use_cache = use_cache

        self._pending: list[TranslationRequest] = []
        self._in_flight: set[TranslationRequest] = set()
        self._timer: asyncio.TimerHandle | None = None
        self._tasks: set[asyncio.Task[None]] = set()
        self._disposed = False

        self._enqueued = 0
        self._cache_hits = 0
        self._skipped = 0

        logger.debug(
            "TranslationQueue initialized: window=%.3fs, min_batch_size=%d",
            self.window_seconds,
            self.min_batch_size,
        )

    async def __aenter__(self) -> TranslationQueue:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        if exc_type is None:
            await self.flush()
        self.dispose()

    def enqueue(self, source_text: str, context: str = "") -> asyncio.Future[str]:
        """
        Request a translation of one fragment.

        Untranslatable text and cache hits resolve immediately without joining
        a batch. Everything else waits at most one window before dispatch.

        Raises:
            RuntimeError: If the queue has been disposed or no loop is running
        """
        if self._disposed:
            msg = "TranslationQueue has been disposed"
            raise RuntimeError(msg)

        loop = asyncio.get_running_loop()
        self._enqueued += 1

        if not is_valid_text(source_text):
            self._skipped += 1
            return self._completed(loop, source_text)

        if self.use_cache:
            cached = self.cache.get(source_text)
            if cached is not None:
                self._cache_hits += 1
                return self._completed(loop, cached)

        request = TranslationRequest.create(source_text, context)
        self._pending.append(request)
        if self._timer is None:
            self._timer = loop.call_later(self.window_seconds, self._on_timer)

        assert request.future is not None
        return request.future

    async def flush(self) -> None:
        """Process everything pending now and wait for dispatch to finish."""
        self._cancel_timer()
        await self._process_pending()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)

    def clear(self) -> None:
        """Reject every pending and in-flight request and empty the queue.

        Dispatches already in flight still run to completion; their results
        are discarded.
        """
        self._cancel_timer()
        error = QueueClearedError()
        cancelled = 0
        for request in [*self._pending, *self._in_flight]:
            if request.reject(error):
                cancelled += 1
        self._pending = []
        self._in_flight.clear()
        if cancelled:
            logger.info("Translation queue cleared, %d request(s) rejected", cancelled)

    def dispose(self) -> None:
        """Clear the queue and refuse further requests. Idempotent."""
        self.clear()
        self._disposed = True

    async def translate_many(self, texts: list[str], context: str = "") -> list[str]:
        """
        Translate a known list of texts directly, without the time window.

        Results follow input order. A text whose translation failed comes
        back unchanged.

        Raises:
            QueueClearedError: If the queue was cleared while translating
        """
        results: list[str | None] = [None] * len(texts)
        requests: list[TranslationRequest] = []
        positions: list[int] = []

        for position, text in enumerate(texts):
            if not is_valid_text(text):
                results[position] = text
                continue
            cached = self.cache.get(text) if self.use_cache else None
            if cached is not None:
                self._cache_hits += 1
                results[position] = cached
                continue
            requests.append(TranslationRequest.create(text, context))
            positions.append(position)

        self._enqueued += len(texts)
        if requests:
            await self._dispatch(requests, batched=True)
            outcomes = await asyncio.gather(
                *(request.future for request in requests if request.future),
                return_exceptions=True,
            )
            for position, outcome in zip(positions, outcomes, strict=True):
                if isinstance(outcome, QueueClearedError):
                    raise outcome
                if isinstance(outcome, BaseException):
                    logger.warning(
                        "text=%d failed, keeping source text: %s", position, outcome
                    )
                    results[position] = texts[position]
                else:
                    results[position] = outcome

        logger.info(
            "translate_many finished: %d texts, %d dispatched",
            len(texts),
            len(requests),
        )
        return [text if text is not None else "" for text in results]

    def get_metrics(self) -> QueueMetrics:
        """Return a snapshot of the queue and scheduler counters."""
        return QueueMetrics(
            enqueued=self._enqueued,
            cache_hits=self._cache_hits,
            skipped=self._skipped,
            pending=len(self._pending),
            in_flight=len(self._in_flight),
            dispatch=replace(self.scheduler.metrics),
        )

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    def _completed(
        self, loop: asyncio.AbstractEventLoop, text: str
    ) -> asyncio.Future[str]:
        future: asyncio.Future[str] = loop.create_future()
        future.set_result(text)
        return future

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _on_timer(self) -> None:
        self._timer = None
        task = asyncio.get_running_loop().create_task(self._process_pending())
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _process_pending(self) -> None:
        requests, self._pending = self._pending, []
        requests = [request for request in requests if not request.done]
        if not requests:
            return

        batched = len(requests) >= self.min_batch_size
        logger.info(
            "processing %d pending request(s) (%s)",
            len(requests),
            "batched" if batched else "single",
        )
        await self._dispatch(requests, batched=batched)

    async def _dispatch(
        self, requests: list[TranslationRequest], *, batched: bool
    ) -> None:
        self._in_flight.update(requests)
        try:
            if batched:
                await self.scheduler.dispatch_all(self.grouper.group(requests))
            else:
                await self.scheduler.dispatch_single(requests)
        except Exception as exc:
            logger.exception("dispatch failed unexpectedly")
            for request in requests:
                request.reject(exc)
        finally:
            self._in_flight.difference_update(requests)
