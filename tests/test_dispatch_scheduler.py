import asyncio
import json
import re

import pytest

from fragment_translator.core.cache import TranslationCache
from fragment_translator.core.dispatch_scheduler import (
    DispatchScheduler,
    build_batch_payload,
    dedupe_batch,
)
from fragment_translator.core.transport import BATCH_MESSAGE_TYPE
from fragment_translator.core.translation_request import TranslationRequest

MARKER = re.compile(r"\[(\d+)\] (.*)")


def translate_payload(origin: str, skip: set[int] | None = None) -> str:
    skip = skip or set()
    return json.dumps(
        {
            "translations": [
                {"index": int(index), "text": f"T:{text}"}
                for index, text in MARKER.findall(origin)
                if int(index) not in skip
            ]
        }
    )


class FakeTransport:
    """Answers batches with numbered JSON and single calls with a prefix."""

    def __init__(self, batch=None, single=None, delay: float = 0.0):
        self.batch = batch or (lambda message: translate_payload(message["origin"]))
        self.single = single or (lambda message: f"T:{message['origin']}")
        self.delay = delay
        self.calls: list[dict] = []
        self.active = 0
        self.max_active = 0

    @property
    def batch_calls(self):
        return [c for c in self.calls if c.get("type") == BATCH_MESSAGE_TYPE]

    @property
    def single_calls(self):
        return [c for c in self.calls if c.get("type") != BATCH_MESSAGE_TYPE]

    async def __call__(self, message):
        self.calls.append(message)
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            await asyncio.sleep(self.delay)
            if message.get("type") == BATCH_MESSAGE_TYPE:
                return self.batch(message)
            return self.single(message)
        finally:
            self.active -= 1


def _scheduler(transport, cache=None, **kwargs):
    kwargs.setdefault("max_retries", 1)
    kwargs.setdefault("retry_delay_seconds", 0)
    cache = cache if cache is not None else TranslationCache()
    return DispatchScheduler(transport, cache, **kwargs)


async def _settle(requests):
    return await asyncio.gather(
        *(request.future for request in requests), return_exceptions=True
    )


class TestHelpers:
    def test_build_batch_payload(self):
        assert build_batch_payload(["a", "b"]) == "[1] a\n\n[2] b"

    def test_dedupe_batch_keeps_first_seen_order(self):
        requests = [TranslationRequest(source_text=t) for t in "abacb"]

        units = dedupe_batch(requests)

        assert [u.source_text for u in units] == ["a", "b", "c"]
        assert [len(u.requests) for u in units] == [2, 2, 1]


class TestDispatchBatch:
    def test_successful_batch_resolves_and_caches(self):
        """GIVEN a healthy transport WHEN dispatching one batch THEN every
        request resolves to its own translation and the cache is filled."""

        async def scenario():
            transport = FakeTransport()
            cache = TranslationCache()
            scheduler = _scheduler(transport, cache)
            requests = [TranslationRequest.create(t) for t in ("one", "two", "three")]

            await scheduler.dispatch_batch(requests)

            return transport, cache, scheduler, await _settle(requests)

        transport, cache, scheduler, results = asyncio.run(scenario())

        assert results == ["T:one", "T:two", "T:three"]
        assert len(transport.batch_calls) == 1
        assert transport.batch_calls[0]["count"] == 3
        assert transport.batch_calls[0]["origin"] == "[1] one\n\n[2] two\n\n[3] three"
        assert cache.get("two") == "T:two"
        assert scheduler.metrics.batches_sent == 1
        assert scheduler.metrics.resolved == 3

    def test_duplicates_are_sent_once_and_fanned_out(self):
        async def scenario():
            transport = FakeTransport()
            scheduler = _scheduler(transport)
            requests = [TranslationRequest.create(t) for t in ("a", "b", "a", "c", "b")]

            await scheduler.dispatch_batch(requests)

            return transport, await _settle(requests)

        transport, results = asyncio.run(scenario())

        assert transport.batch_calls[0]["count"] == 3
        assert results == ["T:a", "T:b", "T:a", "T:c", "T:b"]

    def test_three_identical_requests_share_one_outbound_item(self):
        """GIVEN three identical requests and two unique ones WHEN dispatching
        THEN three items go out and all five futures resolve."""

        async def scenario():
            transport = FakeTransport()
            scheduler = _scheduler(transport)
            texts = ("same", "same", "other", "same", "last")
            requests = [TranslationRequest.create(t) for t in texts]

            await scheduler.dispatch_batch(requests)

            return transport, scheduler, await _settle(requests)

        transport, scheduler, results = asyncio.run(scenario())

        assert transport.batch_calls[0]["count"] == 3
        assert transport.batch_calls[0]["origin"] == "[1] same\n\n[2] other\n\n[3] last"
        assert results == ["T:same", "T:same", "T:other", "T:same", "T:last"]
        assert scheduler.metrics.resolved == 5

    def test_partial_response_keeps_source_for_missing_entry(self):
        async def scenario():
            transport = FakeTransport(
                batch=lambda m: translate_payload(m["origin"], skip={2})
            )
            cache = TranslationCache()
            scheduler = _scheduler(transport, cache)
            requests = [TranslationRequest.create(t) for t in ("a", "b", "c")]

            await scheduler.dispatch_batch(requests)

            return cache, scheduler, await _settle(requests)

        cache, scheduler, results = asyncio.run(scenario())

        assert results == ["T:a", "b", "T:c"]
        assert "b" not in cache
        assert scheduler.metrics.count_mismatches == 1

    def test_cache_is_left_alone_when_disabled(self):
        async def scenario():
            cache = TranslationCache()
            scheduler = _scheduler(FakeTransport(), cache, use_cache=False)
            batch = [TranslationRequest.create(t) for t in ("a", "b")]

            await scheduler.dispatch_batch(batch)
            single = await scheduler.translate_single("c")

            return cache, await _settle(batch), single

        cache, results, single = asyncio.run(scenario())

        assert results == ["T:a", "T:b"]
        assert single == "T:c"
        assert len(cache) == 0

    def test_retry_then_success(self):
        attempts = []

        def flaky(message):
            attempts.append(message)
            if len(attempts) == 1:
                msg = "temporary outage"
                raise RuntimeError(msg)
            return translate_payload(message["origin"])

        async def scenario():
            transport = FakeTransport(batch=flaky)
            scheduler = _scheduler(transport)
            requests = [TranslationRequest.create(t) for t in ("x", "y")]

            await scheduler.dispatch_batch(requests)

            return transport, scheduler, await _settle(requests)

        transport, scheduler, results = asyncio.run(scenario())

        assert results == ["T:x", "T:y"]
        assert len(transport.batch_calls) == 2
        assert transport.single_calls == []
        assert scheduler.metrics.batch_retries == 1

    def test_unparseable_batch_falls_back_to_single_calls(self):
        """GIVEN batch answers that never parse WHEN retries are exhausted
        THEN each request is translated through its own call."""

        async def scenario():
            transport = FakeTransport(batch=lambda m: "I cannot do that.")
            scheduler = _scheduler(transport, max_retries=1)
            requests = [TranslationRequest.create(t) for t in ("p", "q", "r")]

            await scheduler.dispatch_batch(requests)

            return transport, scheduler, await _settle(requests)

        transport, scheduler, results = asyncio.run(scenario())

        assert results == ["T:p", "T:q", "T:r"]
        assert len(transport.batch_calls) == 2
        assert len(transport.single_calls) == 3
        assert scheduler.metrics.fallbacks == 1

    def test_error_object_counts_as_failure(self):
        async def scenario():
            transport = FakeTransport(
                batch=lambda m: {"error": {"message": "quota", "selectedProvider": "x"}}
            )
            scheduler = _scheduler(transport, max_retries=0)
            requests = [TranslationRequest.create(t) for t in ("m", "n")]

            await scheduler.dispatch_batch(requests)

            return transport, await _settle(requests)

        transport, results = asyncio.run(scenario())

        assert results == ["T:m", "T:n"]
        assert len(transport.batch_calls) == 1

    def test_only_the_failing_item_is_rejected(self):
        def single(message):
            if message["origin"] == "bad":
                msg = "content filter"
                raise RuntimeError(msg)
            return f"T:{message['origin']}"

        async def scenario():
            transport = FakeTransport(batch=lambda m: "garbage", single=single)
            scheduler = _scheduler(transport, max_retries=0)
            requests = [TranslationRequest.create(t) for t in ("good", "bad", "fine")]

            await scheduler.dispatch_batch(requests)

            return scheduler, await _settle(requests)

        scheduler, results = asyncio.run(scenario())

        assert results[0] == "T:good"
        assert isinstance(results[1], RuntimeError)
        assert results[2] == "T:fine"
        assert scheduler.metrics.rejected == 1
        assert scheduler.metrics.resolved == 2

    def test_total_failure_rejects_every_request(self):
        def broken(message):
            msg = "network down"
            raise RuntimeError(msg)

        async def scenario():
            transport = FakeTransport(batch=broken, single=broken)
            scheduler = _scheduler(transport)
            requests = [TranslationRequest.create(t) for t in ("a", "b")]

            await scheduler.dispatch_batch(requests)

            return await _settle(requests)

        results = asyncio.run(scenario())

        assert all(isinstance(r, RuntimeError) for r in results)

    def test_implausible_translation_keeps_source(self):
        source = "A sentence that is long enough to check."

        async def scenario():
            transport = FakeTransport(
                batch=lambda m: json.dumps(
                    {"translations": [{"index": 1, "text": "x" * 500}]}
                )
            )
            cache = TranslationCache()
            scheduler = _scheduler(transport, cache)
            requests = [TranslationRequest.create(source)]

            await scheduler.dispatch_batch(requests)

            return cache, scheduler, await _settle(requests)

        cache, scheduler, results = asyncio.run(scenario())

        assert results == [source]
        assert source not in cache
        assert scheduler.metrics.quality_rejections == 1

    def test_already_settled_requests_are_skipped(self):
        async def scenario():
            transport = FakeTransport()
            scheduler = _scheduler(transport)
            settled = TranslationRequest.create("done already")
            settled.resolve("cached")
            fresh = TranslationRequest.create("fresh")

            await scheduler.dispatch_batch([settled, fresh])

            return transport, await _settle([settled, fresh])

        transport, results = asyncio.run(scenario())

        assert results == ["cached", "T:fresh"]
        assert transport.batch_calls[0]["count"] == 1


class TestDispatchAll:
    def test_concurrency_window_is_respected(self):
        """GIVEN five batches and a window of two WHEN dispatching THEN no
        more than two batches are in flight at once."""

        async def scenario():
            transport = FakeTransport(delay=0.02)
            scheduler = _scheduler(transport, max_concurrent_batches=2)
            batches = [
                [TranslationRequest.create(f"b{i}-{j}") for j in range(2)]
                for i in range(5)
            ]

            await scheduler.dispatch_all(batches)

            return transport, batches, await _settle(
                [r for batch in batches for r in batch]
            )

        transport, batches, results = asyncio.run(scenario())

        assert transport.max_active == 2
        assert len(transport.batch_calls) == 5
        expected = [f"T:{r.source_text}" for batch in batches for r in batch]
        assert results == expected

    def test_empty_batch_list_is_a_no_op(self):
        transport = FakeTransport()

        async def scenario():
            await _scheduler(transport).dispatch_all([])

        asyncio.run(scenario())

        assert transport.calls == []


class TestTranslateSingle:
    def test_result_is_cached(self):
        async def scenario():
            cache = TranslationCache()
            text = await _scheduler(FakeTransport(), cache).translate_single("hello")
            return cache, text

        cache, text = asyncio.run(scenario())

        assert text == "T:hello"
        assert cache.get("hello") == "T:hello"

    @pytest.mark.parametrize("answer", ["", "same text"])
    def test_empty_or_echo_returns_source_uncached(self, answer):
        async def scenario():
            cache = TranslationCache()
            transport = FakeTransport(single=lambda m: answer)
            text = await _scheduler(transport, cache).translate_single("same text")
            return cache, text

        cache, text = asyncio.run(scenario())

        assert text == "same text"
        assert len(cache) == 0

    def test_last_error_is_raised_after_retries(self):
        def broken(message):
            msg = "still failing"
            raise RuntimeError(msg)

        transport = FakeTransport(single=broken)

        async def scenario():
            await _scheduler(transport, max_retries=2).translate_single("text")

        with pytest.raises(RuntimeError, match="still failing"):
            asyncio.run(scenario())
        assert len(transport.calls) == 3
