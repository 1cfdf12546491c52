"""Pending translation request and its completion handle."""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field


@dataclass(slots=True, eq=False)
class TranslationRequest:
    """One fragment waiting for translation.

    ``future`` is the caller's completion handle. Resolving or rejecting a
    request whose future is already done (for example after the queue was
    cleared) is a no-op, so late results are discarded.
    """

    source_text: str
    context: str = ""
    submitted_at: float = field(default_factory=time.time)
    future: asyncio.Future[str] | None = None

    @classmethod
    def create(cls, source_text: str, context: str = "") -> TranslationRequest:
        """Build a request bound to a new future on the running loop."""
        loop = asyncio.get_running_loop()
        return cls(source_text=source_text, context=context, future=loop.create_future())

    @property
    def done(self) -> bool:
        return self.future is not None and self.future.done()

    def resolve(self, text: str) -> bool:
        if self.future is None or self.future.done():
            return False
        self.future.set_result(text)
        return True

    def reject(self, error: BaseException) -> bool:
        if self.future is None or self.future.done():
            return False
        self.future.set_exception(error)
        return True
