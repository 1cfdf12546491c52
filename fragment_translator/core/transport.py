"""Boundary between the pipeline and the model provider.

A transport is any async callable taking a message dict and returning the raw
model content. Batch messages look like::

    {"type": "batch_translate", "context": ..., "origin": ..., "count": n}

and single-item messages carry only ``context`` and ``origin``. Whatever the
transport returns is normalised once by ``normalize_transport_result`` so the
rest of the pipeline never re-checks its shape.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

from openai import AsyncOpenAI

from fragment_translator import config
from fragment_translator.core.errors import (
    PermanentTranslationError,
    TransientTranslationError,
)
from fragment_translator.core.translation_config import TranslationConfig
from fragment_translator.utils.text_preprocessor import clean_model_output

logger = logging.getLogger(__name__)

BATCH_MESSAGE_TYPE = "batch_translate"

Transport = Callable[[dict[str, Any]], Awaitable[Any]]


@dataclass(frozen=True, slots=True)
class TransportOk:
    """Raw content returned by the model: a string or a structured object."""

    content: Any


@dataclass(frozen=True, slots=True)
class TransportErrorShape:
    """An error value returned in place of content."""

    message: str
    provider: str = "unknown"


TransportResult = TransportOk | TransportErrorShape


def normalize_transport_result(raw: Any) -> TransportResult:
    """Classify a raw transport return value.

    ``None`` and ``{"error": ...}`` objects become ``TransportErrorShape``;
    anything else is content for the parser, which rejects shapes it does
    not recognise.
    """
    if isinstance(raw, TransportOk | TransportErrorShape):
        return raw
    if raw is None:
        return TransportErrorShape(message="Transport returned no content")
    if isinstance(raw, str):
        return TransportOk(content=raw)
    if isinstance(raw, dict) and "error" in raw:
        error = raw["error"]
        provider = str(raw.get("provider", "unknown"))
        if isinstance(error, dict):
            provider = str(error.get("selectedProvider", provider))
            message = str(error.get("message", "Unknown error"))
            suggestion = error.get("suggestion")
            if suggestion:
                message = f"{message} - {suggestion}"
        else:
            message = str(error)
        return TransportErrorShape(message=message, provider=provider)
    return TransportOk(content=raw)


class OpenAITransport:
    """Transport backed by the OpenAI Chat Completions API."""

    def __init__(  # noqa: PLR0913
        self,
        translation_config: TranslationConfig | None = None,
        client: AsyncOpenAI | None = None,
        timeout: float = config.REQUEST_TIMEOUT_SECONDS,
        max_output_tokens: int = config.MAX_OUTPUT_TOKENS,
        provider: str = "openai",
    ) -> None:
        self.config: TranslationConfig = translation_config or TranslationConfig()
        self.client: AsyncOpenAI = client or AsyncOpenAI(timeout=timeout)
        self.max_output_tokens: int = max_output_tokens
        self.provider: str = provider

    async def __call__(self, message: dict[str, Any]) -> str:
        is_batch = message.get("type") == BATCH_MESSAGE_TYPE
        messages = self.config.build_messages(
            origin=str(message.get("origin", "")),
            context=str(message.get("context", "")),
            count=message.get("count") if is_batch else None,
        )

        extra: dict[str, Any] = {}
        if is_batch:
            extra["response_format"] = {"type": "json_object"}

        try:
            response = await self.client.chat.completions.create(
                model=self.config.model,
                messages=messages,
                temperature=self.config.temperature,
                max_tokens=self.max_output_tokens,
                **extra,
            )
        except Exception as exc:
            logger.exception("OpenAI API call failed (batch=%s)", is_batch)
            raise TransientTranslationError(f"[{self.provider}] {exc}") from exc

        request_id = getattr(response, "id", None) or "unknown"
        if not response.choices:
            raise PermanentTranslationError(
                f"[{self.provider}] Response has no choices (request={request_id})"
            )

        choice = response.choices[0]
        if choice.finish_reason == "length":
            logger.warning(
                "[%s] Response truncated at the output token limit", request_id
            )

        content = choice.message.content
        if not content:
            raise PermanentTranslationError(
                f"[{self.provider}] Empty content (request={request_id})"
            )

        return clean_model_output(str(content))
