"""Resilient parsing of batch translation responses.

Model output is never trusted to be well-formed. ``ResponseParser.parse``
tries, in order:

1. a structured object validated directly,
2. the string with code fences and surrounding prose removed,
3. a repair of JSON that was cut off mid-array,
4. ``[n] text`` markers in plain text,

and stops at the first strategy that recovers at least one entry. When all
of them fail a failure outcome with diagnostics is returned instead of an
exception.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any

from fragment_translator.core.errors import ResponseShapeError

logger = logging.getLogger(__name__)

METHOD_DIRECT = "direct"
METHOD_CLEANED = "cleaned"
METHOD_JSON_REPAIR = "json-repair"
METHOD_REGEX_FALLBACK = "regex-fallback"

PREVIEW_LENGTH = 200

_FENCE_PATTERN = re.compile(r"```(?:json)?", re.IGNORECASE)
_THINK_PATTERN = re.compile(r"<think>[\s\S]*?</think>")
_MARKER_LINE_PATTERN = re.compile(r"\[(\d+)\]\s*([\s\S]*?)(?=\s*\[\d+\]|\Z)")
_LEAKED_MARKER_PATTERN = re.compile(r"^\[\d+\]\s*")
_TRANSLATIONS_KEY = '"translations"'


@dataclass(slots=True)
class ParsedTranslation:
    """One recovered translation; ``index`` is 1-based within the batch sent."""

    index: int
    text: str


@dataclass(slots=True)
class ParseDiagnostics:
    content_type: str
    content_length: int = 0
    cleaned_preview: str = ""
    strategies: list[str] = field(default_factory=list)


@dataclass(slots=True)
class ParseOutcome:
    """Result of parsing one raw response; ``translations`` is sorted by index."""

    success: bool
    translations: list[ParsedTranslation]
    diagnostics: ParseDiagnostics
    method: str | None = None
    reason: str | None = None

    def texts(self, expected_count: int) -> list[str | None]:
        """Map entries onto batch positions; ``None`` marks a gap.

        Responses that number items from 0 instead of 1 are detected by the
        presence of index 0 and shifted accordingly. Out-of-range indices are
        ignored and the first entry for a position wins.
        """
        results: list[str | None] = [None] * expected_count
        offset = 0 if any(t.index == 0 for t in self.translations) else 1
        for item in self.translations:
            position = item.index - offset
            if 0 <= position < expected_count and results[position] is None:
                results[position] = item.text
        return results


def clean_json_string(raw_content: str) -> str:
    """Strip reasoning blocks, code fences and prose around the JSON object."""
    cleaned = _THINK_PATTERN.sub("", raw_content).strip()

    if "```" in cleaned:
        cleaned = _FENCE_PATTERN.sub("", cleaned).replace("```", "").strip()

    start = cleaned.find("{")
    end = cleaned.rfind("}")
    if start != -1 and end > start:
        cleaned = cleaned[start : end + 1]

    return cleaned


def _coerce_index(value: Any) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    return None


def validate_translations(data: Any) -> list[ParsedTranslation] | None:
    """Validate ``{"translations": [{"index": int, "text": str}]}``.

    A singular ``translation`` list is accepted as a misspelled key, and
    ``[index, text]`` pairs are accepted as items. Any malformed item rejects
    the whole payload.
    """
    if not isinstance(data, dict):
        return None

    items = data.get("translations")
    if items is None and isinstance(data.get("translation"), list):
        logger.warning("Response used singular 'translation' key")
        items = data["translation"]
    if not isinstance(items, list):
        return None

    parsed: list[ParsedTranslation] = []
    for item in items:
        if isinstance(item, dict):
            index = _coerce_index(item.get("index"))
            text = item.get("text")
        elif isinstance(item, list) and len(item) >= 2:
            index = _coerce_index(item[0])
            text = item[1]
        else:
            return None
        if index is None or not isinstance(text, str):
            return None
        parsed.append(ParsedTranslation(index=index, text=text))
    return parsed


def _translations_array_body(content: str) -> str | None:
    key_pos = content.find(_TRANSLATIONS_KEY)
    if key_pos == -1:
        return None
    bracket = content.find("[", key_pos + len(_TRANSLATIONS_KEY))
    if bracket == -1:
        return None
    return content[bracket + 1 :]


def _complete_objects(array_body: str) -> list[str]:
    """Return the source of every complete top-level ``{...}`` in an array body.

    Quotes inside strings are tracked with escape awareness; scanning stops at
    the closing ``]`` of the array. A trailing incomplete object is dropped.
    """
    objects: list[str] = []
    depth = 0
    in_string = False
    escape_next = False
    start = -1

    for pos, char in enumerate(array_body):
        if escape_next:
            escape_next = False
            continue
        if in_string:
            if char == "\\":
                escape_next = True
            elif char == '"':
                in_string = False
            continue

        if char == '"':
            in_string = True
        elif char == "{":
            if depth == 0:
                start = pos
            depth += 1
        elif char == "}" and depth > 0:
            depth -= 1
            if depth == 0:
                objects.append(array_body[start : pos + 1])
        elif char == "]" and depth == 0:
            break

    return objects


def repair_truncated_json(content: str) -> dict[str, list[dict[str, Any]]] | None:
    """Recover every complete translation object from a truncated response.

    Returns a reassembled ``{"translations": [...]}`` payload, or ``None``
    when no complete object with both ``index`` and ``text`` survives.
    """
    array_body = _translations_array_body(content)
    if array_body is None:
        return None

    survivors: list[dict[str, Any]] = []
    for source in _complete_objects(array_body):
        try:
            obj = json.loads(source)
        except json.JSONDecodeError:
            logger.debug("Skipping unparseable object during repair: %.80s", source)
            continue
        if not isinstance(obj, dict):
            continue

        index = obj.get("index")
        if isinstance(index, str) and index.strip().isdigit():
            index = int(index.strip())
        index = _coerce_index(index)
        text = obj.get("text")
        if index is not None and isinstance(text, str):
            survivors.append({"index": index, "text": text})

    if not survivors:
        return None
    return {"translations": survivors}


def extract_by_markers(content: str) -> list[ParsedTranslation]:
    """Extract ``[n] text`` entries, each running to the next marker or the end."""
    results: list[ParsedTranslation] = []
    for match in _MARKER_LINE_PATTERN.finditer(content):
        text = match.group(2).strip()
        if text:
            results.append(ParsedTranslation(index=int(match.group(1)), text=text))
    return results


def remove_index_markers(
    translations: list[ParsedTranslation],
) -> list[ParsedTranslation]:
    """Strip an ``[n]`` marker that the model echoed into the translated text."""
    return [
        ParsedTranslation(index=t.index, text=_LEAKED_MARKER_PATTERN.sub("", t.text))
        for t in translations
    ]


def parse_single_translation(content: Any) -> str:
    """Read a single-item answer: ``{"translation": "..."}`` or plain text.

    Raises:
        ResponseShapeError: If the content is a structured object without a
            ``translation`` field.
    """
    if isinstance(content, dict):
        value = content.get("translation")
        if value is None:
            msg = f"Unexpected single-item response keys: {sorted(content)}"
            raise ResponseShapeError(msg)
        return str(value)
    if not isinstance(content, str):
        msg = f"Unexpected single-item response type: {type(content).__name__}"
        raise ResponseShapeError(msg)

    candidate = _FENCE_PATTERN.sub("", content).replace("```", "").strip()
    if candidate.startswith("{"):
        try:
            decoded = json.loads(candidate)
        except json.JSONDecodeError:
            return content.strip()
        if isinstance(decoded, dict) and decoded.get("translation") is not None:
            return str(decoded["translation"])
    return content.strip()


class ResponseParser:
    """Turn a raw model response into ordered ``ParsedTranslation`` entries."""

    def parse(
        self,
        raw_response: Any,
        expected_count: int,
        request_id: str = "unknown",
    ) -> ParseOutcome:
        diagnostics = ParseDiagnostics(content_type=type(raw_response).__name__)

        if not isinstance(raw_response, str):
            diagnostics.strategies.append(METHOD_DIRECT)
            validated = validate_translations(raw_response)
            if validated:
                return self._success(validated, METHOD_DIRECT, diagnostics)
            return self._failure(
                "Structured response does not match the translations shape",
                diagnostics,
                request_id,
            )

        diagnostics.content_length = len(raw_response)
        regex_source = raw_response

        diagnostics.strategies.append(METHOD_CLEANED)
        cleaned = clean_json_string(raw_response)
        diagnostics.cleaned_preview = cleaned[:PREVIEW_LENGTH]
        try:
            decoded = json.loads(cleaned)
        except json.JSONDecodeError as exc:
            logger.debug("[%s] Direct JSON parse failed: %s", request_id, exc)
        else:
            validated = validate_translations(decoded)
            if validated:
                return self._success(validated, METHOD_CLEANED, diagnostics)
            if isinstance(decoded, dict) and isinstance(
                decoded.get("translation"), str
            ):
                logger.warning(
                    "[%s] 'translation' holds a plain string, reading markers",
                    request_id,
                )
                regex_source = decoded["translation"]

        if _TRANSLATIONS_KEY in raw_response:
            diagnostics.strategies.append(METHOD_JSON_REPAIR)
            repaired = repair_truncated_json(raw_response)
            validated = validate_translations(repaired) if repaired else None
            if validated:
                logger.info(
                    "[%s] Recovered %d entries from truncated JSON",
                    request_id,
                    len(validated),
                )
                return self._success(validated, METHOD_JSON_REPAIR, diagnostics)

        diagnostics.strategies.append(METHOD_REGEX_FALLBACK)
        extracted = extract_by_markers(regex_source)
        if extracted:
            logger.info(
                "[%s] Regex fallback recovered %d entries (expected %d)",
                request_id,
                len(extracted),
                expected_count,
            )
            return self._success(extracted, METHOD_REGEX_FALLBACK, diagnostics)

        return self._failure("No strategy recovered any entry", diagnostics, request_id)

    def _success(
        self,
        translations: list[ParsedTranslation],
        method: str,
        diagnostics: ParseDiagnostics,
    ) -> ParseOutcome:
        return ParseOutcome(
            success=True,
            translations=sorted(
                remove_index_markers(translations), key=lambda t: t.index
            ),
            diagnostics=diagnostics,
            method=method,
        )

    def _failure(
        self, reason: str, diagnostics: ParseDiagnostics, request_id: str
    ) -> ParseOutcome:
        logger.warning(
            "[%s] Could not parse response: %s (type=%s, length=%d, tried=%s, "
            "preview=%r)",
            request_id,
            reason,
            diagnostics.content_type,
            diagnostics.content_length,
            ",".join(diagnostics.strategies),
            diagnostics.cleaned_preview,
        )
        return ParseOutcome(
            success=False,
            translations=[],
            diagnostics=diagnostics,
            reason=reason,
        )
