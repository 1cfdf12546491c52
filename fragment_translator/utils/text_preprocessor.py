"""Text preprocessing utilities for fragments entering and leaving the pipeline."""

import logging
import re
from pathlib import Path

import clipboard

logger = logging.getLogger(__name__)

_WHITESPACE_RUN = re.compile(r"\s+")
_PARAGRAPH_BREAK = re.compile(r"\n\s*\n")
_THINK_BLOCK = re.compile(r"<think>[\s\S]*?</think>")
_TRAILING_NOTE = re.compile(r"\n*[（(]\s*(?:翻译说明|Translation note)[\s\S]*?[）)]\s*$")


def normalize_text(text: str) -> str:
    """Trim the text and collapse internal whitespace runs to single spaces."""
    return _WHITESPACE_RUN.sub(" ", text.strip())


def is_valid_text(text: str) -> bool:
    """Return True when the text carries something a model could translate.

    Empty strings, whitespace, and fragments made only of digits,
    punctuation or symbols are passed through untranslated.
    """
    if not text or not text.strip():
        return False
    return any(ch.isalpha() for ch in text)


def clean_model_output(text: str) -> str:
    """Drop reasoning blocks and trailing translator notes from model output."""
    content = _THINK_BLOCK.sub("", text)
    content = _TRAILING_NOTE.sub("", content)
    return content.strip()


def split_fragments(text: str) -> list[str]:
    """Split a document into blank-line separated fragments."""
    return [part.strip() for part in _PARAGRAPH_BREAK.split(text) if part.strip()]


class TextPreprocessor:
    """Loads source fragments from a file or the clipboard and writes results back."""

    def read_file(self, file_name: str) -> list[str]:
        """Read blank-line separated fragments from ``file_name``.

        Raises:
            FileNotFoundError: If the file does not exist.
        """
        try:
            with Path(file_name).open(encoding="utf-8") as f:
                content = f.read()
        except FileNotFoundError:
            logger.exception("Input file not found: %s", file_name)
            raise
        return split_fragments(content)

    def read_clipboard(self) -> list[str]:
        """Read fragments from the clipboard; an unreadable clipboard yields none."""
        try:
            content = clipboard.paste()
        except Exception as exc:
            logger.warning("Could not read text from the clipboard.", exc_info=exc)
            return []
        return split_fragments(content or "")

    def write_file(self, file_name: str, fragments: list[str]) -> None:
        """Write translated fragments separated by blank lines."""
        with Path(file_name).open("w", encoding="utf-8") as f:
            f.write("\n\n".join(fragments))
            f.write("\n")

    def write_clipboard(self, fragments: list[str]) -> None:
        clipboard.copy("\n\n".join(fragments))
