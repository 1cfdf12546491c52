"""In-memory translation cache with optional JSON persistence."""

import json
import logging
from datetime import datetime
from pathlib import Path

logger = logging.getLogger(__name__)


class TranslationCache:
    """Map source text to a previously obtained translation.

    Entries live for the lifetime of the process; there is no eviction. A
    miss is always recoverable through normal dispatch, so the cache never
    acts as the only record of a translation.
    """

    def __init__(self) -> None:
        self._entries: dict[str, str] = {}

    def get(self, source_text: str) -> str | None:
        return self._entries.get(source_text)

    def set(self, source_text: str, text: str) -> None:
        self._entries[source_text] = text

    def set_dual(self, before: str, after: str) -> None:
        """Store a markup replacement keyed by its rendered form.

        Both ``before`` and the already-translated ``after`` map to ``after``
        so a lookup by exact markup succeeds before and after replacement.
        """
        self._entries[before] = after
        self._entries[after] = after

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, source_text: object) -> bool:
        return source_text in self._entries

    def load(self, path: str) -> None:
        """Merge entries from a JSON file.

        A missing or corrupted file leaves the cache as it was.
        """
        cache_file = Path(path)
        if not cache_file.exists():
            logger.debug("No cache file found at %s", cache_file)
            return

        try:
            with cache_file.open(encoding="utf-8") as f:
                state = json.load(f)
        except (json.JSONDecodeError, OSError) as e:
            logger.warning("Failed to load cache file: %s. Starting empty", e)
            return

        entries = state.get("entries", {}) if isinstance(state, dict) else None
        if not isinstance(entries, dict):
            logger.warning(
                "Failed to load cache file: %s has no entries object. Keeping current entries",
                cache_file,
            )
            return

        loaded = 0
        for key, value in entries.items():
            if isinstance(key, str) and isinstance(value, str):
                self._entries[key] = value
                loaded += 1
        logger.info("Cache loaded from %s: %d entries", cache_file, loaded)

    def save(self, path: str) -> None:
        """Write all entries to a JSON file."""
        state = {
            "version": "1.0",
            "saved_at": datetime.now().isoformat(),
            "entries": self._entries,
        }

        try:
            with Path(path).open("w", encoding="utf-8") as f:
                json.dump(state, f, ensure_ascii=False, indent=2)
            logger.debug("Cache saved to %s", path)
        except OSError:
            logger.exception("Failed to save cache")
