"""Configuration sourced from environment variables.

Required values must be present in the environment (or a ``.env`` file);
batching and dispatch tunables fall back to defaults.
"""

from __future__ import annotations

import os
from typing import TYPE_CHECKING

from dotenv import load_dotenv

if TYPE_CHECKING:
    from collections.abc import Callable

load_dotenv()


def _cast(value: str, caster: Callable[[str], object], name: str) -> object:
    try:
        return caster(value)
    except Exception as exc:  # pragma: no cover - branch exercised via ValueError path
        msg = f"Environment variable {name} is invalid: {exc}"
        raise ValueError(msg) from exc


def _require_env(required: dict[str, Callable[[str], object]]) -> dict[str, object]:
    missing = [key for key in required if not os.getenv(key)]
    if missing:
        missing_str = ", ".join(missing)
        msg = f"Missing required environment variables: {missing_str}"
        raise ValueError(msg)

    values: dict[str, object] = {}
    for key, caster in required.items():
        raw = os.getenv(key)
        assert raw is not None  # for type checkers; guarded by missing check above
        values[key] = _cast(raw, caster, key)
    return values


def _optional_env(
    optional: dict[str, tuple[Callable[[str], object], object]],
) -> dict[str, object]:
    values: dict[str, object] = {}
    for key, (caster, default) in optional.items():
        raw = os.getenv(key)
        values[key] = default if not raw else _cast(raw, caster, key)
    return values


_REQUIRED_VARS: dict[str, Callable[[str], object]] = {
    "OPENAI_MODEL": str,
    "TARGET_LANGUAGE": str,
}

_OPTIONAL_VARS: dict[str, tuple[Callable[[str], object], object]] = {
    "TEMPERATURE": (float, 0.3),
    "BATCH_WINDOW_MS": (int, 80),
    "MAX_TOKENS_PER_BATCH": (int, 3000),
    "MAX_CONCURRENT_BATCHES": (int, 7),
    "BATCH_MAX_RETRIES": (int, 1),
    "BATCH_RETRY_DELAY_SECONDS": (float, 0.5),
    "MIN_BATCH_SIZE": (int, 2),
    "REQUEST_TIMEOUT_SECONDS": (float, 45.0),
    "MAX_OUTPUT_TOKENS": (int, 4096),
    "GLOSSARY_FILE": (str, None),
    "CACHE_FILE": (str, None),
}

_env_values = _require_env(_REQUIRED_VARS)
_opt_values = _optional_env(_OPTIONAL_VARS)

OPENAI_MODEL: str = _env_values["OPENAI_MODEL"]  # type: ignore[assignment]
TARGET_LANGUAGE: str = _env_values["TARGET_LANGUAGE"]  # type: ignore[assignment]
TEMPERATURE: float = _opt_values["TEMPERATURE"]  # type: ignore[assignment]
BATCH_WINDOW_MS: int = _opt_values["BATCH_WINDOW_MS"]  # type: ignore[assignment]
MAX_TOKENS_PER_BATCH: int = _opt_values["MAX_TOKENS_PER_BATCH"]  # type: ignore[assignment]
BATCH_MAX_RETRIES: int = _opt_values["BATCH_MAX_RETRIES"]  # type: ignore[assignment]
BATCH_RETRY_DELAY_SECONDS: float = _opt_values[
    "BATCH_RETRY_DELAY_SECONDS"
]  # type: ignore[assignment]
MIN_BATCH_SIZE: int = _opt_values["MIN_BATCH_SIZE"]  # type: ignore[assignment]
REQUEST_TIMEOUT_SECONDS: float = _opt_values[
    "REQUEST_TIMEOUT_SECONDS"
]  # type: ignore[assignment]
MAX_OUTPUT_TOKENS: int = _opt_values["MAX_OUTPUT_TOKENS"]  # type: ignore[assignment]
GLOSSARY_FILE: str | None = _opt_values["GLOSSARY_FILE"]  # type: ignore[assignment]
CACHE_FILE: str | None = _opt_values["CACHE_FILE"]  # type: ignore[assignment]
_raw_max_batches = _opt_values["MAX_CONCURRENT_BATCHES"]
assert isinstance(_raw_max_batches, int)
MAX_CONCURRENT_BATCHES: int = max(1, min(10, _raw_max_batches))

__all__: tuple[str, ...] = (
    "BATCH_MAX_RETRIES",
    "BATCH_RETRY_DELAY_SECONDS",
    "BATCH_WINDOW_MS",
    "CACHE_FILE",
    "GLOSSARY_FILE",
    "MAX_CONCURRENT_BATCHES",
    "MAX_OUTPUT_TOKENS",
    "MAX_TOKENS_PER_BATCH",
    "MIN_BATCH_SIZE",
    "OPENAI_MODEL",
    "REQUEST_TIMEOUT_SECONDS",
    "TARGET_LANGUAGE",
    "TEMPERATURE",
)
