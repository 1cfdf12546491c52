"""Pytest configuration for env-based settings."""

import importlib
import os

import pytest

# Ensure required environment variables are present before modules import config.
# Values are test-friendly defaults and can be overridden within individual tests.
_DEFAULT_ENV = {
    "OPENAI_MODEL": "gpt-4.1-mini",
    "TARGET_LANGUAGE": "Korean",
    "TEMPERATURE": "0.3",
    "BATCH_WINDOW_MS": "10",
    "MAX_TOKENS_PER_BATCH": "3000",
    "MAX_CONCURRENT_BATCHES": "5",
    "BATCH_MAX_RETRIES": "1",
    "BATCH_RETRY_DELAY_SECONDS": "0",
    "MIN_BATCH_SIZE": "2",
    # Safe test default so the OpenAI client can instantiate during unit tests.
    # setdefault() ensures we never override a real secret in the caller env.
    "OPENAI_API_KEY": "test-api-key",
}

for key, value in _DEFAULT_ENV.items():
    os.environ.setdefault(key, value)

# Import the config module *after* setting default environment variables.
import fragment_translator.config as cfg  # noqa: E402


@pytest.fixture(autouse=True)
def reset_config_module():
    """Ensure config reflects current env between tests."""
    yield
    importlib.reload(cfg)
