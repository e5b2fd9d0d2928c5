from __future__ import annotations

import pytest

_CONFIG_ENV_VARS = (
    "CONFIG_ENV",
    "PORT",
    "HOST",
    "DATABASE_URL",
    "GEMINI_API_KEY",
    "GEMINI_MODEL",
    "GUIDANCE_FISCAL_YEAR",
    "DEST_DIR",
    "PIPELINE_DEADLINE_S",
    "INTER_ITEM_DELAY_S",
    "HUB_SEND_CAPACITY",
    "HUB_BROADCAST_CAPACITY",
    "VISIT_INCREMENT_TIMEOUT_S",
    "CORS_ORIGINS",
    "SHUTDOWN_GRACE_S",
)


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch):
    """Tests never see the developer's real service configuration."""
    for name in _CONFIG_ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    yield
