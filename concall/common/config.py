from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

from concall.common.errors import ConfigError

DEFAULT_FEED_BASE_URL = "https://api.bseindia.com/BseIndiaAPI/api/AnnSubCategoryGetData/w"
DEFAULT_ATTACHMENT_BASE_URL = "https://www.bseindia.com/xml-data/corpfiling/AttachLive/"
DEFAULT_REFERER = "https://www.bseindia.com/"


@dataclass(frozen=True)
class ServiceConfig:
    """
    Process configuration, read once at startup.

    Components receive the pieces they need at construction time; nothing in the
    package reads the environment after `from_env()` returns.
    """

    env: str
    host: str
    port: int
    database_url: str
    gemini_api_key: str | None
    gemini_model: str
    fiscal_year: str
    dest_dir: Path

    feed_base_url: str
    attachment_base_url: str
    feed_referer: str

    pipeline_deadline_s: float
    inter_item_delay_s: float

    hub_send_capacity: int
    hub_broadcast_capacity: int
    visit_increment_timeout_s: float

    shutdown_grace_s: float
    cors_origins: list[str] = field(default_factory=lambda: ["*"])


def _env(name: str, default: str | None = None) -> str | None:
    v = os.getenv(name)
    if v is None:
        return default
    s = str(v).strip()
    return s if s else default


def _env_int(name: str, default: int) -> int:
    raw = _env(name)
    if raw is None:
        return int(default)
    try:
        return int(raw)
    except ValueError as e:
        raise ConfigError(f"{name} must be an integer, got {raw!r}") from e


def _env_float(name: str, default: float) -> float:
    raw = _env(name)
    if raw is None:
        return float(default)
    try:
        return float(raw)
    except ValueError as e:
        raise ConfigError(f"{name} must be a number, got {raw!r}") from e


def from_env() -> ServiceConfig:
    env = (_env("CONFIG_ENV", "local") or "local").lower()
    if env not in {"local", "prod"}:
        raise ConfigError(f"unknown CONFIG_ENV: {env}")

    port = _env_int("PORT", 8080)
    if env == "local":
        host = f"localhost:{port}"
    else:
        host = _env("HOST") or ""
        if not host:
            raise ConfigError("HOST environment variable must be set for production")

    database_url = _env("DATABASE_URL")
    if not database_url:
        raise ConfigError(f"missing required configuration for {env} environment: DATABASE_URL")

    origins = [o.strip() for o in (_env("CORS_ORIGINS", "*") or "*").split(",") if o.strip()]

    return ServiceConfig(
        env=env,
        host=host,
        port=port,
        database_url=database_url,
        gemini_api_key=_env("GEMINI_API_KEY"),
        gemini_model=_env("GEMINI_MODEL", "gemini-2.5-flash") or "gemini-2.5-flash",
        fiscal_year=(_env("GUIDANCE_FISCAL_YEAR", "fy26") or "fy26").lower(),
        dest_dir=Path(_env("DEST_DIR", "data/concalls") or "data/concalls"),
        feed_base_url=_env("FEED_BASE_URL", DEFAULT_FEED_BASE_URL) or DEFAULT_FEED_BASE_URL,
        attachment_base_url=_env("ATTACHMENT_BASE_URL", DEFAULT_ATTACHMENT_BASE_URL) or DEFAULT_ATTACHMENT_BASE_URL,
        feed_referer=_env("FEED_REFERER", DEFAULT_REFERER) or DEFAULT_REFERER,
        pipeline_deadline_s=max(1.0, _env_float("PIPELINE_DEADLINE_S", 3600.0)),
        inter_item_delay_s=max(0.0, _env_float("INTER_ITEM_DELAY_S", 2.0)),
        hub_send_capacity=max(1, _env_int("HUB_SEND_CAPACITY", 256)),
        hub_broadcast_capacity=max(1, _env_int("HUB_BROADCAST_CAPACITY", 256)),
        visit_increment_timeout_s=max(0.1, _env_float("VISIT_INCREMENT_TIMEOUT_S", 5.0)),
        shutdown_grace_s=max(0.0, _env_float("SHUTDOWN_GRACE_S", 30.0)),
        cors_origins=origins or ["*"],
    )
