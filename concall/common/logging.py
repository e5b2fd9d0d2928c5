"""
Structured JSON logging + request/correlation IDs (stdlib-only).

- One JSON object per log line (stdout)
- Core fields on every line: service, env, version, sha, request_id, correlation_id,
  event_type, severity
- FastAPI middleware that reads/propagates X-Request-ID and X-Correlation-Id and emits
  a single http.request line per request
"""

from __future__ import annotations

import json
import logging
import os
import sys
import time
import traceback
import uuid
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Iterator, Optional

_REQUEST_ID: ContextVar[Optional[str]] = ContextVar("request_id", default=None)
_CORRELATION_ID: ContextVar[Optional[str]] = ContextVar("correlation_id", default=None)

_RESERVED_ATTRS: frozenset[str] = frozenset(
    {
        # logging.LogRecord built-ins
        "name",
        "msg",
        "args",
        "levelname",
        "levelno",
        "pathname",
        "filename",
        "module",
        "exc_info",
        "exc_text",
        "stack_info",
        "lineno",
        "funcName",
        "created",
        "msecs",
        "relativeCreated",
        "thread",
        "threadName",
        "processName",
        "process",
        "taskName",
        # our injected keys
        "service",
        "env",
        "version",
        "sha",
        "request_id",
        "correlation_id",
        "event_type",
        "severity",
        "message",
        "timestamp",
    }
)


def _utc_ts() -> str:
    return datetime.now(timezone.utc).isoformat()


def _clean_text(v: Any, *, max_len: int = 2000) -> str:
    try:
        s = "" if v is None else str(v)
    except Exception:
        s = ""
    s = s.replace("\n", " ").replace("\r", " ").strip()
    if len(s) > max_len:
        s = s[: max_len - 1] + "…"
    return s


def _env_any(*names: str, default: str = "unknown", max_len: int = 256) -> str:
    for name in names:
        v = os.getenv(name)
        if v is None:
            continue
        s = str(v).strip()
        if s:
            return _clean_text(s, max_len=max_len)
    return default


def _normalize_severity(level: str | int | None) -> str:
    if isinstance(level, int):
        return _normalize_severity(str(logging.getLevelName(level)))
    s = _clean_text(level or "INFO", max_len=16).upper()
    if s in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
        return s
    if s == "WARN":
        return "WARNING"
    if s == "FATAL":
        return "CRITICAL"
    return "INFO"


def default_service_name() -> str:
    return _env_any("SERVICE_NAME", "K_SERVICE", default="concall", max_len=128)


def default_env_name() -> str:
    return _env_any("CONFIG_ENV", "ENVIRONMENT", default="local", max_len=64)


def default_version() -> str:
    return _env_any("APP_VERSION", "K_REVISION", default="unknown", max_len=128)


def default_sha() -> str:
    return _env_any("GIT_SHA", "COMMIT_SHA", "SHORT_SHA", "SOURCE_VERSION", default="unknown", max_len=64)


def get_request_id() -> Optional[str]:
    rid = _REQUEST_ID.get()
    return _clean_text(rid, max_len=128) if rid else None


def get_correlation_id() -> Optional[str]:
    cid = _CORRELATION_ID.get()
    return _clean_text(cid, max_len=128) if cid else None


@contextmanager
def bind_request_id(*, request_id: str | None = None, correlation_id: str | None = None) -> Iterator[str]:
    """Bind request_id (generated when absent) and correlation_id (defaults to request_id)."""
    rid = _clean_text(request_id or "", max_len=128) or uuid.uuid4().hex
    cid = _clean_text(correlation_id or "", max_len=128) or rid
    token = _REQUEST_ID.set(rid)
    ctoken = _CORRELATION_ID.set(cid)
    try:
        yield rid
    finally:
        _CORRELATION_ID.reset(ctoken)
        _REQUEST_ID.reset(token)


class JsonLogFormatter(logging.Formatter):
    def __init__(
        self, *, service: str | None, env: str | None, version: str | None, sha: str | None = None
    ) -> None:
        super().__init__()
        self._service = _clean_text(service or default_service_name(), max_len=128) or "concall"
        self._env = _clean_text(env or default_env_name(), max_len=64) or "local"
        self._version = _clean_text(version or default_version(), max_len=128) or "unknown"
        self._sha = _clean_text(sha or default_sha(), max_len=64) or "unknown"

    def format(self, record: logging.LogRecord) -> str:  # noqa: A003 (format required by logging)
        rid = _clean_text(getattr(record, "request_id", None) or get_request_id() or "", max_len=128) or None
        cid = _clean_text(getattr(record, "correlation_id", None) or get_correlation_id() or rid or "", max_len=128) or None

        payload: dict[str, Any] = {
            "timestamp": _utc_ts(),
            "severity": _normalize_severity(getattr(record, "severity", None) or record.levelname),
            "service": _clean_text(getattr(record, "service", None) or self._service, max_len=128),
            "env": self._env,
            "version": self._version,
            "sha": _clean_text(getattr(record, "sha", None) or self._sha, max_len=64) or "unknown",
            "request_id": rid,
            "correlation_id": cid,
            "event_type": _clean_text(getattr(record, "event_type", None) or "", max_len=128) or "log",
            "message": _clean_text(record.getMessage(), max_len=4000),
            "logger": _clean_text(record.name, max_len=256),
        }

        if record.exc_info:
            try:
                payload["exception"] = "".join(traceback.format_exception(*record.exc_info))[-8000:]
            except Exception:
                payload["exception"] = "exception_format_failed"

        # Fields passed via logger.*(..., extra={...})
        for k, v in record.__dict__.items():
            if k in _RESERVED_ATTRS or k.startswith("_"):
                continue
            payload[str(k)] = v

        return json.dumps(payload, separators=(",", ":"), ensure_ascii=False, default=str)


def _route_uvicorn_through_root() -> None:
    for name in ("uvicorn", "uvicorn.error", "uvicorn.access"):
        lg = logging.getLogger(name)
        lg.handlers = []
        lg.propagate = True


def init_structured_logging(
    *,
    service: str | None = None,
    env: str | None = None,
    version: str | None = None,
    sha: str | None = None,
    level: str | int | None = None,
) -> None:
    """
    Configure stdlib logging to emit JSON lines to stdout.

    Safe to call multiple times (last call wins).
    """
    lvl = level or os.getenv("LOG_LEVEL", "INFO").upper()
    root = logging.getLogger()
    root.setLevel(lvl)

    root.handlers = []
    handler = logging.StreamHandler(stream=sys.stdout)
    handler.setLevel(lvl)
    handler.setFormatter(JsonLogFormatter(service=service, env=env, version=version, sha=sha))
    root.addHandler(handler)

    logging.captureWarnings(True)
    _route_uvicorn_through_root()


def log_event(
    logger: logging.Logger,
    event_type: str,
    *,
    severity: str = "INFO",
    message: str | None = None,
    **fields: Any,
) -> None:
    """
    Convenience wrapper for semantic events with stable `event_type`.
    """
    lvl = getattr(logging, str(severity).upper(), logging.INFO)
    logger.log(
        lvl,
        message or event_type,
        extra={"event_type": _clean_text(event_type, max_len=128), **fields},
    )


def install_request_id_middleware(app: Any, *, service: str | None = None) -> None:
    """
    FastAPI middleware:
    - Read/propagate X-Request-ID (preferred) / X-Correlation-Id (fallback)
    - Bind request_id + correlation_id for the request lifetime
    - Emit one http.request JSON log line per request
    """
    from starlette.requests import Request  # noqa: WPS433

    http_logger = logging.getLogger("http")
    svc = _clean_text(service or default_service_name(), max_len=128) or "concall"

    @app.middleware("http")
    async def _request_id_mw(request: Request, call_next):  # type: ignore[no-untyped-def]
        corr_in = request.headers.get("x-correlation-id") or None
        incoming = request.headers.get("x-request-id") or corr_in
        start = time.perf_counter()
        status_code: int | None = None
        with bind_request_id(request_id=incoming, correlation_id=corr_in) as bound:
            correlation = get_correlation_id() or bound
            try:
                resp = await call_next(request)
                status_code = int(getattr(resp, "status_code", 200))
            except Exception:
                status_code = 500
                raise
            finally:
                dur_ms = int(max(0.0, (time.perf_counter() - start) * 1000.0))
                log_event(
                    http_logger,
                    "http.request",
                    service=svc,
                    method=request.method,
                    path=str(request.url.path),
                    status_code=status_code,
                    duration_ms=dur_ms,
                )

        resp.headers["X-Request-ID"] = bound
        resp.headers["X-Correlation-Id"] = correlation
        return resp
