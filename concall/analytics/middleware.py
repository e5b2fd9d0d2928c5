from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable

from concall.common.logging import log_event

logger = logging.getLogger(__name__)

TRACKED_PATH = "/api/list_concalls"


class VisitTracker:
    """
    Fire-and-forget visit increments.

    Each increment runs as its own task with a bounded timeout. The task is not
    tied to the request that triggered it: a client going away does not cancel
    it. Failures are logged and otherwise ignored.
    """

    def __init__(self, service_getter: Callable[[], Any], *, timeout_s: float = 5.0) -> None:
        self._service_getter = service_getter
        self.timeout_s = max(0.1, float(timeout_s))
        self._tasks: set[asyncio.Task[None]] = set()

    @property
    def in_flight(self) -> int:
        return len(self._tasks)

    def schedule(self) -> asyncio.Task[None] | None:
        service = self._service_getter()
        if service is None:
            return None
        task = asyncio.create_task(self._increment(service), name="visit-increment")
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _increment(self, service: Any) -> None:
        try:
            await asyncio.wait_for(service.increment_total_visits(), timeout=self.timeout_s)
        except asyncio.TimeoutError:
            log_event(logger, "analytics.increment_timeout", severity="WARNING", timeout_s=self.timeout_s)
        except Exception as e:
            log_event(
                logger,
                "analytics.increment_failed",
                severity="WARNING",
                error_type=type(e).__name__,
                error=str(e),
            )

    async def drain(self, timeout_s: float = 5.0) -> None:
        if not self._tasks:
            return
        await asyncio.wait(set(self._tasks), timeout=timeout_s)


def install_visit_tracking(app: Any, tracker: VisitTracker, *, path: str = TRACKED_PATH) -> None:
    from starlette.requests import Request  # noqa: WPS433

    @app.middleware("http")
    async def _visit_mw(request: Request, call_next):  # type: ignore[no-untyped-def]
        resp = await call_next(request)
        if request.url.path == path and int(getattr(resp, "status_code", 200)) != 304:
            tracker.schedule()
        return resp
