from __future__ import annotations

import logging
from typing import Protocol

from concall.common.logging import log_event
from concall.persistence.analytics_store import TOTAL_VISITS
from concall.realtime.hub import BroadcastHub

logger = logging.getLogger(__name__)


class CounterStore(Protocol):
    async def increment(self, name: str = TOTAL_VISITS) -> int: ...

    async def get(self, name: str = TOTAL_VISITS) -> int: ...


class AnalyticsService:
    def __init__(self, *, store: CounterStore, hub: BroadcastHub | None = None) -> None:
        self.store = store
        self.hub = hub

    async def increment_total_visits(self) -> int:
        """
        Bump the visit counter and publish the new total to observers.

        Store errors propagate; publishing never raises.
        """
        total = await self.store.increment(TOTAL_VISITS)
        if self.hub is not None:
            published = self.hub.publish_analytics(total)
            log_event(
                logger,
                "analytics.visit_recorded",
                total_visits=total,
                observers=self.hub.observer_count,
                published=published,
            )
        return total

    async def get_summary(self) -> dict[str, int]:
        return {"total_visits": await self.store.get(TOTAL_VISITS)}
