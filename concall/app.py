from __future__ import annotations

import asyncio
import contextlib
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, AsyncContextManager, AsyncIterator, Callable, Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from concall import __version__
from concall.analytics.middleware import VisitTracker, install_visit_tracking
from concall.analytics.service import AnalyticsService
from concall.common.config import ServiceConfig, from_env
from concall.common.logging import install_request_id_middleware, log_event
from concall.ingest.service import ConcallIngestor
from concall.realtime.hub import BroadcastHub
from concall.routes import analytics as analytics_routes
from concall.routes import concalls as concall_routes

logger = logging.getLogger(__name__)

SERVICE_NAME = "concall-analyser"


@dataclass
class AppComponents:
    guidance_store: Any
    analytics: AnalyticsService
    hub: BroadcastHub
    ingestor: Optional[ConcallIngestor]


ComponentsFactory = Callable[[ServiceConfig], AsyncContextManager[AppComponents]]


@asynccontextmanager
async def production_components(cfg: ServiceConfig) -> AsyncIterator[AppComponents]:
    """
    Postgres pool + schema, shared httpx client, Gemini client, hub.

    Everything opened here is released in reverse order on exit.
    """
    from concall.enrichment.gemini_client import GeminiEnrichmentClient  # noqa: WPS433
    from concall.ingest.feed_api import BseFeedClient  # noqa: WPS433
    from concall.ingest.http_transport import build_http_client  # noqa: WPS433
    from concall.ingest.retriever import HttpDocumentRetriever  # noqa: WPS433
    from concall.persistence.analytics_store import AnalyticsStore  # noqa: WPS433
    from concall.persistence.guidance_store import GuidanceStore  # noqa: WPS433
    from concall.persistence.postgres_client import ensure_schema, open_pool  # noqa: WPS433

    pool = await open_pool(cfg.database_url)
    try:
        await ensure_schema(pool)
        guidance_store = GuidanceStore(pool)
        hub = BroadcastHub(send_capacity=cfg.hub_send_capacity, broadcast_capacity=cfg.hub_broadcast_capacity)
        analytics = AnalyticsService(store=AnalyticsStore(pool), hub=hub)

        http = build_http_client()
        try:
            ingestor: Optional[ConcallIngestor] = None
            if cfg.gemini_api_key:
                ingestor = ConcallIngestor(
                    feed=BseFeedClient(http=http, base_url=cfg.feed_base_url, referer=cfg.feed_referer),
                    retriever=HttpDocumentRetriever(
                        http=http, base_url=cfg.attachment_base_url, referer=cfg.feed_referer
                    ),
                    enrichment=GeminiEnrichmentClient(
                        api_key=cfg.gemini_api_key,
                        model=cfg.gemini_model,
                        fiscal_year=cfg.fiscal_year,
                    ),
                    store=guidance_store,
                    dest_dir=cfg.dest_dir,
                    inter_item_delay_s=cfg.inter_item_delay_s,
                )
            else:
                log_event(logger, "config.gemini_key_missing", severity="WARNING", ingestion_enabled=False)

            yield AppComponents(
                guidance_store=guidance_store,
                analytics=analytics,
                hub=hub,
                ingestor=ingestor,
            )
        finally:
            await http.aclose()
    finally:
        await pool.close()


def create_app(
    cfg: ServiceConfig | None = None,
    *,
    components: ComponentsFactory = production_components,
) -> FastAPI:
    conf = cfg or from_env()
    tracker = VisitTracker(lambda: getattr(app.state, "analytics", None))

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        app.state.config = conf
        log_event(logger, "startup", env=conf.env, host=conf.host, version=__version__)

        async with components(conf) as c:
            app.state.guidance_store = c.guidance_store
            app.state.analytics = c.analytics
            app.state.hub = c.hub
            app.state.ingestor = c.ingestor
            tracker.timeout_s = max(0.1, float(conf.visit_increment_timeout_s))

            hub_task = asyncio.create_task(c.hub.run(), name="broadcast-hub")
            try:
                yield
            finally:
                await tracker.drain(timeout_s=conf.visit_increment_timeout_s)
                hub_task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await hub_task
                log_event(logger, "shutdown", **c.hub.stats_dict())

    app = FastAPI(title="Concall Analyser", version=__version__, lifespan=lifespan)

    app.include_router(concall_routes.router, tags=["concalls"])
    app.include_router(analytics_routes.router, tags=["analytics"])

    @app.get("/healthz")
    async def healthz() -> dict[str, Any]:
        return {"status": "ok", "service": SERVICE_NAME, "ts": datetime.now(timezone.utc).isoformat()}

    app.state.visit_tracker = tracker
    install_visit_tracking(app, tracker)
    install_request_id_middleware(app, service=SERVICE_NAME)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(conf.cors_origins),
        allow_credentials=False,
        allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
        allow_headers=["*"],
    )
    return app
