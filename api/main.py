"""
FastAPI Application — producer webhook + queue inspection.

Provides:
- POST /webhooks/product-created   the "product created" hook: normalize and enqueue
- GET  /health
- GET  /api/v1/queue/stats         pending / in-flight / dead-letter counts
- GET  /api/v1/queue/dead-letters  dead-lettered records for postmortem inspection

The webhook only writes to the queue and answers 202; delivery happens in a
worker (scripts/product_sync.py work, or in-process when
queue.embedded_worker is enabled).
"""
from __future__ import annotations

import asyncio
import structlog
from contextlib import asynccontextmanager
from typing import Any, Optional

from dotenv import load_dotenv
from fastapi import Body, FastAPI, Request

from config.settings import Settings, get_settings
from delivery.client import DeliveryClient
from job_queue.enqueuer import Enqueuer
from job_queue.store_base import BaseMessageStore
from job_queue.store_factory import create_store
from job_queue.worker import RunForever, SyncWorker

logger = structlog.get_logger()


def create_app(settings: Settings = None, store: BaseMessageStore = None) -> FastAPI:
    """Build the API. `store` overrides the configured backend (tests)."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        cfg = settings or get_settings()
        app.state.settings = cfg
        app.state.store = store or create_store(cfg.queue)
        app.state.enqueuer = Enqueuer(app.state.store)

        worker: Optional[SyncWorker] = None
        worker_task: Optional[asyncio.Task] = None
        client: Optional[DeliveryClient] = None
        if cfg.queue.embedded_worker:
            client = DeliveryClient(cfg.delivery)
            worker = SyncWorker(app.state.store, client, cfg.queue, termination=RunForever())
            worker_task = asyncio.create_task(worker.run())

        logger.info("product_sync_api_started",
                    store=type(app.state.store).__name__,
                    embedded_worker=cfg.queue.embedded_worker)
        yield

        if worker is not None:
            worker.stop()
            await worker_task
            await client.close()
        logger.info("product_sync_api_stopped")

    app = FastAPI(
        title="Product Sync API",
        description="Durable outbound product change notifications",
        version="1.0.0",
        lifespan=lifespan,
    )

    @app.get("/health")
    async def health(request: Request):
        stats = await asyncio.to_thread(request.app.state.store.stats)
        return {"status": "ok", "queue": stats.model_dump()}

    @app.post("/webhooks/product-created", status_code=202)
    async def product_created(request: Request, product: dict[str, Any] = Body(...)):
        message = await asyncio.to_thread(request.app.state.enqueuer.enqueue_record, product)
        return {
            "status": "queued",
            "message_id": message.id,
            "idempotency_key": message.idempotency_key,
            "payload": message.payload.model_dump(),
        }

    @app.get("/api/v1/queue/stats")
    async def queue_stats(request: Request):
        stats = await asyncio.to_thread(request.app.state.store.stats)
        return stats.model_dump()

    @app.get("/api/v1/queue/dead-letters")
    async def dead_letters(request: Request):
        records = await asyncio.to_thread(request.app.state.store.dead_letters)
        return {"count": len(records), "items": records}

    return app


load_dotenv()
app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
