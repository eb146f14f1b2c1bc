#!/usr/bin/env python3
"""
Product Sync — enqueue product changes and run the delivery worker.

Usage:
    python scripts/product_sync.py produce                 # enqueue the demo product
    python scripts/product_sync.py work                    # drain the queue, exit when idle
    python scripts/product_sync.py work --forever -w 4     # service mode, 4 workers
    python scripts/product_sync.py send                    # one direct POST, no queue
    python scripts/product_sync.py send-async              # background POST, short grace window
    python scripts/product_sync.py stats                   # queue counts + dead letters

    --config PATH overrides PRODUCT_SYNC_CONFIG / config/settings.yaml
"""
import argparse
import asyncio
import json
import os
import sys

# Ensure app root is on path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import structlog
from dotenv import load_dotenv

from config.settings import Settings, load_settings
from delivery.client import DeliveryClient
from delivery.modes import FireAndForgetDispatcher, deliver_once
from job_queue.enqueuer import Enqueuer
from job_queue.store_factory import create_store
from job_queue.worker import RunForever, StopAfterIdlePolls, run_workers
from models.schemas import build_payload
from utils.logging import configure_logging

logger = structlog.get_logger()

DEMO_QUEUED_PRODUCT = {"id": 789, "name": "Advanced Demo Product", "price": 99.99, "stock": 3}
DEMO_DIRECT_PRODUCT = {"id": 123, "name": "Demo Product", "price": 49.90, "stock": 15}
DEMO_ASYNC_PRODUCT = {"id": 456, "name": "Async Demo Product", "price": 29.90, "stock": 7}


def run_produce(settings: Settings, record: dict = None) -> str:
    logger.info("producer_demo_start")
    enqueuer = Enqueuer(create_store(settings.queue))
    message = enqueuer.enqueue_record(record or DEMO_QUEUED_PRODUCT)
    logger.info("producer_demo_end", key=message.id)
    return message.id


async def run_work(settings: Settings, workers: int = 1, forever: bool = False) -> list:
    store = create_store(settings.queue)
    max_idle = settings.queue.max_idle_polls

    def termination():
        if forever or max_idle <= 0:
            return RunForever()
        return StopAfterIdlePolls(max_idle)

    logger.info("worker_run_start", workers=workers, forever=forever)
    async with DeliveryClient(settings.delivery) as client:
        stats = await run_workers(
            store, client, settings.queue,
            count=workers,
            termination_factory=termination,
        )
    logger.info("worker_run_end",
                delivered=sum(s.delivered for s in stats),
                retried=sum(s.retried for s in stats),
                dead_lettered=sum(s.dead_lettered for s in stats))
    return stats


async def run_send(settings: Settings, record: dict = None):
    payload = build_payload(record or DEMO_DIRECT_PRODUCT)
    logger.info("direct_send_start", product_id=payload.id)
    async with DeliveryClient(settings.delivery) as client:
        result = await deliver_once(client, payload)
    logger.info("direct_send_end", note="caller waited for the HTTP call")
    return result


async def run_send_async(settings: Settings, record: dict = None, grace_seconds: float = 0.15) -> int:
    payload = build_payload(record or DEMO_ASYNC_PRODUCT)
    dispatcher = FireAndForgetDispatcher(DeliveryClient(settings.delivery))
    dispatcher.submit(payload)
    logger.info("background_send_returned", note="hook returned before the HTTP call finished")
    still_running = await dispatcher.drive(grace_seconds)
    await dispatcher.close()
    return still_running


def run_stats(settings: Settings) -> dict:
    store = create_store(settings.queue)
    report = {
        "stats": store.stats().model_dump(),
        "dead_letters": store.dead_letters(),
    }
    print(json.dumps(report, indent=2, ensure_ascii=False))
    return report


def main(argv=None):
    parser = argparse.ArgumentParser(description="Durable product sync")
    parser.add_argument("--config", help="Path to settings YAML")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("produce", help="Enqueue the demo product")
    work = sub.add_parser("work", help="Run the delivery worker")
    work.add_argument("-w", "--workers", type=int, default=1, help="Concurrent workers")
    work.add_argument("--forever", action="store_true", help="Do not exit when idle")
    sub.add_parser("send", help="Synchronous single-shot delivery (not durable)")
    sub.add_parser("send-async", help="Fire-and-forget delivery (not durable)")
    sub.add_parser("stats", help="Show queue counts and dead letters")

    args = parser.parse_args(argv)

    load_dotenv()
    settings = load_settings(args.config)
    configure_logging(settings.logging)

    if args.command == "produce":
        run_produce(settings)
    elif args.command == "work":
        try:
            asyncio.run(run_work(settings, workers=args.workers, forever=args.forever))
        except KeyboardInterrupt:
            logger.info("worker_interrupted")
    elif args.command == "send":
        asyncio.run(run_send(settings))
    elif args.command == "send-async":
        asyncio.run(run_send_async(settings))
    elif args.command == "stats":
        run_stats(settings)
    return 0


if __name__ == "__main__":
    sys.exit(main())
