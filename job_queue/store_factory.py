"""
Store Factory — Create the right message store backend from configuration.

Configuration in settings.yaml:
    queue:
      #   "file"   — pending/work/dlq directories on disk (default, durable)
      #   "memory" — in-memory dicts (development, testing)
      store_backend: "file"
      base_dir: "./var/queue"

Usage:
    from job_queue.store_factory import create_store
    store = create_store(settings.queue)
"""
from __future__ import annotations

import structlog
from typing import Callable

from config.settings import QueueConfig
from job_queue.store_base import BaseMessageStore

logger = structlog.get_logger()


def create_store(config: QueueConfig = None, clock: Callable[[], float] = None) -> BaseMessageStore:
    """Factory: create the message store backend named by config.store_backend."""
    config = config or QueueConfig()
    backend = config.store_backend

    if backend == "memory":
        from job_queue.store_memory import InMemoryMessageStore
        store = InMemoryMessageStore.from_config(config, clock=clock)
        logger.info("store_created", backend="memory")
        return store

    if backend != "file":
        raise ValueError(f"Unknown queue store backend: {backend!r}")

    from job_queue.store_file import FileMessageStore
    store = FileMessageStore.from_config(config, clock=clock)
    logger.info("store_created", backend="file", base_dir=config.base_dir)
    return store
