#!/usr/bin/env python
"""
Webhook Worker

Standalone process that runs the webhook worker pool and the retry
poller without the HTTP server. Use it with RUN_WORKER_IN_PROCESS=false
on the API instances.

The API cannot hand jobs to this process directly, so new events are
picked up by the poller's PENDING sweep; lower
WEBHOOK_PENDING_GRACE_SECONDS to shorten that delay.

Run with:
    python worker.py
"""

import logging
import signal
import threading

from hubapi.config import get_settings
from hubapi.database import Database
from hubapi.main import start_webhook_worker
from hubapi.services.brand_registry import BrandRegistry
from hubapi.utils.logging_config import setup_logging

logger = logging.getLogger("worker")

stop_event = threading.Event()


def signal_handler(signum, frame):
    """Handle shutdown signals gracefully"""
    logger.info("Received shutdown signal, finishing in-flight jobs...")
    stop_event.set()


def run_worker():
    settings = get_settings()
    setup_logging(settings.log_level, json_format=settings.log_json or settings.is_production)

    # Same startup validation as the API
    BrandRegistry.from_settings(settings)

    db = Database(settings.database_url)
    db.create_tables()

    processor, pool, poller = start_webhook_worker(db, settings)
    logger.info(
        f"Webhook worker started: {settings.webhook_worker_concurrency} workers, "
        f"poll every {settings.retry_poll_interval_seconds}s"
    )
    poller.poll_once()

    stop_event.wait()

    poller.stop()
    pool.stop()
    processor.shutdown()
    db.dispose()
    logger.info("Webhook worker stopped")


if __name__ == "__main__":
    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)
    run_worker()
