#!/usr/bin/env python3
"""
Garden Exchange Trigger Worker
Follows the MongoDB change stream and runs the reputation, notification
and archive triggers for every change.
"""

import logging
import signal
import threading

from src.context import build_context
from src.db.mongodb_client import MongoDBClient

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)

logger = logging.getLogger(__name__)


def main():
    store = MongoDBClient()
    context = build_context(store=store, dispatch_triggers=False)
    stop = threading.Event()

    def shutdown(signum, frame):
        logger.info("Stopping trigger worker...")
        stop.set()

    signal.signal(signal.SIGINT, shutdown)
    signal.signal(signal.SIGTERM, shutdown)

    logger.info("Starting Garden Exchange trigger worker...")
    store.watch_changes(context.triggers, stop)
    logger.info("Trigger worker stopped.")


if __name__ == "__main__":
    main()
