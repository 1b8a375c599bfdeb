#!/usr/bin/env python
import os
import logging
import sys
import argparse

# Fix for macOS fork safety issue with OBJC - must be set before other imports
os.environ["OBJC_DISABLE_INITIALIZE_FORK_SAFETY"] = "YES"

# Configure logging for the worker
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    stream=sys.stdout
)

from rq import Worker  # noqa: E402
from app.core.config import settings  # noqa: E402
from app.core.queue import sync_redis_conn  # noqa: E402

# This script starts an RQ worker for rating refreshes.
# Several workers may share the queue; the per-collection Redis lock
# keeps refreshes of one (project, user) from overlapping.

if __name__ == '__main__':
    parser = argparse.ArgumentParser(description='Start an RQ rating worker')
    parser.add_argument(
        '--queues',
        type=str,
        default=settings.RATING_QUEUE_NAME,
        help=f'Comma-separated list of queue names to listen to (default: {settings.RATING_QUEUE_NAME})'
    )
    args = parser.parse_args()
    
    # Parse queue names
    queue_names = [q.strip() for q in args.queues.split(',')]
    
    logger = logging.getLogger(__name__)
    logger.info(f"Starting RQ worker listening on queues: {queue_names}")
    
    worker = Worker(queue_names, connection=sync_redis_conn)
    worker.work()
