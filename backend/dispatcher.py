"""
Job dispatcher entry point: long-polls the job queue and launches one worker per message.

Run from backend/:  python dispatcher.py
"""

import logging
import os
import sys
import time

from dotenv import load_dotenv

from services.config import Settings
from services.dispatcher import JobDispatcher
from services.errors import QueueError
from services.job_queue import SqsJobQueue
from services.launcher import EcsWorkerLauncher

load_dotenv(os.path.join(os.path.dirname(__file__), ".env"))
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("dispatcher")

ERROR_BACKOFF_SECONDS = 5.0


def main() -> int:
    settings = Settings.from_env()
    missing = settings.missing_launch_settings()
    if not settings.queue_url:
        missing.append("SQS_QUEUE_URL")
    if missing:
        logger.error("[dispatcher] Missing required environment variables: %s", ", ".join(missing))
        return 1

    queue = SqsJobQueue(settings.queue_url, region_name=settings.region)
    dispatcher = JobDispatcher(
        EcsWorkerLauncher(settings),
        spot_fraction=settings.spot_fraction,
        spot_max_input_bytes=settings.spot_max_input_bytes,
    )
    logger.info("[dispatcher] Polling %s (cluster=%s)", settings.queue_url, settings.ecs_cluster)
    try:
        while True:
            try:
                dispatcher.poll_once(queue, max_messages=1, wait_seconds=20)
            except QueueError as e:
                logger.error("[dispatcher] Queue receive failed: %s", e)
                time.sleep(ERROR_BACKOFF_SECONDS)
    except KeyboardInterrupt:
        logger.info("[dispatcher] Stopped")
    return 0


if __name__ == "__main__":
    sys.exit(main())
