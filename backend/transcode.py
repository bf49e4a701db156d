"""
Transcode worker entry point. Runs once per job inside the worker container.

Job parameters come from the environment (see WorkerParams.from_env); exit code 0 on
success, 1 on any failure (the failure is also reported to WEBHOOK_URL).
"""

import logging
import os
import sys

from dotenv import load_dotenv

from services.gcs import StorageGateway
from services.transcode_worker import TranscodeWorker, WorkerParams

load_dotenv(os.path.join(os.path.dirname(__file__), ".env"))
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("transcode")


def main() -> int:
    try:
        params = WorkerParams.from_env()
    except ValueError as e:
        logger.error("[transcode] %s", e)
        return 1

    worker = TranscodeWorker(
        params,
        source=StorageGateway(params.video_bucket),
        output=StorageGateway(params.output_bucket),
    )
    try:
        worker.run()
    except Exception as e:
        logger.error("[transcode] Video processing failed: %s", e)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
