"""
Create the job queue and its dead-letter queue.

Run from backend/:  python create_queue.py [queue-name]
Prints the SQS_QUEUE_URL to put in .env.
"""

import logging
import os
import sys

import boto3
from dotenv import load_dotenv

from services.config import Settings
from services.job_queue import create_queue_with_dead_letter

load_dotenv(os.path.join(os.path.dirname(__file__), ".env"))
logging.basicConfig(level=logging.INFO)

DEFAULT_QUEUE_NAME = "video-processing-queue"


def main() -> int:
    queue_name = sys.argv[1] if len(sys.argv) > 1 else DEFAULT_QUEUE_NAME
    settings = Settings.from_env()
    sqs = boto3.client("sqs", region_name=settings.region)
    queue_url, dlq_url = create_queue_with_dead_letter(sqs, queue_name)
    print(f"SQS_QUEUE_URL={queue_url}")
    print(f"# dead-letter queue: {dlq_url}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
