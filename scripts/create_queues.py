#!/usr/bin/env python3
"""
Script: create_queues.py
Description: Create the relay SQS work queues on a local or dev stack.

Creates the standard and priority message queues with a redrive policy
to a shared dead-letter queue. The delivery worker relies on that
policy to retire jobs that keep failing.

Usage:
    python scripts/create_queues.py
    python scripts/create_queues.py --base-name relay-messages --endpoint-url http://localhost:4566

Set MESSAGE_QUEUE_URL and PRIORITY_QUEUE_URL to the printed URLs.
"""

import argparse
import sys

import boto3
from botocore.exceptions import ClientError

from relay.config.settings import Settings
from relay.sqs_queue.schema import create_queues
from relay.utils.logger import get_logger

logger = get_logger(__name__)


def main() -> int:
    parser = argparse.ArgumentParser(description="Create relay SQS queues")
    parser.add_argument(
        "--base-name",
        type=str,
        default="relay-messages",
        help="Standard queue name; priority and dead-letter names derive from it"
    )
    parser.add_argument(
        "--endpoint-url",
        type=str,
        default=None,
        help="SQS endpoint override (default: AWS_ENDPOINT_URL setting)"
    )
    parser.add_argument(
        "--region",
        type=str,
        default=None,
        help="AWS region (default: AWS_REGION setting)"
    )
    args = parser.parse_args()

    settings = Settings()
    sqs = boto3.client(
        'sqs',
        region_name=args.region or settings.aws_region,
        endpoint_url=args.endpoint_url or settings.aws_endpoint_url
    )

    try:
        urls = create_queues(sqs, settings, base_name=args.base_name)
    except ClientError as e:
        logger.error(
            "Failed to create queues",
            error_code=e.response['Error']['Code'],
            error_message=e.response['Error']['Message']
        )
        print(f"ERROR: {e.response['Error']['Message']}")
        return 1

    print(f"MESSAGE_QUEUE_URL={urls['standard']}")
    print(f"PRIORITY_QUEUE_URL={urls['priority']}")
    print(f"Dead-letter queue: {urls['dead_letter']}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
