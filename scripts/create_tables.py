#!/usr/bin/env python3
"""
Script: create_tables.py
Description: Create the relay DynamoDB tables on a local or dev stack.

Creates the webhook, dead-letter, presence, offline message and
receipt tables with the same key schema the service expects, and
enables TTL on the tables whose entries expire.

Usage:
    python scripts/create_tables.py
    python scripts/create_tables.py --endpoint-url http://localhost:4566

This script requires AWS credentials (any values work for local stacks).
"""

import argparse
import sys

import boto3
from botocore.exceptions import ClientError

from relay.config.settings import Settings
from relay.storage.schema import create_tables, table_definitions
from relay.utils.logger import get_logger

logger = get_logger(__name__)


def main() -> int:
    parser = argparse.ArgumentParser(description="Create relay DynamoDB tables")
    parser.add_argument(
        "--endpoint-url",
        type=str,
        default=None,
        help="DynamoDB endpoint override (default: AWS_ENDPOINT_URL setting)"
    )
    parser.add_argument(
        "--region",
        type=str,
        default=None,
        help="AWS region (default: AWS_REGION setting)"
    )
    args = parser.parse_args()

    settings = Settings()
    dynamodb = boto3.resource(
        'dynamodb',
        region_name=args.region or settings.aws_region,
        endpoint_url=args.endpoint_url or settings.aws_endpoint_url
    )

    names = [definition['TableName'] for definition in table_definitions(settings)]
    print("=" * 60)
    print("Creating relay tables")
    print("=" * 60)
    for name in names:
        print(f"  - {name}")
    print()

    try:
        create_tables(dynamodb, settings)
    except ClientError as e:
        logger.error(
            "Failed to create tables",
            error_code=e.response['Error']['Code'],
            error_message=e.response['Error']['Message']
        )
        print(f"ERROR: {e.response['Error']['Message']}")
        return 1

    print("All tables created.")
    return 0


if __name__ == "__main__":
    sys.exit(main())
