"""
Module: dynamodb.py
Description: Shared DynamoDB table client for the relay stores.

Wraps a boto3 Table resource and runs every call in a worker thread so
store operations are suspension points for the event loop. Concrete
stores (webhooks, dead letters, presence, offline messages, receipts)
subclass DynamoDBTable.

Key Components:
- DynamoDBTable: Base client with logging and error handling
- to_dynamo(): Convert floats to Decimal for boto3
- is_conditional_failure(): Detect failed ConditionExpressions

Dependencies: boto3, botocore, asyncio, decimal, json
"""

import asyncio
import json
from decimal import Decimal
from typing import Any, Dict, List, Optional

import boto3
from botocore.exceptions import ClientError

from relay.utils.logger import get_logger

logger = get_logger(__name__)


def to_dynamo(value: Any) -> Any:
    """Round-trip through JSON so floats become Decimals, as boto3 requires."""
    return json.loads(json.dumps(value), parse_float=Decimal)


def is_conditional_failure(error: ClientError) -> bool:
    """True if a ConditionExpression rejected the write."""
    return error.response.get('Error', {}).get('Code') == 'ConditionalCheckFailedException'


class DynamoDBTable:
    """
    Base DynamoDB client for one table.

    Attributes:
        table_name: Name of the DynamoDB table
        dynamodb: boto3 DynamoDB resource
        table: boto3 DynamoDB table resource
    """

    def __init__(
        self,
        table_name: str,
        region_name: Optional[str] = None,
        endpoint_url: Optional[str] = None
    ):
        """
        Initialize DynamoDB table client.

        Args:
            table_name: Name of the DynamoDB table
            region_name: AWS region
            endpoint_url: Optional endpoint override

        Raises:
            ValueError: If table_name is empty or invalid
        """
        if not table_name or not isinstance(table_name, str):
            raise ValueError("table_name must be a non-empty string")

        self.table_name = table_name
        self.dynamodb = boto3.resource(
            'dynamodb',
            region_name=region_name,
            endpoint_url=endpoint_url
        )
        self.table = self.dynamodb.Table(table_name)

        logger.info(
            "DynamoDB table client initialized",
            table_name=table_name,
            store=type(self).__name__
        )

    async def _execute(self, operation: str, **kwargs) -> Dict[str, Any]:
        """
        Run a table operation off the event loop.

        Args:
            operation: Table method name (put_item, query, ...)
            **kwargs: Arguments for the boto3 call

        Raises:
            ClientError: If the DynamoDB operation fails
        """
        method = getattr(self.table, operation)
        try:
            return await asyncio.to_thread(method, **kwargs)

        except ClientError as e:
            if is_conditional_failure(e):
                logger.debug(
                    "DynamoDB condition not met",
                    operation=operation,
                    table_name=self.table_name
                )
            else:
                logger.error(
                    "DynamoDB operation failed",
                    operation=operation,
                    table_name=self.table_name,
                    error_code=e.response['Error']['Code'],
                    error_message=e.response['Error']['Message']
                )
            raise

    async def _scan_all(self, **kwargs) -> List[Dict[str, Any]]:
        """Scan the whole table, following LastEvaluatedKey pagination."""
        items: List[Dict[str, Any]] = []
        while True:
            response = await self._execute('scan', **kwargs)
            items.extend(response.get('Items', []))
            last_key = response.get('LastEvaluatedKey')
            if not last_key:
                return items
            kwargs['ExclusiveStartKey'] = last_key

    async def _query_all(self, **kwargs) -> List[Dict[str, Any]]:
        """Run a query to completion, following LastEvaluatedKey pagination."""
        items: List[Dict[str, Any]] = []
        while True:
            response = await self._execute('query', **kwargs)
            items.extend(response.get('Items', []))
            last_key = response.get('LastEvaluatedKey')
            if not last_key:
                return items
            kwargs['ExclusiveStartKey'] = last_key

    async def _count(self, **kwargs) -> int:
        """Count items with a paginated COUNT scan."""
        total = 0
        kwargs['Select'] = 'COUNT'
        while True:
            response = await self._execute('scan', **kwargs)
            total += int(response.get('Count', 0))
            last_key = response.get('LastEvaluatedKey')
            if not last_key:
                return total
            kwargs['ExclusiveStartKey'] = last_key

    async def ping(self) -> bool:
        """
        Check that the table is reachable.

        Returns:
            True if the table can be described, False otherwise
        """
        try:
            await asyncio.to_thread(
                self.dynamodb.meta.client.describe_table,
                TableName=self.table_name
            )
            return True
        except ClientError as e:
            logger.warning(
                "DynamoDB table unreachable",
                table_name=self.table_name,
                error_code=e.response['Error']['Code']
            )
            return False
