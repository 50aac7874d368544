"""
Module: schema.py
Description: DynamoDB table definitions for the relay stores.

Used by scripts/create_tables.py for local stacks and by the test
fixtures, so both create tables with the production key schema.
"""

from typing import Any, Dict, List

from relay.config.settings import Settings

OWNER_INDEX = 'OwnerIndex'


def table_definitions(settings: Settings) -> List[Dict[str, Any]]:
    """create_table keyword arguments for every relay table."""
    return [
        {
            'TableName': settings.webhooks_table_name,
            'KeySchema': [{'AttributeName': 'webhook_id', 'KeyType': 'HASH'}],
            'AttributeDefinitions': [
                {'AttributeName': 'webhook_id', 'AttributeType': 'S'},
                {'AttributeName': 'owner_id', 'AttributeType': 'S'},
                {'AttributeName': 'created_at', 'AttributeType': 'S'}
            ],
            'GlobalSecondaryIndexes': [
                {
                    'IndexName': OWNER_INDEX,
                    'KeySchema': [
                        {'AttributeName': 'owner_id', 'KeyType': 'HASH'},
                        {'AttributeName': 'created_at', 'KeyType': 'RANGE'}
                    ],
                    'Projection': {'ProjectionType': 'ALL'}
                }
            ],
            'BillingMode': 'PAY_PER_REQUEST'
        },
        {
            'TableName': settings.dead_letters_table_name,
            'KeySchema': [{'AttributeName': 'dead_letter_id', 'KeyType': 'HASH'}],
            'AttributeDefinitions': [
                {'AttributeName': 'dead_letter_id', 'AttributeType': 'S'}
            ],
            'BillingMode': 'PAY_PER_REQUEST'
        },
        {
            'TableName': settings.presence_table_name,
            'KeySchema': [{'AttributeName': 'user_id', 'KeyType': 'HASH'}],
            'AttributeDefinitions': [
                {'AttributeName': 'user_id', 'AttributeType': 'S'}
            ],
            'BillingMode': 'PAY_PER_REQUEST'
        },
        {
            'TableName': settings.offline_messages_table_name,
            'KeySchema': [{'AttributeName': 'user_id', 'KeyType': 'HASH'}],
            'AttributeDefinitions': [
                {'AttributeName': 'user_id', 'AttributeType': 'S'}
            ],
            'BillingMode': 'PAY_PER_REQUEST'
        },
        {
            'TableName': settings.receipts_table_name,
            'KeySchema': [{'AttributeName': 'receipt_id', 'KeyType': 'HASH'}],
            'AttributeDefinitions': [
                {'AttributeName': 'receipt_id', 'AttributeType': 'S'}
            ],
            'BillingMode': 'PAY_PER_REQUEST'
        },
    ]


TTL_ATTRIBUTE = 'expires_at'

TTL_TABLES = (
    'dead_letters_table_name',
    'presence_table_name',
    'offline_messages_table_name',
    'receipts_table_name',
)


def create_tables(dynamodb, settings: Settings) -> None:
    """
    Create every relay table and enable TTL where entries expire.

    Args:
        dynamodb: boto3 DynamoDB resource
        settings: Settings naming the tables
    """
    for definition in table_definitions(settings):
        table = dynamodb.create_table(**definition)
        table.wait_until_exists()

    client = dynamodb.meta.client
    for attribute in TTL_TABLES:
        client.update_time_to_live(
            TableName=getattr(settings, attribute),
            TimeToLiveSpecification={'Enabled': True, 'AttributeName': TTL_ATTRIBUTE}
        )
