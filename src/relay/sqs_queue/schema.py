"""
Module: schema.py
Description: SQS queue definitions for the message delivery worker.

The standard and priority work queues share one dead-letter queue. The
worker never deletes a job it failed to deliver; after
worker_max_receive_count receives SQS moves it to the dead-letter queue
through the redrive policy declared here.

Dependencies: boto3, json
"""

import json
from typing import Dict

from relay.config.settings import Settings
from relay.utils.logger import get_logger

logger = get_logger(__name__)

DEAD_LETTER_RETENTION_SECONDS = 14 * 24 * 3600
VISIBILITY_TIMEOUT_SECONDS = 60


def queue_names(base_name: str) -> Dict[str, str]:
    return {
        'standard': base_name,
        'priority': f"{base_name}-priority",
        'dead_letter': f"{base_name}-dead-letter",
    }


def create_queues(sqs, settings: Settings, base_name: str = "relay-messages") -> Dict[str, str]:
    """
    Create the work queues and their dead-letter queue.

    Args:
        sqs: boto3 SQS client
        settings: Settings supplying the receive limit
        base_name: Name of the standard queue; the others derive from it

    Returns:
        Queue URLs keyed by 'standard', 'priority' and 'dead_letter'
    """
    names = queue_names(base_name)

    dead_letter_url = sqs.create_queue(
        QueueName=names['dead_letter'],
        Attributes={'MessageRetentionPeriod': str(DEAD_LETTER_RETENTION_SECONDS)}
    )['QueueUrl']
    dead_letter_arn = sqs.get_queue_attributes(
        QueueUrl=dead_letter_url,
        AttributeNames=['QueueArn']
    )['Attributes']['QueueArn']

    redrive_policy = json.dumps({
        'deadLetterTargetArn': dead_letter_arn,
        'maxReceiveCount': str(settings.worker_max_receive_count)
    })

    urls = {'dead_letter': dead_letter_url}
    for kind in ('standard', 'priority'):
        urls[kind] = sqs.create_queue(
            QueueName=names[kind],
            Attributes={
                'VisibilityTimeout': str(VISIBILITY_TIMEOUT_SECONDS),
                'RedrivePolicy': redrive_policy
            }
        )['QueueUrl']
        logger.info(
            "Queue created",
            queue_name=names[kind],
            max_receive_count=settings.worker_max_receive_count
        )

    return urls
