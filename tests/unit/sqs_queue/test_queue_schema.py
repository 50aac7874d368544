"""
Module: test_queue_schema.py
Description: Unit tests for the SQS work queue definitions.
"""

import json

import boto3
import pytest
from moto import mock_aws

from relay.sqs_queue.schema import create_queues, queue_names

REGION = 'us-east-1'


@pytest.fixture
def sqs():
    with mock_aws():
        yield boto3.client('sqs', region_name=REGION)


def test_queue_names():
    assert queue_names("relay-messages") == {
        'standard': "relay-messages",
        'priority': "relay-messages-priority",
        'dead_letter': "relay-messages-dead-letter",
    }


def test_work_queues_redrive_to_dead_letter_queue(sqs, test_settings):
    urls = create_queues(sqs, test_settings, base_name="test-messages")

    dead_letter_arn = sqs.get_queue_attributes(
        QueueUrl=urls['dead_letter'],
        AttributeNames=['QueueArn']
    )['Attributes']['QueueArn']

    for kind in ('standard', 'priority'):
        attributes = sqs.get_queue_attributes(
            QueueUrl=urls[kind],
            AttributeNames=['RedrivePolicy']
        )['Attributes']
        policy = json.loads(attributes['RedrivePolicy'])
        assert policy['deadLetterTargetArn'] == dead_letter_arn
        assert int(policy['maxReceiveCount']) == test_settings.worker_max_receive_count
