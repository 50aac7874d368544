"""
Package: sqs_queue
Description: SQS work queue operations for chat message delivery.

Provides an async client for the standard and priority work queues
consumed by the delivery worker, and the queue definitions with their
redrive policy.
"""
