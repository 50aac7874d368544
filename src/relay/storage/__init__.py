"""
Module: storage
Description: Package initialization for the durable state layer.

This package contains the DynamoDB stores used by the relay service:
- webhooks: Webhook subscriptions and their statistics
- dead_letters: Exhausted webhook deliveries
- presence: Live connection sessions
- offline: Per-recipient offline message entries
- receipts: Live delivery receipts

All stores expose async interfaces.
"""

__all__ = []
