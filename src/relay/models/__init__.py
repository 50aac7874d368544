"""
Module: models
Description: Package initialization for data models.

This package contains all Pydantic models used by the relay service:
- events: Typed domain events (tagged union)
- webhook: Subscriptions, dead-letter records and delivery results
- message: Presence sessions, delivery jobs and offline entries
- request / response: Webhook administration API models
"""

__all__ = []
