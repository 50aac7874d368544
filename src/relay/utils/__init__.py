"""
Module: utils
Description: Package initialization for utility functions.

This package contains shared helpers used throughout the relay service:
- logger: Structured logging configuration and helpers
- metrics: CloudWatch metrics publishing
- clock: UTC time helpers
"""

__all__ = []
