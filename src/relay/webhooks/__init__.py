"""
Package: webhooks
Description: Webhook subscription registry and URL validation.
"""
