"""
Package: delivery
Description: Event delivery mechanisms for the relay service.

Provides signed webhook push delivery with retry and dead-lettering,
and the presence-aware chat message delivery pipeline with its worker.
"""
