"""
Package: relay
Description: Reliable event delivery for a marketplace.

Signed webhook delivery with retry and dead-lettering, a presence
directory of live connections, and a presence-aware chat message
pipeline with offline queuing and replay.
"""

__version__ = "0.1.0"
