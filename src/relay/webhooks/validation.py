"""
Module: validation.py
Description: Webhook target URL validation.

Outside development mode only HTTPS targets on public addresses are
accepted. Ports of common non-HTTP services are rejected when given
explicitly in any mode.
"""

import ipaddress
from typing import FrozenSet

import httpx

from relay.errors import WebhookValidationError

BLOCKED_PORTS: FrozenSet[int] = frozenset({
    21, 22, 23, 25, 53, 80, 110, 135, 139, 143, 445, 587, 3306, 3389, 5432
})

LOCAL_HOSTNAMES = frozenset({"localhost", "localhost.localdomain"})


class WebhookUrlValidator:
    """Validates webhook target URLs."""

    def __init__(self, development_mode: bool = False):
        self.development_mode = development_mode

    def validate(self, url: str) -> str:
        """
        Validate a webhook URL.

        Args:
            url: Candidate target URL

        Returns:
            The URL, stripped of surrounding whitespace

        Raises:
            WebhookValidationError: If the URL is malformed or not allowed
        """
        if not url or not isinstance(url, str):
            raise WebhookValidationError("URL is required")
        url = url.strip()

        try:
            parsed = httpx.URL(url)
        except (httpx.InvalidURL, ValueError) as e:
            raise WebhookValidationError(f"Invalid URL format: {e}") from e

        if parsed.scheme not in ("http", "https"):
            raise WebhookValidationError("URL must use http or https")
        if not parsed.host:
            raise WebhookValidationError("URL must include a host")
        if parsed.scheme != "https" and not self.development_mode:
            raise WebhookValidationError("Webhook URL must use HTTPS")

        if parsed.port is not None and parsed.port in BLOCKED_PORTS:
            raise WebhookValidationError(f"Port {parsed.port} is not allowed for webhooks")

        if not self.development_mode:
            self._reject_internal_host(parsed.host)

        return url

    @staticmethod
    def _reject_internal_host(host: str) -> None:
        if host.lower() in LOCAL_HOSTNAMES:
            raise WebhookValidationError("Webhook URL cannot target localhost")

        try:
            address = ipaddress.ip_address(host.strip("[]"))
        except ValueError:
            # A hostname, not an IP literal
            return

        if (
            address.is_private
            or address.is_loopback
            or address.is_link_local
            or address.is_reserved
            or address.is_multicast
            or address.is_unspecified
        ):
            raise WebhookValidationError("Webhook URL cannot target a private or reserved address")
