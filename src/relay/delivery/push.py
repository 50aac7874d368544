"""
Module: push.py
Description: HTTP push of signed webhook payloads.

Performs a single POST attempt with a per-attempt timeout and maps
every outcome (2xx, non-2xx, timeout, transport error) to an
AttemptResult. Nothing is raised for transient failures; retry policy
lives in the dispatcher.
"""

import time
from typing import Dict

import httpx

from relay.models.webhook import AttemptResult
from relay.utils.logger import get_logger

logger = get_logger(__name__)

RESPONSE_BODY_LIMIT = 500


class WebhookPushClient:
    """
    HTTP client for pushing payloads to webhook targets.

    Handles delivery attempts with proper timeout and
    error handling for network issues.
    """

    async def post(
        self,
        url: str,
        body: bytes,
        headers: Dict[str, str],
        timeout_seconds: float
    ) -> AttemptResult:
        """
        POST body to url once.

        Args:
            url: Target URL
            body: Exact bytes to send (already signed)
            headers: Request headers
            timeout_seconds: Per-attempt timeout

        Returns:
            AttemptResult describing the attempt
        """
        timeout = httpx.Timeout(timeout_seconds, connect=timeout_seconds)
        started = time.perf_counter()

        async with httpx.AsyncClient(timeout=timeout) as client:
            try:
                response = await client.post(url, content=body, headers=headers)
                response.raise_for_status()

                latency_ms = _elapsed_ms(started)
                logger.debug(
                    "Webhook attempt succeeded",
                    url=url,
                    status_code=response.status_code,
                    latency_ms=latency_ms
                )
                return AttemptResult(
                    ok=True,
                    status_code=response.status_code,
                    latency_ms=latency_ms
                )

            except httpx.TimeoutException:
                logger.warning("Webhook attempt timeout", url=url, timeout_seconds=timeout_seconds)
                return AttemptResult(
                    ok=False,
                    latency_ms=_elapsed_ms(started),
                    error=f"Request timed out after {timeout_seconds}s",
                    error_code="TIMEOUT"
                )

            except httpx.HTTPStatusError as e:
                status_code = e.response.status_code
                logger.warning(
                    "Webhook attempt HTTP error",
                    url=url,
                    status_code=status_code,
                    response=e.response.text[:RESPONSE_BODY_LIMIT]
                )
                return AttemptResult(
                    ok=False,
                    status_code=status_code,
                    latency_ms=_elapsed_ms(started),
                    error=f"HTTP {status_code}",
                    error_code=f"HTTP_{status_code}",
                    response_body=e.response.text[:RESPONSE_BODY_LIMIT]
                )

            except httpx.NetworkError as e:
                logger.warning("Webhook attempt network error", url=url, error=str(e))
                return AttemptResult(
                    ok=False,
                    latency_ms=_elapsed_ms(started),
                    error=str(e) or type(e).__name__,
                    error_code="NETWORK_ERROR"
                )

            except httpx.HTTPError as e:
                logger.error(
                    "Webhook attempt failed",
                    url=url,
                    error=str(e),
                    error_type=type(e).__name__
                )
                return AttemptResult(
                    ok=False,
                    latency_ms=_elapsed_ms(started),
                    error=str(e) or type(e).__name__,
                    error_code=type(e).__name__.upper()
                )


def _elapsed_ms(started: float) -> float:
    return round((time.perf_counter() - started) * 1000, 3)
