"""
Module: metrics.py
Description: CloudWatch custom metrics publishing.

Publishes delivery metrics to CloudWatch for monitoring webhook
success rates, dead-letter growth and chat delivery paths.

Key Components:
- MetricsClient: CloudWatch metrics client
- put_metric(): Publish individual metrics without blocking the event loop
- Graceful error handling for metrics failures

Dependencies: boto3, asyncio, logger
"""

import asyncio
from typing import Optional

import boto3

from relay.utils.logger import get_logger

logger = get_logger(__name__)


class MetricsClient:
    """CloudWatch metrics client."""

    def __init__(
        self,
        namespace: str = "MarketplaceRelay",
        region_name: Optional[str] = None,
        endpoint_url: Optional[str] = None,
        enabled: bool = True
    ):
        """
        Initialize metrics client.

        Args:
            namespace: CloudWatch metrics namespace
            region_name: AWS region for the CloudWatch client
            endpoint_url: Optional endpoint override
            enabled: When False, metrics are logged at debug level only
        """
        self.namespace = namespace
        self.enabled = enabled
        self.cloudwatch = boto3.client(
            'cloudwatch',
            region_name=region_name,
            endpoint_url=endpoint_url
        ) if enabled else None

        logger.info(
            "Metrics client initialized",
            namespace=namespace,
            enabled=enabled
        )

    async def put_metric(
        self,
        metric_name: str,
        value: float,
        unit: str = 'Count',
        dimensions: Optional[dict] = None
    ) -> None:
        """
        Publish a metric to CloudWatch.

        Failures are logged and swallowed; metrics never fail a delivery.

        Args:
            metric_name: Name of the metric
            value: Metric value
            unit: Metric unit (Count, Milliseconds, etc.)
            dimensions: Optional metric dimensions
        """
        if not self.enabled:
            logger.debug("Metric skipped (disabled)", metric_name=metric_name, value=value)
            return

        metric_data = {
            'MetricName': metric_name,
            'Value': value,
            'Unit': unit
        }

        if dimensions:
            metric_data['Dimensions'] = [
                {'Name': k, 'Value': str(v)}
                for k, v in dimensions.items()
            ]

        try:
            await asyncio.to_thread(
                self.cloudwatch.put_metric_data,
                Namespace=self.namespace,
                MetricData=[metric_data]
            )

            logger.debug(
                "Metric published to CloudWatch",
                metric_name=metric_name,
                value=value,
                unit=unit,
                dimensions=dimensions,
                namespace=self.namespace
            )

        except Exception as e:
            # Don't fail delivery if metrics fail
            logger.warning(
                "Failed to publish metric",
                metric_name=metric_name,
                value=value,
                error=str(e),
                namespace=self.namespace
            )
