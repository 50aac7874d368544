"""
Module: settings.py
Description: Application configuration using pydantic-settings.

Configures all application settings from environment variables with
validation and defaults. Supports .env files for local development.
"""

import re
from typing import List, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEVELOPMENT_STAGES = ("dev", "development", "local")


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    # Application settings
    app_name: str = Field(default="Marketplace Relay", description="Application name")
    app_version: str = Field(default="0.1.0", description="Application version")
    log_level: str = Field(default="INFO", description="Logging level")

    # AWS settings
    aws_region: str = Field(default="us-east-1", description="AWS region")
    aws_endpoint_url: Optional[str] = Field(
        default=None,
        description="Override endpoint for AWS services (local stacks)"
    )
    stage: str = Field(default="prod", description="Deployment stage")

    # DynamoDB settings
    webhooks_table_name: str = Field(
        default="relay-webhooks",
        description="Table holding webhook subscriptions"
    )
    dead_letters_table_name: str = Field(
        default="relay-webhook-dead-letters",
        description="Table holding exhausted webhook deliveries"
    )
    presence_table_name: str = Field(
        default="relay-presence",
        description="Table holding live connection sessions"
    )
    offline_messages_table_name: str = Field(
        default="relay-offline-messages",
        description="Table holding per-recipient offline message entries"
    )
    receipts_table_name: str = Field(
        default="relay-delivery-receipts",
        description="Table holding short-lived live delivery receipts"
    )

    # SQS settings
    message_queue_url: str = Field(
        default="",
        description="URL of the standard chat message work queue"
    )
    priority_queue_url: str = Field(
        default="",
        description="URL of the high priority (negotiation) work queue"
    )

    # Live connection settings
    websocket_endpoint_url: str = Field(
        default="",
        description="API Gateway WebSocket management endpoint"
    )

    # Webhook delivery settings
    webhook_timeout: int = Field(
        default=10,
        ge=1,
        le=30,
        description="Default HTTP timeout in seconds for webhook attempts"
    )
    webhook_max_attempts: int = Field(
        default=3,
        ge=1,
        le=10,
        description="Default number of webhook delivery attempts"
    )
    webhook_retry_delays: List[float] = Field(
        default=[1.0, 5.0, 15.0],
        description="Backoff schedule in seconds between webhook attempts"
    )
    webhook_user_agent: str = Field(
        default="MarketplaceRelay-Webhook/1.0",
        description="User-Agent header sent with webhook calls"
    )
    webhook_list_cache_seconds: int = Field(
        default=300,
        ge=0,
        description="How long per-owner webhook listings are cached"
    )
    dead_letter_retention_days: int = Field(
        default=30,
        ge=1,
        description="How long dead-lettered deliveries are retained"
    )

    # Presence and message delivery settings
    presence_expiry_hours: int = Field(
        default=24,
        ge=1,
        description="Inactivity after which a session counts as offline"
    )
    offline_message_ttl_days: int = Field(
        default=7,
        ge=1,
        description="Expiry horizon for queued offline messages"
    )
    delivery_receipt_ttl_seconds: int = Field(
        default=86400,
        ge=60,
        description="Lifetime of live delivery receipts"
    )
    live_push_max_attempts: int = Field(
        default=3,
        ge=1,
        le=10,
        description="Attempts for pushing over a live connection"
    )
    live_push_backoff_base: float = Field(
        default=1.0,
        gt=0,
        description="Base delay in seconds for live push exponential backoff"
    )

    # Worker settings
    worker_batch_size: int = Field(default=10, ge=1, le=10)
    worker_wait_seconds: int = Field(default=20, ge=0, le=20)
    worker_max_receive_count: int = Field(default=5, ge=1)

    # Metrics settings
    metrics_namespace: str = Field(default="MarketplaceRelay")
    metrics_enabled: bool = Field(default=True)

    @field_validator(
        'webhooks_table_name',
        'dead_letters_table_name',
        'presence_table_name',
        'offline_messages_table_name',
        'receipts_table_name'
    )
    @classmethod
    def validate_table_names(cls, v: str) -> str:
        """Validate DynamoDB table names."""
        if not v or not isinstance(v, str):
            raise ValueError("Table name must be a non-empty string")

        # Allow alphanumeric, hyphens, underscores, dots
        if not re.match(r'^[a-zA-Z0-9_.-]+$', v):
            raise ValueError(
                "Table name must contain only letters, numbers, dots, hyphens, and underscores"
            )

        return v

    @field_validator('log_level')
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level is a valid logging level."""
        valid_levels = ['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']
        if v.upper() not in valid_levels:
            raise ValueError(f"log_level must be one of: {', '.join(valid_levels)}")
        return v.upper()

    @field_validator('webhook_retry_delays')
    @classmethod
    def validate_retry_delays(cls, v: List[float]) -> List[float]:
        """Backoff schedule must be non-empty and non-negative."""
        if not v:
            raise ValueError("webhook_retry_delays must contain at least one delay")
        if any(delay < 0 for delay in v):
            raise ValueError("webhook_retry_delays must be non-negative")
        return v

    @property
    def development_mode(self) -> bool:
        """True when running in a development stage."""
        return self.stage.lower() in DEVELOPMENT_STAGES
