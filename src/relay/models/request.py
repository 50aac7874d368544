"""
Module: request.py
Description: API request models for webhook administration.

Defines request models for incoming API calls. These models handle
input validation and transformation for the webhook endpoints and
for the registry operations they map to.

Key Components:
- RegisterWebhookRequest: Body of POST /webhooks
- UpdateWebhookRequest: Body of PUT /webhooks/{webhook_id}
- RetryDeadLettersRequest: Body of POST /webhooks/dead-letter/retry

Dependencies: pydantic, typing
"""

from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from relay.models.webhook import normalize_event_patterns


class RegisterWebhookRequest(BaseModel):
    """
    Request model for registering a webhook.

    Attributes:
        url: Target URL (validated further by the registry)
        events: Event name, or list of names, or '*'
        name: Display name (generated when omitted)
        secret: Optional caller-chosen secret; generated when omitted
        max_attempts: Optional override of the attempt budget
        timeout_seconds: Optional per-attempt timeout, clamped to [1, 30]
    """

    model_config = ConfigDict(
        str_strip_whitespace=True,
        validate_assignment=True
    )

    url: str = Field(..., min_length=1, max_length=500)
    events: List[str] = Field(..., min_length=1)
    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    secret: Optional[str] = Field(default=None, min_length=16, max_length=100)
    description: Optional[str] = Field(default=None, max_length=500)
    tags: List[str] = Field(default_factory=list, max_length=20)
    enabled: bool = True
    max_attempts: Optional[int] = Field(default=None, ge=1, le=10)
    timeout_seconds: Optional[float] = Field(default=None, gt=0)

    @field_validator('events', mode='before')
    @classmethod
    def validate_events(cls, v: Any) -> List[str]:
        return normalize_event_patterns(v)

    @field_validator('tags')
    @classmethod
    def validate_tags(cls, v: List[str]) -> List[str]:
        for tag in v:
            if not tag or len(tag) > 50:
                raise ValueError("tags must be 1-50 characters")
        return v


class UpdateWebhookRequest(BaseModel):
    """
    Request model for a partial webhook update.

    At least one field must be provided. rotate_secret regenerates the
    secret, which is returned once in the response.
    """

    model_config = ConfigDict(
        str_strip_whitespace=True,
        validate_assignment=True
    )

    url: Optional[str] = Field(default=None, min_length=1, max_length=500)
    events: Optional[List[str]] = None
    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    description: Optional[str] = Field(default=None, max_length=500)
    tags: Optional[List[str]] = Field(default=None, max_length=20)
    enabled: Optional[bool] = None
    rotate_secret: bool = False
    max_attempts: Optional[int] = Field(default=None, ge=1, le=10)
    timeout_seconds: Optional[float] = Field(default=None, gt=0)

    @field_validator('events', mode='before')
    @classmethod
    def validate_events(cls, v: Any) -> Optional[List[str]]:
        if v is None:
            return v
        return normalize_event_patterns(v)

    @model_validator(mode='after')
    def validate_has_changes(self) -> 'UpdateWebhookRequest':
        """Ensure the update changes something."""
        if not self.rotate_secret and not self.model_fields_set - {'rotate_secret'}:
            raise ValueError("At least one field must be provided for update")
        return self


class RetryDeadLettersRequest(BaseModel):
    """Optional filter of webhook ids for a bulk dead-letter retry."""

    webhook_ids: Optional[List[str]] = None
