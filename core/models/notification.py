"""Notification outbox models.

The billing core only computes when something should be said; an external
dispatcher reads pending notifications and delivers them.
"""

from datetime import datetime
from enum import Enum
from uuid import UUID

from pydantic import BaseModel, Field


class NotificationStatus(str, Enum):
    """Outbox entry status."""

    PENDING = "pending"
    DISPATCHED = "dispatched"
    CANCELLED = "cancelled"


class NotificationType(str, Enum):
    """What the notification is about."""

    QUOTE_REMINDER = "quote_reminder"
    PAYMENT_RECEIVED = "payment_received"


class NotificationCreate(BaseModel):
    """Data required to schedule a notification."""

    client_id: UUID
    entity_type: str = Field(..., max_length=50)
    entity_id: UUID
    notification_type: NotificationType
    subject: str | None = Field(None, max_length=255)
    body: str | None = Field(None, max_length=10000)
    scheduled_for: datetime


class Notification(BaseModel):
    """Full notification entity as stored."""

    id: UUID
    company_id: UUID
    client_id: UUID
    entity_type: str
    entity_id: UUID
    notification_type: NotificationType
    subject: str | None
    body: str | None
    scheduled_for: datetime
    status: NotificationStatus
    dispatched_at: datetime | None = None
    created_at: datetime

    model_config = {"from_attributes": True}
