"""Pydantic v2 schemas for the notification feed."""

import uuid
from datetime import datetime

from pydantic import BaseModel, ConfigDict

from trainfit.models.notification import NotificationType


class NotificationResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    title: str
    message: str
    type: NotificationType
    client_id: uuid.UUID | None
    is_read: bool
    created_at: datetime


class NotificationListResponse(BaseModel):
    items: list[NotificationResponse]
    total: int
    unread_count: int
    offset: int
    limit: int


class MarkAllReadResponse(BaseModel):
    updated: int
