"""Pydantic schemas for CareMind Notification Service.

Request bodies and responses for the HTTP entry points, plus the result
models passed between the delivery client, the dispatcher and the callers.
"""

from pydantic import BaseModel, Field
from datetime import date, datetime
from typing import Optional, Dict, List


class PushRequest(BaseModel):
    """Bulk push request.

    Targets are resolved in order: token, tokens, profile_id, profile_ids.
    """

    profile_id: Optional[str] = Field(None, description="Send to every active device of this profile")
    profile_ids: Optional[List[str]] = Field(None, description="Send to every active device of these profiles")
    token: Optional[str] = Field(None, description="Single FCM registration token")
    tokens: Optional[List[str]] = Field(None, description="Explicit FCM registration tokens")

    title: str = Field(..., min_length=1, max_length=200, examples=["Hora do medicamento"])
    body: str = Field(..., min_length=1, examples=["Metformina às 08:00"])

    type: str = Field(default="general", description="Notification category, stored in history")
    data: Optional[Dict[str, str]] = Field(None, description="Custom data payload (string values)")


class SendNotificationRequest(BaseModel):
    """Single-profile push request."""

    profile_id: str = Field(..., min_length=1)
    title: str = Field(..., min_length=1, max_length=200)
    body: str = Field(..., min_length=1)
    data: Optional[Dict[str, str]] = None


class PushResponse(BaseModel):
    success: bool
    sent: int = 0
    failed: int = 0
    total: Optional[int] = None
    errors: Optional[List[str]] = None
    error: Optional[str] = None


class DeliveryResult(BaseModel):
    """Outcome of one gateway send. Never an exception."""

    success: bool
    message_id: Optional[str] = None
    error: Optional[str] = None
    token_rejected: bool = Field(
        default=False,
        description="Gateway reported the token itself as invalid or unregistered"
    )


class TokenOutcome(BaseModel):
    index: int
    token: str
    success: bool
    message_id: Optional[str] = None
    error: Optional[str] = None
    token_rejected: bool = False


class FanoutResult(BaseModel):
    """Per-token outcomes of a fan-out, in input order."""

    outcomes: List[TokenOutcome] = Field(default_factory=list)

    @property
    def sent(self) -> int:
        return sum(1 for o in self.outcomes if o.success)

    @property
    def failed(self) -> int:
        return len(self.outcomes) - self.sent

    @property
    def errors(self) -> List[str]:
        return [f"Token {o.index}: {o.error}" for o in self.outcomes if not o.success]

    @property
    def failed_tokens(self) -> List[str]:
        return [o.token for o in self.outcomes if not o.success]

    @property
    def rejected_tokens(self) -> List[str]:
        return [o.token for o in self.outcomes if not o.success and o.token_rejected]


class ScheduleResult(BaseModel):
    success: bool = True
    profiles_processed: int = 0
    medications_scheduled: int = 0
    appointments_scheduled: int = 0


class DrainResult(BaseModel):
    processed: int = 0
    successful: int = 0
    failed: int = 0


class AlertDetail(BaseModel):
    reference_id: str
    name: str
    time: str
    profile_id: str


class MonitorResult(BaseModel):
    message: str = "Monitoring finished"
    alerts_generated: int = 0
    details: List[AlertDetail] = Field(default_factory=list)


class TickResult(BaseModel):
    scheduled: ScheduleResult
    processed: DrainResult
    timestamp: datetime


class QueueEntryResponse(BaseModel):
    id: str
    profile_id: str
    type: str
    reference_id: str
    title: str
    body: str
    scheduled_at: datetime
    processed: bool
    succeeded: Optional[bool] = None
    error: Optional[str] = None
    processed_at: Optional[datetime] = None

    class Config:
        """Pydantic configuration"""
        from_attributes = True  # Enable ORM mode for SQLAlchemy models


class AlertEventResponse(BaseModel):
    id: str
    profile_id: str
    event_type: str
    occurred_at: datetime
    calendar_day: date
    description: str
    reference_id: str
    reference_type: str

    class Config:
        """Pydantic configuration"""
        from_attributes = True
