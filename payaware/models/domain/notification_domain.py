# models/domain/notification_domain.py
"""
Notification records, the delivery request carried on the Kafka topic, and
the tagged outcome returned by the push transport.
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict


class DeliveryStatus(str, Enum):
    SUCCESS = "success"
    FAILED = "failed"


class Notification(BaseModel):
    """One persisted delivery attempt."""

    id: int | None = None
    user_id: int
    subscription_id: int
    message: str
    sent_at: datetime
    status: DeliveryStatus
    read_at: datetime | None = None


class DeliveryRequest(BaseModel):
    """
    Wire record published by the workers and read by the consumer.

    Only identifiers travel on the topic; the consumer re-reads the live
    subscription and user before sending.
    """

    model_config = ConfigDict(extra="ignore")

    user_id: int
    subscription_id: int
    message: str = ""

    def partition_key(self) -> bytes:
        """All of one user's requests share a partition."""
        return f"user-{self.user_id}".encode()

    def is_valid(self) -> bool:
        return self.user_id > 0 and self.subscription_id > 0


class PushOutcomeKind(str, Enum):
    OK = "ok"
    RECOVERABLE_ERROR = "recoverable_error"
    TERMINAL_ERROR = "terminal_error"


# Expo ticket error codes
DEVICE_NOT_REGISTERED = "DeviceNotRegistered"
MESSAGE_TOO_BIG = "MessageTooBig"
MESSAGE_RATE_EXCEEDED = "MessageRateExceeded"
INVALID_CREDENTIALS = "InvalidCredentials"
MISMATCH_SENDER_ID = "MismatchSenderId"


@dataclass(slots=True, frozen=True)
class PushOutcome:
    """Classified response of one push send."""

    kind: PushOutcomeKind
    reason: str | None = None
    code: str | None = None
    ticket_id: str | None = None

    @classmethod
    def ok(cls, ticket_id: str | None = None) -> "PushOutcome":
        return cls(PushOutcomeKind.OK, ticket_id=ticket_id)

    @classmethod
    def recoverable(cls, reason: str) -> "PushOutcome":
        return cls(PushOutcomeKind.RECOVERABLE_ERROR, reason=reason)

    @classmethod
    def terminal(cls, reason: str, code: str | None) -> "PushOutcome":
        return cls(PushOutcomeKind.TERMINAL_ERROR, reason=reason, code=code)

    @property
    def succeeded(self) -> bool:
        return self.kind is PushOutcomeKind.OK

    @property
    def device_token_invalid(self) -> bool:
        return self.kind is PushOutcomeKind.TERMINAL_ERROR and self.code == DEVICE_NOT_REGISTERED
