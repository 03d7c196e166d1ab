from datetime import datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, Field

CONTENT_MIN_LENGTH = 10
CONTENT_MAX_LENGTH = 5000


class TicketStatus(StrEnum):
    PENDING = "pending"
    PROCESSING = "processing"
    PROCESSED = "processed"
    RESOLVED = "resolved"
    AI_FAILED = "ai_failed"


class TicketCategory(StrEnum):
    BILLING = "billing"
    TECHNICAL = "technical"
    FEATURE_REQUEST = "feature_request"


class TicketUrgency(StrEnum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class PendingTicket(BaseModel):
    id: int
    content: str


class Ticket(BaseModel):
    id: int
    email: str | None = None
    content: str
    status: TicketStatus = TicketStatus.PENDING
    created_at: datetime
    updated_at: datetime


class TicketAnalysis(BaseModel):
    category: TicketCategory = Field(..., description="billing | technical | feature_request")
    sentiment_score: int = Field(..., ge=1, le=10, description="1 = angry, 10 = happy")
    urgency: TicketUrgency = Field(..., description="high | medium | low")
    draft_reply: str = Field(..., min_length=1)


class ClassificationResult(TicketAnalysis):
    ticket_id: int
    processed_at: datetime


class TicketWithResult(Ticket):
    ai_result: ClassificationResult | None = None


class TicketFilters(BaseModel):
    page: int = Field(1, ge=1)
    limit: int = Field(50, ge=1, le=100)
    status: TicketStatus | None = None
    urgency: TicketUrgency | None = None
    category: TicketCategory | None = None


class TicketPage(BaseModel):
    tickets: list[TicketWithResult]
    total_count: int


class ProcessingOutcome(BaseModel):
    """Completion event handed to observers once a ticket leaves `processing`."""

    ticket_id: int
    status: TicketStatus
    ai_result: ClassificationResult | None = None

    def to_event(self) -> dict[str, Any]:
        return {
            "ticketId": self.ticket_id,
            "status": self.status.value,
            "aiResult": self.ai_result.model_dump(mode="json") if self.ai_result else None,
        }
