from enum import StrEnum
from math import ceil

from pydantic import BaseModel, EmailStr, Field

from triage.core.errors import ValidationError
from triage.domain.models import (
    CONTENT_MAX_LENGTH,
    CONTENT_MIN_LENGTH,
    Ticket,
    TicketCategory,
    TicketFilters,
    TicketPage,
    TicketStatus,
    TicketUrgency,
    TicketWithResult,
)


class CreateTicketRequest(BaseModel):
    email: EmailStr | None = Field(None, description="Optional contact address")
    content: str = Field(..., min_length=CONTENT_MIN_LENGTH, max_length=CONTENT_MAX_LENGTH)


class CreateTicketResponse(BaseModel):
    ticket_id: int
    status: TicketStatus
    message: str = "Ticket submitted successfully. Our AI is analyzing your request."

    @staticmethod
    def from_ticket(ticket: Ticket) -> "CreateTicketResponse":
        return CreateTicketResponse(ticket_id=ticket.id, status=ticket.status)


class ResolveTicketRequest(BaseModel):
    final_reply: str | None = Field(None, max_length=CONTENT_MAX_LENGTH)


class ResolveTicketResponse(BaseModel):
    ticket_id: int
    status: TicketStatus
    message: str = "Ticket resolved successfully"


class Pagination(BaseModel):
    page: int
    limit: int
    total_count: int
    total_pages: int


class TicketListResponse(BaseModel):
    tickets: list[TicketWithResult]
    pagination: Pagination

    @staticmethod
    def from_page(result: TicketPage, filters: TicketFilters) -> "TicketListResponse":
        return TicketListResponse(
            tickets=result.tickets,
            pagination=Pagination(
                page=filters.page,
                limit=filters.limit,
                total_count=result.total_count,
                total_pages=ceil(result.total_count / filters.limit),
            ),
        )


def _parse_filter(name: str, value: str | None, enum_type: type[StrEnum]) -> StrEnum | None:
    # "all" is what the dashboard sends for no filter
    if value is None or value == "all":
        return None
    try:
        return enum_type(value)
    except ValueError:
        allowed = ", ".join([*(member.value for member in enum_type), "all"])
        raise ValidationError(f"Invalid {name} filter. Must be one of: {allowed}") from None


def build_filters(
    page: int,
    limit: int,
    status: str | None,
    urgency: str | None,
    category: str | None,
) -> TicketFilters:
    return TicketFilters(
        page=page,
        limit=min(limit, 100),
        status=_parse_filter("status", status, TicketStatus),
        urgency=_parse_filter("urgency", urgency, TicketUrgency),
        category=_parse_filter("category", category, TicketCategory),
    )
