from typing import Protocol

from triage.domain.models import (
    ClassificationResult,
    PendingTicket,
    ProcessingOutcome,
    Ticket,
    TicketAnalysis,
    TicketFilters,
    TicketPage,
    TicketStatus,
    TicketWithResult,
)


class TicketRepository(Protocol):
    def fetch_pending(self, limit: int) -> list[PendingTicket]: ...

    def set_status(self, ticket_id: int, status: TicketStatus) -> None: ...

    def save_result(self, ticket_id: int, analysis: TicketAnalysis) -> ClassificationResult: ...

    def create_ticket(self, email: str | None, content: str) -> Ticket: ...

    def list_tickets(self, filters: TicketFilters) -> TicketPage: ...

    def get_ticket(self, ticket_id: int) -> TicketWithResult | None: ...

    def update_draft_reply(self, ticket_id: int, draft_reply: str) -> None: ...


class TicketClassifier(Protocol):
    async def classify(self, content: str) -> TicketAnalysis: ...


class CompletionNotifier(Protocol):
    async def publish(self, outcome: ProcessingOutcome) -> None: ...
