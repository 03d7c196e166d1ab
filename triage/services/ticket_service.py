import logging

from triage.core.errors import InvalidTransition, NotFoundError
from triage.domain.models import Ticket, TicketFilters, TicketPage, TicketStatus, TicketWithResult
from triage.domain.ports import TicketRepository
from triage.domain.state_machine import ensure_transition

logger = logging.getLogger(__name__)


class TicketService:
    """Intake and agent-facing operations. Classification happens in the worker."""

    def __init__(self, repo: TicketRepository) -> None:
        self._repo = repo

    def create(self, email: str | None, content: str) -> Ticket:
        ticket = self._repo.create_ticket(email, content)
        logger.info("Ticket #%s created", ticket.id)
        return ticket

    def list_tickets(self, filters: TicketFilters) -> TicketPage:
        return self._repo.list_tickets(filters)

    def get(self, ticket_id: int) -> TicketWithResult:
        ticket = self._repo.get_ticket(ticket_id)
        if ticket is None:
            raise NotFoundError(f"Ticket with ID {ticket_id} not found")
        return ticket

    def resolve(self, ticket_id: int, final_reply: str | None = None) -> TicketWithResult:
        ticket = self.get(ticket_id)
        ensure_transition(ticket.status, TicketStatus.RESOLVED)
        if ticket.ai_result is None:
            # processed without a result would break the result/status invariant
            raise InvalidTransition(str(ticket.status), str(TicketStatus.RESOLVED))

        if final_reply:
            self._repo.update_draft_reply(ticket_id, final_reply)
        self._repo.set_status(ticket_id, TicketStatus.RESOLVED)
        logger.info("Ticket #%s resolved", ticket_id)

        ai_result = ticket.ai_result.model_copy(update={"draft_reply": final_reply}) if final_reply else ticket.ai_result
        return ticket.model_copy(update={"status": TicketStatus.RESOLVED, "ai_result": ai_result})
