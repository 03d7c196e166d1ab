import logging
from datetime import datetime, timezone
from typing import Any, Final

from supabase import Client, create_client

from triage.core.errors import DuplicateResult, NotFoundError, RepositoryError
from triage.domain.models import (
    ClassificationResult,
    PendingTicket,
    Ticket,
    TicketAnalysis,
    TicketFilters,
    TicketPage,
    TicketStatus,
    TicketWithResult,
)
from triage.domain.ports import TicketRepository

logger = logging.getLogger(__name__)

TICKETS: Final[str] = "tickets"
RESULTS: Final[str] = "ticket_ai_results"
_UNIQUE_VIOLATION: Final[str] = "23505"


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _embedded_result(row: dict[str, Any]) -> dict[str, Any] | None:
    # PostgREST embeds a one-to-one relation as an object, one-to-many as a list
    embedded = row.get(RESULTS)
    if isinstance(embedded, list):
        return embedded[0] if embedded else None
    return embedded or None


def _to_ticket_with_result(row: dict[str, Any]) -> TicketWithResult:
    result = _embedded_result(row)
    fields = {key: value for key, value in row.items() if key != RESULTS}
    return TicketWithResult(**fields, ai_result=ClassificationResult(**result) if result else None)


class SupabaseTicketRepository(TicketRepository):
    def __init__(self, supabase_url: str, supabase_service_role_key: str, client: Client | None = None) -> None:
        self._client: Client = client or create_client(supabase_url, supabase_service_role_key)

    def fetch_pending(self, limit: int) -> list[PendingTicket]:
        try:
            resp = (
                self._client.table(TICKETS)
                .select("id, content")
                .eq("status", TicketStatus.PENDING.value)
                .order("created_at")
                .order("id")
                .limit(limit)
                .execute()
            )
        except Exception as e:
            logger.exception("Supabase fetch of pending tickets failed")
            raise RepositoryError("Failed to fetch pending tickets") from e

        return [PendingTicket(**row) for row in resp.data or []]

    def set_status(self, ticket_id: int, status: TicketStatus) -> None:
        try:
            # the neq filter makes re-setting the current status a no-op
            resp = (
                self._client.table(TICKETS)
                .update({"status": status.value, "updated_at": _now()})
                .eq("id", ticket_id)
                .neq("status", status.value)
                .execute()
            )
            if resp.data:
                return

            exists = self._client.table(TICKETS).select("id").eq("id", ticket_id).limit(1).execute()
        except Exception as e:
            logger.exception("Supabase status update failed for ticket %s", ticket_id)
            raise RepositoryError(f"Failed to set status of ticket {ticket_id}") from e

        if not exists.data:
            raise NotFoundError(f"Ticket not found: {ticket_id}")

    def save_result(self, ticket_id: int, analysis: TicketAnalysis) -> ClassificationResult:
        row = {"ticket_id": ticket_id, **analysis.model_dump(mode="json"), "processed_at": _now()}
        try:
            resp = self._client.table(RESULTS).insert(row).execute()
        except Exception as e:
            if getattr(e, "code", None) == _UNIQUE_VIOLATION:
                raise DuplicateResult(f"Ticket {ticket_id} already has a classification result") from e
            logger.exception("Supabase insert of classification result failed for ticket %s", ticket_id)
            raise RepositoryError(f"Failed to save classification result of ticket {ticket_id}") from e

        saved = resp.data[0] if resp.data else row
        return ClassificationResult(**{key: saved[key] for key in ClassificationResult.model_fields})

    def create_ticket(self, email: str | None, content: str) -> Ticket:
        try:
            resp = (
                self._client.table(TICKETS)
                .insert({"email": email, "content": content, "status": TicketStatus.PENDING.value})
                .execute()
            )
        except Exception as e:
            logger.exception("Supabase ticket insert failed")
            raise RepositoryError("Failed to create ticket") from e

        if not resp.data:
            raise RepositoryError("Supabase returned no row for the created ticket")
        return Ticket(**resp.data[0])

    def list_tickets(self, filters: TicketFilters) -> TicketPage:
        # filtering on result columns needs an inner join
        join = "!inner" if filters.urgency or filters.category else ""
        offset = (filters.page - 1) * filters.limit
        try:
            query = self._client.table(TICKETS).select(f"*, {RESULTS}{join}(*)", count="exact")
            if filters.status:
                query = query.eq("status", filters.status.value)
            if filters.urgency:
                query = query.eq(f"{RESULTS}.urgency", filters.urgency.value)
            if filters.category:
                query = query.eq(f"{RESULTS}.category", filters.category.value)
            resp = (
                query.order("created_at", desc=True)
                .order("id", desc=True)
                .range(offset, offset + filters.limit - 1)
                .execute()
            )
        except Exception as e:
            logger.exception("Supabase ticket listing failed")
            raise RepositoryError("Failed to list tickets") from e

        rows = resp.data or []
        total = resp.count if resp.count is not None else len(rows)
        return TicketPage(tickets=[_to_ticket_with_result(row) for row in rows], total_count=total)

    def get_ticket(self, ticket_id: int) -> TicketWithResult | None:
        try:
            resp = self._client.table(TICKETS).select(f"*, {RESULTS}(*)").eq("id", ticket_id).limit(1).execute()
        except Exception as e:
            logger.exception("Supabase fetch failed for ticket %s", ticket_id)
            raise RepositoryError(f"Failed to fetch ticket {ticket_id}") from e

        if not resp.data:
            return None
        return _to_ticket_with_result(resp.data[0])

    def update_draft_reply(self, ticket_id: int, draft_reply: str) -> None:
        try:
            resp = self._client.table(RESULTS).update({"draft_reply": draft_reply}).eq("ticket_id", ticket_id).execute()
        except Exception as e:
            logger.exception("Supabase draft reply update failed for ticket %s", ticket_id)
            raise RepositoryError(f"Failed to update draft reply of ticket {ticket_id}") from e

        if not resp.data:
            raise NotFoundError(f"Classification result not found for ticket: {ticket_id}")
