"""
Pytest configuration and in-memory collaborators
"""
import asyncio
import os
from datetime import datetime, timedelta, timezone

import pytest

# triage.main builds the app at import time
os.environ.setdefault("SUPABASE_URL", "https://example.supabase.co")
os.environ.setdefault("SUPABASE_SERVICE_ROLE_KEY", "test-service-role-key")
os.environ.setdefault("WORKER_ENABLED", "false")

from triage.core.errors import ClassifierResponseInvalid, DuplicateResult, NotFoundError  # noqa: E402
from triage.domain.models import (  # noqa: E402
    ClassificationResult,
    PendingTicket,
    Ticket,
    TicketAnalysis,
    TicketCategory,
    TicketFilters,
    TicketPage,
    TicketStatus,
    TicketUrgency,
    TicketWithResult,
)
from triage.services.ticket_processor import TicketProcessorService  # noqa: E402

_EPOCH = datetime(2026, 1, 1, tzinfo=timezone.utc)


class InMemoryTicketRepository:
    """Honours the repository contract: FIFO pending, idempotent status, insert-only results."""

    def __init__(self) -> None:
        self.tickets: dict[int, Ticket] = {}
        self.results: dict[int, ClassificationResult] = {}
        self.status_updates: list[tuple[int, TicketStatus]] = []
        self.fail_fetch: Exception | None = None
        self.fail_set_status: dict[tuple[int, TicketStatus], Exception] = {}
        self._next_id = 1

    def add(self, content: str, status: TicketStatus = TicketStatus.PENDING, email: str | None = None,
            created_at: datetime | None = None) -> Ticket:
        created = created_at or _EPOCH + timedelta(minutes=self._next_id)
        ticket = Ticket(id=self._next_id, email=email, content=content, status=status,
                        created_at=created, updated_at=created)
        self.tickets[ticket.id] = ticket
        self._next_id += 1
        return ticket

    def status_of(self, ticket_id: int) -> TicketStatus:
        return self.tickets[ticket_id].status

    def fetch_pending(self, limit: int) -> list[PendingTicket]:
        if self.fail_fetch:
            raise self.fail_fetch
        pending = sorted(
            (t for t in self.tickets.values() if t.status == TicketStatus.PENDING),
            key=lambda t: (t.created_at, t.id),
        )
        return [PendingTicket(id=t.id, content=t.content) for t in pending[:limit]]

    def set_status(self, ticket_id: int, status: TicketStatus) -> None:
        if (ticket_id, status) in self.fail_set_status:
            raise self.fail_set_status[(ticket_id, status)]
        ticket = self.tickets.get(ticket_id)
        if ticket is None:
            raise NotFoundError(f"Ticket not found: {ticket_id}")
        if ticket.status == status:
            return
        self.tickets[ticket_id] = ticket.model_copy(update={"status": status})
        self.status_updates.append((ticket_id, status))

    def save_result(self, ticket_id: int, analysis: TicketAnalysis) -> ClassificationResult:
        if ticket_id in self.results:
            raise DuplicateResult(f"Ticket {ticket_id} already has a classification result")
        result = ClassificationResult(ticket_id=ticket_id, processed_at=_EPOCH, **analysis.model_dump())
        self.results[ticket_id] = result
        return result

    def create_ticket(self, email: str | None, content: str) -> Ticket:
        return self.add(content, email=email)

    def list_tickets(self, filters: TicketFilters) -> TicketPage:
        rows = [self.get_ticket(ticket_id) for ticket_id in sorted(self.tickets, reverse=True)]
        if filters.status:
            rows = [t for t in rows if t.status == filters.status]
        if filters.urgency:
            rows = [t for t in rows if t.ai_result and t.ai_result.urgency == filters.urgency]
        if filters.category:
            rows = [t for t in rows if t.ai_result and t.ai_result.category == filters.category]
        start = (filters.page - 1) * filters.limit
        return TicketPage(tickets=rows[start:start + filters.limit], total_count=len(rows))

    def get_ticket(self, ticket_id: int) -> TicketWithResult | None:
        ticket = self.tickets.get(ticket_id)
        if ticket is None:
            return None
        return TicketWithResult(**ticket.model_dump(), ai_result=self.results.get(ticket_id))

    def update_draft_reply(self, ticket_id: int, draft_reply: str) -> None:
        result = self.results.get(ticket_id)
        if result is None:
            raise NotFoundError(f"Classification result not found for ticket: {ticket_id}")
        self.results[ticket_id] = result.model_copy(update={"draft_reply": draft_reply})


class FakeClassifier:
    """Returns queued analyses or raises queued errors; records what it was asked."""

    def __init__(self, repo: InMemoryTicketRepository | None = None) -> None:
        self._repo = repo
        self.responses: dict[str, object] = {}
        self.default: object = TicketAnalysis(
            category=TicketCategory.TECHNICAL,
            sentiment_score=5,
            urgency=TicketUrgency.MEDIUM,
            draft_reply="Thanks, we are looking into it.",
        )
        self.calls: list[str] = []
        self.status_seen: list[TicketStatus] = []
        self.delay = 0.0
        self.started = asyncio.Event()
        self.release: asyncio.Event | None = None

    async def classify(self, content: str) -> TicketAnalysis:
        self.calls.append(content)
        if self._repo is not None:
            for ticket in self._repo.tickets.values():
                if ticket.content == content:
                    self.status_seen.append(ticket.status)
        self.started.set()
        if self.release is not None:
            await self.release.wait()
        if self.delay:
            await asyncio.sleep(self.delay)
        response = self.responses.get(content, self.default)
        if isinstance(response, Exception):
            raise response
        return response


class RecordingNotifier:
    def __init__(self, error: Exception | None = None) -> None:
        self.events = []
        self._error = error

    async def publish(self, outcome) -> None:
        self.events.append(outcome)
        if self._error:
            raise self._error


@pytest.fixture
def repo() -> InMemoryTicketRepository:
    return InMemoryTicketRepository()


@pytest.fixture
def classifier(repo) -> FakeClassifier:
    return FakeClassifier(repo)


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def processor(repo, classifier, notifier) -> TicketProcessorService:
    return TicketProcessorService(
        repo=repo,
        classifier=classifier,
        notifier=notifier,
        classifier_timeout=0.5,
        repository_timeout=1.0,
    )


@pytest.fixture
def invalid_response() -> ClassifierResponseInvalid:
    return ClassifierResponseInvalid("LLM returned a response that is not valid JSON")
