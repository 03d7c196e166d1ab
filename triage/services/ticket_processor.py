import asyncio
import logging
from typing import Any, Callable, TypeVar

from triage.core.errors import TicketProcessingError
from triage.domain.models import PendingTicket, ProcessingOutcome, TicketStatus
from triage.domain.ports import CompletionNotifier, TicketClassifier, TicketRepository
from triage.domain.state_machine import can_transition, ensure_transition

logger = logging.getLogger(__name__)

T = TypeVar("T")


class TicketProcessorService:
    """
    Orchestrates the use-case for one ticket:
    - mark it `processing` before the classifier is called
    - classify the ticket content
    - save the result, then mark it `processed`
    - on any failure mark it `ai_failed` (terminal, never retried here)
    - publish the outcome to observers
    """

    def __init__(
        self,
        repo: TicketRepository,
        classifier: TicketClassifier,
        notifier: CompletionNotifier,
        classifier_timeout: float = 20.0,
        repository_timeout: float = 10.0,
    ) -> None:
        self._repo = repo
        self._classifier = classifier
        self._notifier = notifier
        self._classifier_timeout = classifier_timeout
        self._repository_timeout = repository_timeout

    @property
    def classifier_timeout(self) -> float:
        return self._classifier_timeout

    @property
    def repository_timeout(self) -> float:
        return self._repository_timeout

    async def process(self, ticket: PendingTicket) -> ProcessingOutcome:
        status = TicketStatus.PENDING
        try:
            status = await self._transition(ticket.id, status, TicketStatus.PROCESSING)

            analysis = await asyncio.wait_for(self._classifier.classify(ticket.content), self._classifier_timeout)
            result = await self._repo_call(self._repo.save_result, ticket.id, analysis)

            status = await self._transition(ticket.id, status, TicketStatus.PROCESSED)
        except Exception as e:
            outcome = await self._fail(ticket.id, status, e)
            raise TicketProcessingError(ticket.id, e, outcome) from e

        logger.info("Ticket #%s processed. Urgency: %s", ticket.id, result.urgency.value)
        outcome = ProcessingOutcome(ticket_id=ticket.id, status=status, ai_result=result)
        await self._publish(outcome)
        return outcome

    async def _fail(self, ticket_id: int, status: TicketStatus, error: Exception) -> ProcessingOutcome | None:
        logger.error("Failed to process ticket #%s: %s: %s", ticket_id, type(error).__name__, error)

        if not can_transition(status, TicketStatus.AI_FAILED):
            # never left `pending`, the next tick picks it up again
            logger.warning("Ticket #%s left in status %s", ticket_id, status.value)
            return None

        try:
            status = await self._transition(ticket_id, status, TicketStatus.AI_FAILED)
        except Exception:
            logger.exception("Could not mark ticket #%s as %s", ticket_id, TicketStatus.AI_FAILED.value)

        outcome = ProcessingOutcome(ticket_id=ticket_id, status=status, ai_result=None)
        await self._publish(outcome)
        return outcome

    async def _transition(self, ticket_id: int, current: TicketStatus, target: TicketStatus) -> TicketStatus:
        ensure_transition(current, target)
        await self._repo_call(self._repo.set_status, ticket_id, target)
        return target

    async def _repo_call(self, fn: Callable[..., T], *args: Any) -> T:
        # the Supabase client is synchronous
        return await asyncio.wait_for(asyncio.to_thread(fn, *args), self._repository_timeout)

    async def _publish(self, outcome: ProcessingOutcome) -> None:
        try:
            await self._notifier.publish(outcome)
        except Exception:
            logger.exception("Completion notification failed for ticket #%s", outcome.ticket_id)
