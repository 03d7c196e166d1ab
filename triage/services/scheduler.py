import asyncio
import logging
from dataclasses import dataclass, field

from triage.core.config import min_tick_timeout
from triage.core.errors import RepositoryError, TicketProcessingError
from triage.domain.models import PendingTicket
from triage.domain.ports import TicketRepository
from triage.services.ticket_processor import TicketProcessorService

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TicketFailure:
    ticket_id: int
    error: str


@dataclass(frozen=True)
class BatchReport:
    fetched: int = 0
    processed: int = 0
    failures: tuple[TicketFailure, ...] = field(default_factory=tuple)
    skipped: bool = False
    timed_out: bool = False


def _dedupe(tickets: list[PendingTicket]) -> list[PendingTicket]:
    seen: set[int] = set()
    unique = []
    for ticket in tickets:
        if ticket.id not in seen:
            seen.add(ticket.id)
            unique.append(ticket)
    return unique


class ProcessingScheduler:
    """
    Runs one polling tick: fetch a batch of pending tickets (oldest first) and
    drive each one through the processor, sequentially.

    Only one tick runs at a time. A call made while a batch is still draining
    is skipped, not queued. The guard is released when the tick ends, whether
    it succeeded, failed or timed out.
    """

    def __init__(
        self,
        repo: TicketRepository,
        processor: TicketProcessorService,
        batch_size: int = 5,
        repository_timeout: float = 10.0,
        tick_timeout: float | None = None,
    ) -> None:
        self._repo = repo
        self._processor = processor
        self._batch_size = batch_size
        self._repository_timeout = repository_timeout
        if tick_timeout is None:
            tick_timeout = min_tick_timeout(batch_size, processor.classifier_timeout, processor.repository_timeout)
        self._tick_timeout = tick_timeout
        self._guard = asyncio.Lock()

    @property
    def is_running(self) -> bool:
        return self._guard.locked()

    async def run_once(self) -> BatchReport:
        if self._guard.locked():
            logger.debug("Previous batch still running; skipping tick")
            return BatchReport(skipped=True)

        async with self._guard:
            tickets = await self._fetch_batch()
            if not tickets:
                return BatchReport()

            logger.info("Processing %d pending tickets...", len(tickets))
            processed: list[int] = []
            failures: list[TicketFailure] = []
            in_flight: list[int] = []
            try:
                await asyncio.wait_for(self._drain(tickets, processed, failures, in_flight), self._tick_timeout)
            except asyncio.TimeoutError:
                logger.error("Batch exceeded %ss; ticket(s) %s left in flight", self._tick_timeout, in_flight)
                failures.extend(TicketFailure(ticket_id, "tick timed out") for ticket_id in in_flight)
                return BatchReport(len(tickets), len(processed), tuple(failures), timed_out=True)

            return BatchReport(len(tickets), len(processed), tuple(failures))

    async def _fetch_batch(self) -> list[PendingTicket]:
        try:
            tickets = await asyncio.wait_for(
                asyncio.to_thread(self._repo.fetch_pending, self._batch_size), self._repository_timeout
            )
        except RepositoryError:
            raise
        except Exception as e:
            raise RepositoryError("Failed to fetch pending tickets") from e
        return _dedupe(tickets)

    async def _drain(
        self,
        tickets: list[PendingTicket],
        processed: list[int],
        failures: list[TicketFailure],
        in_flight: list[int],
    ) -> None:
        for ticket in tickets:
            in_flight.append(ticket.id)
            try:
                await self._processor.process(ticket)
                processed.append(ticket.id)
            except TicketProcessingError as e:
                failures.append(TicketFailure(e.ticket_id, f"{type(e.reason).__name__}: {e.reason}"))
            in_flight.remove(ticket.id)


class PollingWorker:
    """
    Fixed-interval timer that fires a scheduler tick every `interval` seconds.

    Ticks are started as tasks on the interval, they are not awaited before the
    next one is due, so a slow batch makes the following ticks hit the
    scheduler's guard and get skipped.
    """

    def __init__(self, scheduler: ProcessingScheduler, interval: float = 5.0) -> None:
        self._scheduler = scheduler
        self._interval = interval
        self._loop_task: asyncio.Task | None = None
        self._ticks: set[asyncio.Task] = set()

    @property
    def running(self) -> bool:
        return self._loop_task is not None and not self._loop_task.done()

    def start(self) -> None:
        if self.running:
            return
        logger.info("Background worker started. Polling for tickets every %ss...", self._interval)
        self._loop_task = asyncio.create_task(self._loop(), name="ticket-poller")

    async def stop(self) -> None:
        if self._loop_task is None:
            return
        logger.info("Shutting down worker...")
        self._loop_task.cancel()
        # tickets being classified stay `processing`
        for task in self._ticks:
            task.cancel()
        await asyncio.gather(self._loop_task, *self._ticks, return_exceptions=True)
        self._loop_task = None
        self._ticks.clear()

    async def _loop(self) -> None:
        while True:
            task = asyncio.create_task(self._tick())
            self._ticks.add(task)
            task.add_done_callback(self._ticks.discard)
            await asyncio.sleep(self._interval)

    async def _tick(self) -> BatchReport | None:
        try:
            report = await self._scheduler.run_once()
        except Exception:
            logger.exception("Error in worker loop")
            return None

        for failure in report.failures:
            logger.warning("Ticket #%s failed: %s", failure.ticket_id, failure.error)
        return report
