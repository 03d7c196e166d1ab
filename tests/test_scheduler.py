"""
Scheduler tests

Batches are processed sequentially: tickets are classified one after the
other in FIFO order, and each outcome is reported on its own.
"""
import asyncio
from datetime import datetime, timezone

import pytest

from triage.core.errors import ClassifierUnavailable, RepositoryError
from triage.domain.models import PendingTicket, TicketAnalysis, TicketCategory, TicketStatus, TicketUrgency
from triage.services.scheduler import BatchReport, PollingWorker, ProcessingScheduler


@pytest.fixture
def scheduler(repo, processor) -> ProcessingScheduler:
    return ProcessingScheduler(repo, processor, batch_size=5, repository_timeout=1.0, tick_timeout=5.0)


class TestRunOnce:
    @pytest.mark.asyncio
    async def test_no_pending_tickets_is_a_no_op(self, scheduler, classifier, notifier):
        report = await scheduler.run_once()

        assert report == BatchReport()
        assert classifier.calls == []
        assert notifier.events == []

    @pytest.mark.asyncio
    async def test_every_fetched_ticket_ends_processed_or_failed(self, repo, classifier, notifier, scheduler):
        tickets = [repo.add(f"Ticket number {i} needs help") for i in range(4)]
        classifier.responses[tickets[1].content] = ClassifierUnavailable("502 from provider")

        report = await scheduler.run_once()

        assert report.fetched == 4
        assert report.processed == 3
        assert [f.ticket_id for f in report.failures] == [tickets[1].id]
        assert "ClassifierUnavailable" in report.failures[0].error
        final = {repo.status_of(t.id) for t in tickets}
        assert final == {TicketStatus.PROCESSED, TicketStatus.AI_FAILED}
        assert [e.ticket_id for e in notifier.events] == [t.id for t in tickets]

    @pytest.mark.asyncio
    async def test_batch_is_fifo_and_bounded(self, repo, classifier):
        late = repo.add("Created last but inserted first", created_at=datetime(2026, 3, 1, tzinfo=timezone.utc))
        early = [repo.add(f"Older ticket {i} content") for i in range(6)]
        processor_scheduler = ProcessingScheduler(repo, _processor_for(repo, classifier), batch_size=5)

        report = await processor_scheduler.run_once()

        assert report.fetched == 5
        assert classifier.calls == [t.content for t in early[:5]]
        assert repo.status_of(early[5].id) == TicketStatus.PENDING
        assert repo.status_of(late.id) == TicketStatus.PENDING

    @pytest.mark.asyncio
    async def test_duplicate_ids_in_a_batch_are_processed_once(self, repo, classifier, processor, monkeypatch):
        ticket = repo.add("Please fix the export button")
        duplicate = [PendingTicket(id=ticket.id, content=ticket.content)] * 2
        monkeypatch.setattr(repo, "fetch_pending", lambda limit: duplicate)
        scheduler = ProcessingScheduler(repo, processor)

        report = await scheduler.run_once()

        assert report.fetched == 1
        assert classifier.calls == [ticket.content]

    @pytest.mark.asyncio
    async def test_single_ticket_end_to_end(self, repo, classifier, notifier, processor):
        ticket = repo.add("My invoice is wrong and I need a refund")
        classifier.responses[ticket.content] = TicketAnalysis(
            category=TicketCategory.BILLING,
            sentiment_score=3,
            urgency=TicketUrgency.HIGH,
            draft_reply="We're sorry for the billing mix-up, a refund is on its way.",
        )
        scheduler = ProcessingScheduler(repo, processor, batch_size=1)

        report = await scheduler.run_once()

        assert report == BatchReport(fetched=1, processed=1)
        assert classifier.status_seen == [TicketStatus.PROCESSING]
        assert repo.status_of(ticket.id) == TicketStatus.PROCESSED
        assert repo.results[ticket.id].category == TicketCategory.BILLING
        assert len(notifier.events) == 1
        event = notifier.events[0].to_event()
        assert event["ticketId"] == ticket.id
        assert event["status"] == "processed"

    @pytest.mark.asyncio
    async def test_every_classifier_timeout_ends_ai_failed(self, repo, classifier, notifier):
        tickets = [repo.add(f"Slow model on ticket {i}") for i in range(3)]
        classifier.delay = 5
        scheduler = ProcessingScheduler(repo, _processor_for(repo, classifier, notifier, classifier_timeout=0.1))

        report = await scheduler.run_once()

        assert not report.timed_out
        assert report.fetched == 3
        assert [f.ticket_id for f in report.failures] == [t.id for t in tickets]
        assert all("TimeoutError" in f.error for f in report.failures)
        assert {repo.status_of(t.id) for t in tickets} == {TicketStatus.AI_FAILED}
        assert [e.ticket_id for e in notifier.events] == [t.id for t in tickets]

    @pytest.mark.asyncio
    async def test_fetch_failure_aborts_tick(self, repo, classifier, scheduler):
        repo.add("This ticket should not be touched")
        repo.fail_fetch = RepositoryError("connection reset")

        with pytest.raises(RepositoryError):
            await scheduler.run_once()

        assert classifier.calls == []
        assert not scheduler.is_running

    @pytest.mark.asyncio
    async def test_unexpected_fetch_error_is_wrapped(self, repo, scheduler):
        repo.fail_fetch = OSError("socket closed")

        with pytest.raises(RepositoryError) as exc_info:
            await scheduler.run_once()

        assert isinstance(exc_info.value.__cause__, OSError)


class TestReentrancy:
    @pytest.mark.asyncio
    async def test_second_call_is_skipped_while_first_is_in_flight(self, repo, classifier, scheduler):
        first = repo.add("First ticket waiting on the model")
        classifier.release = asyncio.Event()

        in_flight = asyncio.create_task(scheduler.run_once())
        await classifier.started.wait()
        repo.add("Second ticket created meanwhile")

        second = await scheduler.run_once()

        assert second.skipped
        assert second.processed == 0
        assert classifier.calls == [first.content]

        classifier.release.set()
        report = await in_flight
        assert report.processed == 1
        assert not scheduler.is_running

    @pytest.mark.asyncio
    async def test_guard_is_released_after_a_tick(self, repo, scheduler):
        repo.add("First batch ticket content")
        await scheduler.run_once()
        repo.add("Second batch ticket content")

        report = await scheduler.run_once()

        assert not report.skipped
        assert report.processed == 1

    @pytest.mark.asyncio
    async def test_stuck_tick_times_out_and_releases_guard(self, repo, classifier, notifier):
        stuck = repo.add("The model never answers this one")
        waiting = repo.add("Queued behind the stuck ticket")
        classifier.release = asyncio.Event()
        scheduler = ProcessingScheduler(repo, _processor_for(repo, classifier, notifier, 30), tick_timeout=0.2)

        report = await scheduler.run_once()

        assert report.timed_out
        assert [f.ticket_id for f in report.failures] == [stuck.id]
        assert repo.status_of(stuck.id) == TicketStatus.PROCESSING
        assert repo.status_of(waiting.id) == TicketStatus.PENDING
        assert not scheduler.is_running


class TestPollingWorker:
    @pytest.mark.asyncio
    async def test_worker_ticks_until_stopped(self, repo, scheduler):
        ticket = repo.add("Picked up by the polling loop")
        worker = PollingWorker(scheduler, interval=0.01)

        worker.start()
        for _ in range(100):
            if repo.status_of(ticket.id) == TicketStatus.PROCESSED:
                break
            await asyncio.sleep(0.01)
        await worker.stop()

        assert repo.status_of(ticket.id) == TicketStatus.PROCESSED
        assert not worker.running

    @pytest.mark.asyncio
    async def test_tick_errors_do_not_stop_the_worker(self, repo, scheduler):
        repo.fail_fetch = RepositoryError("db unavailable")
        worker = PollingWorker(scheduler, interval=0.01)

        worker.start()
        await asyncio.sleep(0.05)
        assert worker.running
        await worker.stop()

    @pytest.mark.asyncio
    async def test_stop_leaves_in_flight_ticket_processing(self, repo, classifier, scheduler):
        ticket = repo.add("Being classified during shutdown")
        classifier.release = asyncio.Event()
        worker = PollingWorker(scheduler, interval=0.01)

        worker.start()
        await classifier.started.wait()
        await worker.stop()

        assert repo.status_of(ticket.id) == TicketStatus.PROCESSING
        assert len(classifier.calls) == 1


def _processor_for(repo, classifier, notifier=None, classifier_timeout=0.5):
    from conftest import RecordingNotifier
    from triage.services.ticket_processor import TicketProcessorService

    return TicketProcessorService(repo, classifier, notifier or RecordingNotifier(), classifier_timeout=classifier_timeout)
