from functools import lru_cache

from triage.core.config import get_settings
from triage.domain.ports import CompletionNotifier
from triage.infra.llm_classifier import LLMTicketClassifier, build_classifier
from triage.infra.notifier import WebSocketNotifier
from triage.infra.supabase_repo import SupabaseTicketRepository
from triage.services.scheduler import PollingWorker, ProcessingScheduler
from triage.services.ticket_processor import TicketProcessorService
from triage.services.ticket_service import TicketService


@lru_cache(maxsize=1)
def get_ticket_repository() -> SupabaseTicketRepository:
    settings = get_settings()
    return SupabaseTicketRepository(settings.supabase_url, settings.supabase_service_role_key)


@lru_cache(maxsize=1)
def get_ticket_classifier() -> LLMTicketClassifier:
    return build_classifier(get_settings())


@lru_cache(maxsize=1)
def get_notifier() -> WebSocketNotifier:
    return WebSocketNotifier()


def get_ticket_service() -> TicketService:
    return TicketService(repo=get_ticket_repository())


def build_worker(notifier: CompletionNotifier | None = None) -> PollingWorker:
    settings = get_settings()
    repo = get_ticket_repository()
    processor = TicketProcessorService(
        repo=repo,
        classifier=get_ticket_classifier(),
        notifier=notifier or get_notifier(),
        classifier_timeout=settings.classifier_timeout_seconds,
        repository_timeout=settings.repository_timeout_seconds,
    )
    scheduler = ProcessingScheduler(
        repo=repo,
        processor=processor,
        batch_size=settings.batch_size,
        repository_timeout=settings.repository_timeout_seconds,
        tick_timeout=settings.tick_timeout_seconds,
    )
    return PollingWorker(scheduler, interval=settings.poll_interval_seconds)
