"""
Legal ticket status transitions.

    pending -> processing -> processed -> resolved
                          -> ai_failed

`resolved` and `ai_failed` are terminal. Anything not listed here raises
InvalidTransition, self-transitions included.
"""
from types import MappingProxyType
from typing import Final, Mapping

from triage.core.errors import InvalidTransition
from triage.domain.models import TicketStatus

TRANSITIONS: Final[Mapping[TicketStatus, frozenset[TicketStatus]]] = MappingProxyType(
    {
        TicketStatus.PENDING: frozenset({TicketStatus.PROCESSING}),
        TicketStatus.PROCESSING: frozenset({TicketStatus.PROCESSED, TicketStatus.AI_FAILED}),
        TicketStatus.PROCESSED: frozenset({TicketStatus.RESOLVED}),
        TicketStatus.RESOLVED: frozenset(),
        TicketStatus.AI_FAILED: frozenset(),
    }
)


def can_transition(current: TicketStatus, target: TicketStatus) -> bool:
    return target in TRANSITIONS.get(current, frozenset())


def ensure_transition(current: TicketStatus, target: TicketStatus) -> TicketStatus:
    if not can_transition(current, target):
        raise InvalidTransition(str(current), str(target))
    return target


def is_terminal(status: TicketStatus) -> bool:
    return not TRANSITIONS.get(status)
