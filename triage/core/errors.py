class AppError(Exception):
    """Base app exception."""


class ValidationError(AppError):
    pass


class NotFoundError(AppError):
    pass


class RepositoryError(AppError):
    pass


class DuplicateResult(RepositoryError):
    pass


class ExternalServiceError(AppError):
    pass


class ClassifierUnavailable(ExternalServiceError):
    pass


class ClassifierResponseInvalid(ExternalServiceError):
    pass


class InvalidTransition(AppError):
    def __init__(self, current: str, target: str) -> None:
        super().__init__(f"Invalid ticket transition: {current} -> {target}")
        self.current = current
        self.target = target


class TicketProcessingError(AppError):
    """Raised when a single ticket could not be driven to `processed`."""

    def __init__(self, ticket_id: int, reason: Exception, outcome=None) -> None:
        super().__init__(f"Ticket {ticket_id} failed: {reason}")
        self.ticket_id = ticket_id
        self.reason = reason
        self.outcome = outcome
