"""Domain-specific exceptions"""


class DomainException(Exception):
    """Base exception for domain layer"""

    pass


class InvalidInputError(DomainException):
    """Argument is malformed or out of range"""

    def __init__(self, message: str, field: str | None = None):
        super().__init__(message)
        self.field = field


class InvalidStateError(DomainException):
    """Loan or schedule line is in the wrong lifecycle state for the operation"""

    def __init__(self, message: str, state: str | None = None):
        super().__init__(message)
        self.state = state


class LoanNotFoundError(DomainException):
    """Referenced loan does not exist"""

    pass


class PersistenceFailure(DomainException):
    """Storage layer could not commit"""

    pass


class AssistantError(DomainException):
    """Conversational AI provider returned an error or is unavailable"""

    pass
