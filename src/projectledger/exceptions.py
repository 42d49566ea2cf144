"""Typed exceptions for the project tracking and billing services.

Every exception carries a ``code`` class attribute so callers (the HTTP
layer, the CLI) can branch on type and report a machine-readable code
without parsing messages.

    LedgerError
    +-- ValidationError       bad caller input, raised before any write
    +-- NotFoundError         referenced row does not exist
    +-- ConflictError         unique constraint violated
    +-- DependencyFailure     store or external sink failed
    +-- CompensationFailure   multi-step write failed and its rollback failed too
"""


class LedgerError(Exception):
    """Base exception for all projectledger errors."""

    code: str = "LEDGER_ERROR"


class ValidationError(LedgerError):
    """Caller-supplied data violates an invariant."""

    code: str = "VALIDATION_ERROR"

    def __init__(self, message: str, field: str | None = None):
        self.field = field
        super().__init__(message)


class NotFoundError(LedgerError):
    """Referenced entity does not exist or was concurrently deleted."""

    code: str = "NOT_FOUND"

    def __init__(self, entity: str, entity_id: object):
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity.capitalize()} not found: {entity_id}")


class ConflictError(LedgerError):
    """Uniqueness violation (duplicate processor id, tracking code, invoice number)."""

    code: str = "CONFLICT"

    def __init__(self, message: str, constraint: str | None = None):
        self.constraint = constraint
        super().__init__(message)


class DependencyFailure(LedgerError):
    """The persistent store or an external sink returned an error."""

    code: str = "DEPENDENCY_FAILURE"

    def __init__(self, dependency: str, message: str):
        self.dependency = dependency
        super().__init__(f"{dependency}: {message}")


class CompensationFailure(LedgerError):
    """A partial write could not be rolled back; persistent state is inconsistent."""

    code: str = "COMPENSATION_FAILURE"

    def __init__(self, operation: str, original: BaseException, rollback: BaseException):
        self.operation = operation
        self.original = original
        self.rollback = rollback
        super().__init__(
            f"{operation} failed ({original}) and compensation also failed ({rollback})"
        )
