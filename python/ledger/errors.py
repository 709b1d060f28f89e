"""
Error Taxonomy

Domain errors shared by the import pipeline, the rule engine and the API.
"""


class BudgetError(Exception):
    """Base class for operational errors surfaced to API clients."""

    status_code: int = 500
    code: str = "INTERNAL_ERROR"

    def __init__(self, message: str, details: list[dict] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or []

    def to_dict(self) -> dict:
        error = {"message": self.message, "code": self.code}
        if self.details:
            error["details"] = self.details
        return error


class ValidationError(BudgetError):
    """Malformed input: bad file, empty parse result, invalid rule."""

    status_code = 422
    code = "VALIDATION_ERROR"


class NotFoundError(BudgetError):
    """Unknown or expired resource."""

    status_code = 404
    code = "NOT_FOUND"


class ConflictError(BudgetError):
    """Resource is already being processed or was already consumed."""

    status_code = 409
    code = "CONFLICT"


class ImportRowError(BudgetError):
    """A single candidate failed during confirm.

    Never surfaced as a request failure; aggregated into the confirm result.
    """

    status_code = 422
    code = "IMPORT_ROW_ERROR"

    def __init__(self, index: int, message: str):
        super().__init__(message)
        self.index = index
