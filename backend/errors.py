"""
errors.py — Typed application errors
Services raise these; the API layer maps them onto HTTP responses.
"""


class AppError(Exception):
    status_code = 500

    def __init__(self, message: str = "Internal Server Error"):
        super().__init__(message)
        self.message = message


class NotFoundError(AppError):
    """Routine, goal or log is absent or not owned by the caller."""
    status_code = 404

    def __init__(self, resource: str = "Resource"):
        super().__init__(f"{resource} not found")
        self.resource = resource


class ValidationError(AppError):
    status_code = 422


class GoalCycleError(ValidationError):
    """A goal's parent chain loops back on itself."""

    def __init__(self, goal_id: int):
        super().__init__(f"Goal hierarchy contains a cycle at goal {goal_id}")
        self.goal_id = goal_id


class ConflictError(AppError):
    """Unique-key violation or write conflict. Safe to retry."""
    status_code = 409


class TransactionAbortError(AppError):
    """A unit of work failed part-way and every write in it was discarded."""
    status_code = 500

    def __init__(self, message: str = "Transaction aborted", cause: Exception | None = None):
        super().__init__(message)
        self.cause = cause
