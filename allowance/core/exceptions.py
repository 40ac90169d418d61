"""Domain exceptions for the allowance service."""


class AllowanceError(Exception):
    """Base class for all allowance service errors."""


class StoreError(AllowanceError):
    """A call against the activity store failed."""

    def __init__(self, message: str, table: str | None = None, operation: str | None = None):
        super().__init__(message)
        self.table = table
        self.operation = operation


class StoreReadError(StoreError):
    """Querying rows from the store failed."""


class StoreWriteError(StoreError):
    """Inserting, updating or deleting a row failed."""


class UnknownTableError(StoreError):
    """The requested table is not exposed by the store."""
