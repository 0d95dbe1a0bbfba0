class FinanceError(Exception):
    """Base class for every failure raised by the ledger core."""


class NotAuthenticated(FinanceError):
    """No owner context was supplied for an owner-scoped operation."""

    def __init__(self, message: str = "Owner context is required") -> None:
        super().__init__(message)


class NotFound(FinanceError, ValueError):
    def __init__(self, collection: str, record_id: str) -> None:
        self.collection = collection
        self.record_id = record_id
        super().__init__(f"{collection} record {record_id!r} not found")


class OwnershipMismatch(FinanceError):
    """The record exists but belongs to another owner."""

    def __init__(self, collection: str, record_id: str) -> None:
        self.collection = collection
        self.record_id = record_id
        super().__init__(f"Access denied to {collection} record {record_id!r}")


class ValidationError(FinanceError, ValueError):
    pass


class PersistenceFailure(FinanceError):
    """The storage backend could not complete the request."""

    user_message = "Could not reach storage, please try again."
