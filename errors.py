class ValidationError(ValueError):
    """Rejected caller input, such as a malformed or inverted date range."""


class NotFoundError(ValueError):
    pass


class StoreError(RuntimeError):
    """Reading from or writing to the database failed."""


class ConcurrentUpdateError(StoreError):
    """A row changed underneath us; its optimistic version check failed."""
