class DairyError(Exception):
    """Base class for errors raised by the dairy billing code."""


class ValidationError(DairyError):
    """Rejected user input; shown to the user, never retried."""


class NotFoundError(DairyError):
    """A referenced customer, bill or entry does not exist."""


class ConflictError(DairyError):
    """A storage constraint rejected the write."""


class DuplicateBillError(ValidationError, ConflictError):
    def __init__(self, customer_id, month, year):
        self.customer_id = customer_id
        self.month = month
        self.year = year
        super().__init__(f"A bill already exists for customer {customer_id} for {month:02d}/{year}")


class NoEntriesError(ValidationError):
    def __init__(self, customer_id, month, year):
        self.customer_id = customer_id
        self.month = month
        self.year = year
        super().__init__(f"No milk entries found for customer {customer_id} in {month:02d}/{year}")


class InvalidTransitionError(DairyError):
    """A bill status change that the lifecycle does not allow."""
