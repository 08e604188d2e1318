"""
Error taxonomy for the timesheet and lieu ledger services.
"""


class TimesheetError(Exception):
    """Base class for all errors raised by lieutime services."""


class ValidationError(TimesheetError):
    """Malformed hours or grouping key. Raised before anything is written."""

    def __init__(self, message: str, field: str = None):
        super().__init__(message)
        self.field = field


class LockedEntryError(TimesheetError):
    """Mutation attempted on an entry (or row) that is no longer Draft."""

    def __init__(self, message: str = "Entry is locked.", entry_ids=None):
        super().__init__(message)
        self.entry_ids = list(entry_ids or [])


class InvalidTransitionError(TimesheetError):
    """Status change not allowed by the entry workflow."""


class RecomputeTransactionError(TimesheetError):
    """Storage failure while replacing a user's ledger. The previous ledger still stands."""


class ConfigMissingError(TimesheetError):
    """A config key has no stored value."""

    def __init__(self, key: str):
        super().__init__(f"Config key '{key}' is not set")
        self.key = key


class EntryNotFoundError(TimesheetError):
    pass


class NotificationNotFoundError(TimesheetError):
    pass


class PermissionDeniedError(TimesheetError):
    pass
