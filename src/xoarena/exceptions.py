"""Exception hierarchy shared by the store, synchronizer and web layers."""


class XOArenaError(Exception):
    """Base class for every error raised by this package."""


class RecordNotFoundError(XOArenaError):
    """The requested game record does not exist (anymore)."""


class WriteConflictError(XOArenaError):
    """A conditional write lost the race against a concurrent writer."""


class SubscriptionClosedError(XOArenaError):
    """The change-notification channel for a record was lost."""
