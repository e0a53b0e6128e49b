class FinanceError(Exception):
    """Base class for clinic finance errors."""


class PersistenceError(FinanceError):
    """A create, update or list call against the database failed."""


class MalformedDateError(FinanceError, ValueError):
    """A record carries a date that cannot be interpreted."""


class WindowResolutionError(FinanceError, ValueError):
    """A custom reporting window was requested with unusable bounds."""


class NotFoundError(FinanceError, ValueError):
    pass
