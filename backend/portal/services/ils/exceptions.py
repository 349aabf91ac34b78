"""ILS errors."""


class ILSException(Exception):
    """Raised when the library system cannot complete a request."""
