class FetchError(RuntimeError):
    """Raised when a signal-phase snapshot cannot be fetched or decoded."""


class FetchTimeout(FetchError):
    """Raised when a signal-phase fetch exceeds its request timeout."""
