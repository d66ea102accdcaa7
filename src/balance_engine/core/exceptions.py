"""Exceptions raised inside the engine."""


class BalanceEngineError(Exception):
    """Base class for engine errors."""


class ProviderRequestError(BalanceEngineError):
    """
    Exception raised by provider adapters for failed requests.

    Parameters
    ----------
    message : str
        Error description
    status_code : int | None
        HTTP status or JSON-RPC error code, when known
    retry_after : float | None
        Server supplied retry hint in seconds

    """

    def __init__(self, message: str, status_code: int | None = None, retry_after: float | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.retry_after = retry_after


class UnsupportedNetworkError(BalanceEngineError):
    """Raised when a network code has no configuration."""


class NoEndpointAvailableError(BalanceEngineError):
    """Raised when every endpoint of a network failed its probe."""


class QueryCancelledError(BalanceEngineError):
    """Raised for queued work rejected by a queue clear."""


class UnknownEntityError(BalanceEngineError):
    """Raised when a watched entity id is not registered."""
