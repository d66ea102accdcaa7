"""Classification of provider failures into typed errors with retry policy."""

import logging
from dataclasses import dataclass

import httpx

from balance_engine.core.exceptions import ProviderRequestError
from balance_engine.core.models import ErrorKind
from balance_engine.rpc.retry import NETWORK_BACKOFF, SERVER_BACKOFF

logger = logging.getLogger(__name__)

DEFAULT_RETRY_AFTER = 60.0
UNKNOWN_RETRY_DELAY = 3.0

CROSS_ORIGIN_KEYWORDS = ("cors", "access-control-allow-origin", "cross-origin")
RATE_LIMIT_KEYWORDS = ("rate limit", "too many requests", "throttled")
NOT_FOUND_KEYWORDS = ("not found",)
NETWORK_KEYWORDS = ("network error", "failed to fetch", "connection refused", "timeout", "timed out")

FATAL_KINDS = frozenset({ErrorKind.CROSS_ORIGIN_BLOCKED, ErrorKind.NOT_FOUND})


@dataclass(frozen=True)
class ClassifiedError:
    """
    Typed view of a failure.

    Attributes
    ----------
    kind : ErrorKind
        Failure category
    message : str
        Description of the underlying failure
    retry_after : float | None
        Seconds to wait before retrying, for rate limits
    is_fatal : bool
        True when retrying cannot succeed

    """

    kind: ErrorKind
    message: str
    retry_after: float | None = None
    is_fatal: bool = False


class ErrorClassifier:
    """
    Maps raw failures to ``ClassifiedError`` and decides retry timing.

    Rules are applied in priority order: cross-origin block, rate limit,
    not found, connection failure, server error, unknown.

    """

    def __init__(self, default_retry_after: float = DEFAULT_RETRY_AFTER) -> None:
        self.default_retry_after = default_retry_after

    def classify(self, failure: BaseException) -> ClassifiedError:
        """
        Classify a failure.

        Parameters
        ----------
        failure : BaseException
            Exception raised by a provider call

        Returns
        -------
        ClassifiedError
            Classified error with retry hint

        """
        message = str(failure) or failure.__class__.__name__
        lowered = message.lower()
        status = self._status_code(failure)

        if any(keyword in lowered for keyword in CROSS_ORIGIN_KEYWORDS):
            return ClassifiedError(ErrorKind.CROSS_ORIGIN_BLOCKED, message, is_fatal=True)

        if status == 429 or any(keyword in lowered for keyword in RATE_LIMIT_KEYWORDS):
            retry_after = self._retry_after(failure)
            return ClassifiedError(ErrorKind.RATE_LIMITED, message, retry_after=retry_after)

        if status == 404 or any(keyword in lowered for keyword in NOT_FOUND_KEYWORDS):
            return ClassifiedError(ErrorKind.NOT_FOUND, message, is_fatal=True)

        if isinstance(failure, httpx.TransportError | TimeoutError | ConnectionError) or any(
            keyword in lowered for keyword in NETWORK_KEYWORDS
        ):
            return ClassifiedError(ErrorKind.NETWORK_ERROR, message)

        if status is not None and 500 <= status < 600:
            return ClassifiedError(ErrorKind.SERVER_ERROR, message)

        return ClassifiedError(ErrorKind.UNKNOWN, message)

    def retry_delay(self, error: ClassifiedError, retry_index: int) -> float:
        """
        Seconds to wait before the next attempt.

        Parameters
        ----------
        error : ClassifiedError
            Classified failure
        retry_index : int
            Zero-based index of the retry about to happen

        Returns
        -------
        float
            Delay in seconds (0 for fatal kinds)

        """
        if error.is_fatal:
            return 0.0
        if error.kind is ErrorKind.RATE_LIMITED:
            return error.retry_after if error.retry_after is not None else self.default_retry_after
        if error.kind is ErrorKind.NETWORK_ERROR:
            return NETWORK_BACKOFF.get_delay(retry_index)
        if error.kind is ErrorKind.SERVER_ERROR:
            return SERVER_BACKOFF.get_delay(retry_index)
        return UNKNOWN_RETRY_DELAY

    def should_retry(self, error: ClassifiedError, attempts_made: int, max_attempts: int) -> bool:
        """
        Whether another attempt on the same endpoint is allowed.

        Parameters
        ----------
        error : ClassifiedError
            Classified failure of the latest attempt
        attempts_made : int
            Attempts already performed, including the failed one
        max_attempts : int
            Caller supplied attempt cap

        Returns
        -------
        bool
            True if the caller should retry

        """
        if error.is_fatal or attempts_made >= max_attempts:
            return False
        if error.kind is ErrorKind.RATE_LIMITED:
            # a rate limit is retried once at most
            return attempts_made < 2
        return True

    @staticmethod
    def user_message(kind: ErrorKind, retry_after: float | None = None) -> str:
        """
        Fixed human readable message for an error kind.

        Parameters
        ----------
        kind : ErrorKind
            Failure category
        retry_after : float | None
            Rate limit hint, shown for ``RATE_LIMITED``

        Returns
        -------
        str
            Message suitable for a toast or log line

        """
        if kind is ErrorKind.RATE_LIMITED:
            seconds = int(retry_after if retry_after is not None else DEFAULT_RETRY_AFTER)
            return f"Rate limited, retry after {seconds}s"
        return USER_MESSAGES[kind]

    @staticmethod
    def log(error: ClassifiedError, context: str, attempt: int) -> None:
        """Log a classified failure at a level matching its severity."""
        if error.is_fatal:
            level = logging.ERROR
        elif error.kind is ErrorKind.RATE_LIMITED:
            level = logging.WARNING
        else:
            level = logging.INFO
        logger.log(level, "[%s] attempt %d: %s (%s)", context, attempt, error.message, error.kind.value)

    @staticmethod
    def _status_code(failure: BaseException) -> int | None:
        if isinstance(failure, ProviderRequestError):
            return failure.status_code
        if isinstance(failure, httpx.HTTPStatusError):
            return failure.response.status_code
        return None

    def _retry_after(self, failure: BaseException) -> float:
        if isinstance(failure, ProviderRequestError) and failure.retry_after is not None:
            return failure.retry_after
        if isinstance(failure, httpx.HTTPStatusError):
            hint = parse_retry_after(failure.response.headers)
            if hint is not None:
                return hint
        return self.default_retry_after


USER_MESSAGES: dict[ErrorKind, str] = {
    ErrorKind.CROSS_ORIGIN_BLOCKED: "Blocked by network security policy",
    ErrorKind.NOT_FOUND: "Address not found, check that it is valid",
    ErrorKind.NETWORK_ERROR: "Network connection error, check your connection",
    ErrorKind.SERVER_ERROR: "Provider server error, try again later",
    ErrorKind.UNKNOWN: "Unable to fetch balance, try again later",
    ErrorKind.CANCELLED: "Balance check cancelled",
}


def parse_retry_after(headers: httpx.Headers) -> float | None:
    """
    Read a retry hint from response headers.

    Parameters
    ----------
    headers : httpx.Headers
        Response headers

    Returns
    -------
    float | None
        Seconds from ``Retry-After`` or ``X-RateLimit-Reset``, if numeric

    """
    for header in ("retry-after", "x-ratelimit-reset"):
        value = headers.get(header)
        if value is None:
            continue
        try:
            return float(value)
        except ValueError:
            logger.debug("Ignoring non-numeric %s header: %s", header, value)
    return None
