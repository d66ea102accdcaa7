"""RPC layer with endpoint management, retry policy, rate limiting, and caching."""

from balance_engine.rpc.cache import CacheEntry, ResultCache
from balance_engine.rpc.errors import ClassifiedError, ErrorClassifier, parse_retry_after
from balance_engine.rpc.provider import ProviderRegistry
from balance_engine.rpc.rate_limiter import RateLimiter
from balance_engine.rpc.retry import NETWORK_BACKOFF, SERVER_BACKOFF, RetryConfig

__all__ = [
    "NETWORK_BACKOFF",
    "SERVER_BACKOFF",
    "CacheEntry",
    "ClassifiedError",
    "ErrorClassifier",
    "ProviderRegistry",
    "RateLimiter",
    "ResultCache",
    "RetryConfig",
    "parse_retry_after",
]
