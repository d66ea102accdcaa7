"""Exponential backoff schedules for transient provider failures."""


class RetryConfig:
    """
    Capped exponential backoff.

    Parameters
    ----------
    base_delay : float
        Delay in seconds before the first retry
    max_delay : float
        Upper bound for any single delay
    exponential_base : float
        Growth factor between consecutive retries

    """

    def __init__(
        self,
        base_delay: float = 1.0,
        max_delay: float = 30.0,
        exponential_base: float = 2.0,
    ) -> None:
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.exponential_base = exponential_base

    def get_delay(self, retry_index: int) -> float:
        """
        Calculate the delay before a retry.

        Parameters
        ----------
        retry_index : int
            Zero-based index of the retry about to happen

        Returns
        -------
        float
            Delay in seconds

        """
        delay = self.base_delay * (self.exponential_base**retry_index)
        return min(delay, self.max_delay)

    def __repr__(self) -> str:
        return f"RetryConfig(base_delay={self.base_delay}, max_delay={self.max_delay})"


# Connection and timeout failures: 1s, 2s, 4s ... capped at 10s
NETWORK_BACKOFF = RetryConfig(base_delay=1.0, max_delay=10.0)

# 5xx responses: 2s, 4s, 8s ... capped at 30s
SERVER_BACKOFF = RetryConfig(base_delay=2.0, max_delay=30.0)
