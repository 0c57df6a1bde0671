"""
Rate limiting for Kubernetes API writes.

Implements a two-level rate limiting strategy:
1. Global rate limit: Protects the API server from total overload
2. Per-namespace rate limit: One namespace with many SyncedSecrets cannot
   starve the others within a tick
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field

from ..observability.metrics import metrics_collector

logger = logging.getLogger(__name__)


@dataclass
class TokenBucket:
    """
    Async token bucket with continuous refill.

    Waiters are serialized through an asyncio lock.
    """

    rate: float  # tokens per second
    capacity: int  # maximum burst capacity
    tokens: float = field(init=False)
    last_update: float = field(init=False)
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)

    def __post_init__(self):
        self.tokens = float(self.capacity)
        self.last_update = time.monotonic()

    async def acquire(self, timeout: float | None = None) -> bool:
        """
        Acquire a token, waiting if necessary.

        Args:
            timeout: Maximum time to wait for a token (seconds). None waits forever.

        Returns:
            True if a token was acquired, False if the timeout was reached
        """
        start_time = time.monotonic()

        async with self.lock:
            while True:
                now = time.monotonic()
                elapsed = now - self.last_update

                self.tokens = min(self.capacity, self.tokens + elapsed * self.rate)
                self.last_update = now

                if self.tokens >= 1.0:
                    self.tokens -= 1.0
                    return True

                wait_time = (1.0 - self.tokens) / self.rate

                if timeout is not None:
                    remaining = timeout - (time.monotonic() - start_time)
                    if remaining <= 0:
                        return False
                    wait_time = min(wait_time, remaining)

                await asyncio.sleep(wait_time)

    def available_tokens(self) -> float:
        """Current number of available tokens (not lock-protected)."""
        elapsed = time.monotonic() - self.last_update
        return min(self.capacity, self.tokens + elapsed * self.rate)


class RateLimiter:
    """
    Two-level rate limiter for output Secret writes.

    Example:
        rate_limiter = RateLimiter(
            global_rate=10.0,
            global_burst=20,
            namespace_rate=2.0,
            namespace_burst=5,
        )

        await rate_limiter.acquire(namespace="team-a")
    """

    def __init__(
        self,
        global_rate: float,
        global_burst: int,
        namespace_rate: float,
        namespace_burst: int,
    ):
        """
        Initialize rate limiter.

        Args:
            global_rate: Global writes per second
            global_burst: Global burst capacity
            namespace_rate: Per-namespace writes per second
            namespace_burst: Per-namespace burst capacity
        """
        self.global_bucket = TokenBucket(global_rate, global_burst)
        self.namespace_buckets: dict[str, TokenBucket] = {}
        self.namespace_rate = namespace_rate
        self.namespace_burst = namespace_burst

        logger.info(
            f"Rate limiter initialized: "
            f"global={global_rate} TPS (burst={global_burst}), "
            f"namespace={namespace_rate} TPS (burst={namespace_burst})"
        )

    def _get_namespace_bucket(self, namespace: str) -> TokenBucket:
        bucket = self.namespace_buckets.get(namespace)
        if bucket is None:
            bucket = TokenBucket(self.namespace_rate, self.namespace_burst)
            self.namespace_buckets[namespace] = bucket
            logger.debug(
                f"Created rate limit bucket for namespace '{namespace}': "
                f"{self.namespace_rate} TPS"
            )
        return bucket

    async def acquire(self, namespace: str, timeout: float = 30.0) -> None:
        """
        Acquire a token from the namespace bucket, then the global one.

        Args:
            namespace: Namespace of the Secret about to be written
            timeout: Maximum total time to wait (seconds)

        Raises:
            TimeoutError: If tokens cannot be acquired within timeout
        """
        start_time = time.monotonic()

        namespace_bucket = self._get_namespace_bucket(namespace)
        if not await namespace_bucket.acquire(timeout=timeout):
            metrics_collector.rate_limit_timeouts.labels(
                namespace=namespace, limit_type="namespace"
            ).inc()
            raise TimeoutError(
                f"Namespace rate limit timeout for '{namespace}' "
                f"(limit: {self.namespace_rate} req/s)"
            )
        namespace_wait = time.monotonic() - start_time
        metrics_collector.rate_limit_wait.labels(
            namespace=namespace, limit_type="namespace"
        ).observe(namespace_wait)

        remaining_timeout = max(0.1, timeout - namespace_wait)
        global_start = time.monotonic()
        if not await self.global_bucket.acquire(timeout=remaining_timeout):
            metrics_collector.rate_limit_timeouts.labels(
                namespace=namespace, limit_type="global"
            ).inc()
            raise TimeoutError(
                f"Global rate limit timeout (limit: {self.global_bucket.rate} req/s)"
            )
        metrics_collector.rate_limit_wait.labels(
            namespace=namespace, limit_type="global"
        ).observe(time.monotonic() - global_start)

    def forget_namespace(self, namespace: str) -> None:
        """Drop the bucket of a namespace that no longer has resources."""
        self.namespace_buckets.pop(namespace, None)
