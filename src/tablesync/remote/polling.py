"""Status polling for submitted remote queries, with capped exponential backoff."""
import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Iterator, Optional

from tablesync.config import Settings, get_settings
from tablesync.errors import QueryTimeoutError, RemoteQueryError
from tablesync.remote.client import QueryStatus, RemoteQueryClient

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PollPolicy:
    """
    interval: delay before the second status check, in seconds.
    max_attempts: status checks before giving up.
    backoff_factor: growth of the delay per attempt (1.0 = fixed interval).
    max_interval: upper bound on any single delay.
    """

    interval: float = 2.0
    max_attempts: int = 10
    backoff_factor: float = 1.5
    max_interval: float = 15.0

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.interval < 0 or self.max_interval < 0:
            raise ValueError("poll intervals must be non-negative")
        if self.backoff_factor < 1.0:
            raise ValueError("backoff_factor must be >= 1.0")

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "PollPolicy":
        settings = settings or get_settings()
        return cls(
            interval=settings.poll_interval_seconds,
            max_attempts=settings.poll_max_attempts,
            backoff_factor=settings.poll_backoff_factor,
            max_interval=settings.poll_max_interval_seconds,
        )

    def delays(self) -> Iterator[float]:
        """Delays to sleep between consecutive checks (max_attempts - 1 values)."""
        delay = self.interval
        for _ in range(self.max_attempts - 1):
            yield min(delay, self.max_interval)
            delay *= self.backoff_factor


async def wait_for_completion(
    client: RemoteQueryClient,
    query_id: str,
    policy: PollPolicy,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> None:
    """
    Poll until the query completes.

    Raises:
        RemoteQueryError: the provider reported the query failed.
        QueryTimeoutError: max_attempts checks saw no terminal status.
    """
    delays = policy.delays()
    for attempt in range(1, policy.max_attempts + 1):
        detail = await client.status_detail(query_id)
        logger.debug(
            "Query %s status %s (attempt %d/%d)",
            query_id, detail.raw_status, attempt, policy.max_attempts,
        )
        if detail.status is QueryStatus.COMPLETED:
            return
        if detail.status is QueryStatus.FAILED:
            raise RemoteQueryError(
                f"Query {query_id} failed: {detail.message or detail.raw_status or 'unknown error'}"
            )
        if attempt < policy.max_attempts:
            await sleep(next(delays))

    raise QueryTimeoutError(
        f"Query {query_id} timed out after {policy.max_attempts} status checks"
    )
