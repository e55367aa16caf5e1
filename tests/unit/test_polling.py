"""Tests for PollPolicy and wait_for_completion."""
from unittest.mock import AsyncMock

import pytest

from tablesync.config import Settings
from tablesync.errors import QueryTimeoutError, RemoteQueryError
from tablesync.remote.client import QueryStatus, StatusDetail
from tablesync.remote.polling import PollPolicy, wait_for_completion


def scripted_client(*statuses, message=None):
    client = AsyncMock()
    client.status_detail = AsyncMock(side_effect=[
        StatusDetail(status=s, raw_status=s.value.upper(), message=message) for s in statuses
    ])
    return client


class TestPollPolicy:
    def test_fixed_interval_when_factor_is_one(self):
        policy = PollPolicy(interval=2.0, max_attempts=4, backoff_factor=1.0)
        assert list(policy.delays()) == [2.0, 2.0, 2.0]

    def test_exponential_growth_is_capped(self):
        policy = PollPolicy(interval=1.0, max_attempts=6, backoff_factor=2.0, max_interval=5.0)
        assert list(policy.delays()) == [1.0, 2.0, 4.0, 5.0, 5.0]

    def test_single_attempt_has_no_delays(self):
        assert list(PollPolicy(max_attempts=1).delays()) == []

    def test_rejects_zero_attempts(self):
        with pytest.raises(ValueError):
            PollPolicy(max_attempts=0)

    def test_rejects_shrinking_backoff(self):
        with pytest.raises(ValueError):
            PollPolicy(backoff_factor=0.5)

    def test_from_settings(self):
        settings = Settings(
            poll_interval_seconds=1.5,
            poll_max_attempts=7,
            poll_backoff_factor=2.0,
            poll_max_interval_seconds=9.0,
        )
        policy = PollPolicy.from_settings(settings)
        assert policy == PollPolicy(interval=1.5, max_attempts=7, backoff_factor=2.0, max_interval=9.0)


class TestWaitForCompletion:
    @pytest.mark.asyncio
    async def test_returns_once_completed(self):
        client = scripted_client(QueryStatus.PENDING, QueryStatus.RUNNING, QueryStatus.COMPLETED)
        sleep = AsyncMock()
        policy = PollPolicy(interval=1.0, max_attempts=10, backoff_factor=2.0, max_interval=10.0)

        await wait_for_completion(client, "q1", policy, sleep=sleep)

        assert client.status_detail.await_count == 3
        assert [c.args[0] for c in sleep.await_args_list] == [1.0, 2.0]

    @pytest.mark.asyncio
    async def test_failed_raises_with_provider_message(self):
        client = scripted_client(QueryStatus.RUNNING, QueryStatus.FAILED, message="table does not exist")
        with pytest.raises(RemoteQueryError, match="table does not exist"):
            await wait_for_completion(client, "q1", PollPolicy(interval=0), sleep=AsyncMock())

    @pytest.mark.asyncio
    async def test_times_out_after_max_attempts(self):
        client = scripted_client(*[QueryStatus.RUNNING] * 10)
        sleep = AsyncMock()

        with pytest.raises(QueryTimeoutError) as exc_info:
            await wait_for_completion(client, "q1", PollPolicy(interval=0, max_attempts=10), sleep=sleep)

        assert "timed out after 10" in str(exc_info.value)
        assert client.status_detail.await_count == 10
        # No sleep after the last check
        assert sleep.await_count == 9

    @pytest.mark.asyncio
    async def test_timeout_is_a_timeout_error(self):
        client = scripted_client(QueryStatus.PENDING)
        with pytest.raises(TimeoutError):
            await wait_for_completion(client, "q1", PollPolicy(max_attempts=1), sleep=AsyncMock())
