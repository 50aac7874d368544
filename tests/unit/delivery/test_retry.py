"""
Module: test_retry.py
Description: Unit tests for webhook and live push retry strategies.
"""

import pytest

from relay.delivery.retry import live_push_retrying, schedule_delay, webhook_retrying
from relay.errors import ConnectionGoneError, LivePushError
from relay.models.webhook import AttemptResult


class TestScheduleDelay:

    def test_follows_schedule(self):
        assert [schedule_delay([1, 5, 15], n) for n in (1, 2, 3)] == [1.0, 5.0, 15.0]

    def test_last_delay_repeats(self):
        assert schedule_delay([1, 5, 15], 7) == 15.0


class TestWebhookRetrying:

    @pytest.mark.asyncio
    async def test_returns_last_failed_result(self, fake_sleep):
        results = [AttemptResult(ok=False, status_code=500 + n) for n in range(3)]
        calls = []

        async def attempt():
            calls.append(1)
            return results[len(calls) - 1]

        result = await webhook_retrying(3, [1, 5, 15], sleep=fake_sleep)(attempt)

        assert result.status_code == 502
        assert len(calls) == 3
        assert fake_sleep.calls == [1.0, 5.0]

    @pytest.mark.asyncio
    async def test_stops_on_success(self, fake_sleep):
        async def attempt():
            return AttemptResult(ok=True, status_code=200)

        result = await webhook_retrying(3, [1, 5, 15], sleep=fake_sleep)(attempt)

        assert result.ok is True
        assert fake_sleep.calls == []

    @pytest.mark.asyncio
    async def test_longer_budget_reuses_last_delay(self, fake_sleep):
        async def attempt():
            return AttemptResult(ok=False)

        await webhook_retrying(5, [1, 5, 15], sleep=fake_sleep)(attempt)

        assert fake_sleep.calls == [1.0, 5.0, 15.0, 15.0]


class TestLivePushRetrying:

    @pytest.mark.asyncio
    async def test_reraises_after_budget(self, fake_sleep):
        async def push():
            raise LivePushError("throttled")

        with pytest.raises(LivePushError):
            await live_push_retrying(3, 1.0, sleep=fake_sleep)(push)

        assert fake_sleep.calls == [1, 2]

    @pytest.mark.asyncio
    async def test_gone_is_not_retried(self, fake_sleep):
        async def push():
            raise ConnectionGoneError("conn_1")

        with pytest.raises(ConnectionGoneError):
            await live_push_retrying(3, 1.0, sleep=fake_sleep)(push)

        assert fake_sleep.calls == []
