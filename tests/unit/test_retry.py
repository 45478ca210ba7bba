from __future__ import annotations

import pytest

from chat_core.application.exceptions import NotFoundError, TransientStoreError
from chat_core.application.retry import backoff_delay, with_store_retry


async def _no_sleep(_delay):
    pass


def test_backoff_delay_is_capped():
    assert 0.1 <= backoff_delay(1, 0.1, 1.0) <= 0.125
    assert 1.0 <= backoff_delay(10, 0.1, 1.0) <= 1.025


@pytest.mark.asyncio
async def test_transient_errors_are_retried_until_success():
    calls = []

    async def op():
        calls.append(1)
        if len(calls) < 3:
            raise ConnectionError("reset")
        return "ok"

    assert await with_store_retry("op", op, max_attempts=3, sleep=_no_sleep) == "ok"
    assert len(calls) == 3


@pytest.mark.asyncio
async def test_exhausted_retries_raise_transient_store_error():
    async def op():
        raise TimeoutError

    with pytest.raises(TransientStoreError):
        await with_store_retry("op", op, max_attempts=2, sleep=_no_sleep)


@pytest.mark.asyncio
async def test_permanent_errors_are_not_retried():
    calls = []

    async def op():
        calls.append(1)
        raise NotFoundError("gone")

    with pytest.raises(NotFoundError):
        await with_store_retry("op", op, max_attempts=5, sleep=_no_sleep)
    assert len(calls) == 1
