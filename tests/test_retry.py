from __future__ import annotations

import pytest

from einkframe._retry import retry_async


class _Flaky:
    def __init__(self, failures: int, exc: type[Exception] = OSError) -> None:
        self.failures = failures
        self.exc = exc
        self.calls = 0

    async def __call__(self) -> str:
        self.calls += 1
        if self.calls <= self.failures:
            raise self.exc(f"failure {self.calls}")
        return "ok"


@pytest.mark.asyncio
async def test_returns_after_transient_failures() -> None:
    op = _Flaky(2)

    assert await retry_async(op, attempts=3, delay=0.0) == "ok"
    assert op.calls == 3


@pytest.mark.asyncio
async def test_reraises_when_budget_is_spent() -> None:
    op = _Flaky(5)

    with pytest.raises(OSError, match="failure 2"):
        await retry_async(op, attempts=2, delay=0.0)
    assert op.calls == 2


@pytest.mark.asyncio
async def test_non_retryable_errors_propagate_immediately() -> None:
    op = _Flaky(5, exc=KeyError)

    with pytest.raises(KeyError):
        await retry_async(op, attempts=3, delay=0.0, retry_on=(OSError,))
    assert op.calls == 1


@pytest.mark.asyncio
async def test_rejects_zero_attempts() -> None:
    with pytest.raises(ValueError):
        await retry_async(_Flaky(0), attempts=0, delay=0.0)
