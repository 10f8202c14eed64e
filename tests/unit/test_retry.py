import pytest

from payaware.utils.retry import retry_with_fixed_delay


@pytest.mark.asyncio
async def test_succeeds_after_transient_failures():
    calls = []

    async def flaky():
        calls.append(1)
        if len(calls) < 3:
            raise ConnectionError("not yet")
        return "connected"

    result = await retry_with_fixed_delay(flaky, name="flaky", attempts=3, delay_s=0)

    assert result == "connected"
    assert len(calls) == 3


@pytest.mark.asyncio
async def test_reraises_after_last_attempt():
    calls = []

    async def broken():
        calls.append(1)
        raise ConnectionError("down")

    with pytest.raises(ConnectionError):
        await retry_with_fixed_delay(broken, name="broken", attempts=3, delay_s=0)

    assert len(calls) == 3


@pytest.mark.asyncio
async def test_unlisted_exceptions_are_not_retried():
    calls = []

    async def bad_input():
        calls.append(1)
        raise ValueError("bad")

    with pytest.raises(ValueError):
        await retry_with_fixed_delay(
            bad_input, name="bad", attempts=3, delay_s=0, exceptions=(ConnectionError,)
        )

    assert calls == [1]
