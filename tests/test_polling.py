import pytest

from pcp_controller import poll_until

from conftest import SleepRecorder


class Counter:
    def __init__(self, succeed_on=None):
        self.calls = 0
        self.succeed_on = succeed_on

    def __call__(self):
        self.calls += 1
        return self.succeed_on is not None and self.calls >= self.succeed_on


@pytest.mark.asyncio
async def test_returns_true_on_first_positive_check_without_sleeping():
    sleeps = SleepRecorder()
    check = Counter(succeed_on=1)
    assert await poll_until(check, 1.0, 60, sleep=sleeps)
    assert check.calls == 1
    assert sleeps.calls == []


@pytest.mark.asyncio
async def test_retries_until_check_holds():
    sleeps = SleepRecorder()
    check = Counter(succeed_on=3)
    assert await poll_until(check, 0.5, 10, sleep=sleeps)
    assert check.calls == 3
    assert sleeps.calls == [0.5, 0.5]


@pytest.mark.asyncio
async def test_never_exceeds_max_attempts():
    sleeps = SleepRecorder()
    check = Counter()
    assert not await poll_until(check, 1.0, 4, sleep=sleeps)
    assert check.calls == 4
    assert len(sleeps.calls) == 3


@pytest.mark.asyncio
@pytest.mark.parametrize("attempts", [0, -1])
async def test_zero_attempts_means_single_check(attempts):
    sleeps = SleepRecorder()
    check = Counter()
    assert not await poll_until(check, 1.0, attempts, sleep=sleeps)
    assert check.calls == 1
    assert sleeps.calls == []


@pytest.mark.asyncio
async def test_async_checks_are_awaited():
    calls = []

    async def check():
        calls.append(1)
        return len(calls) == 2

    assert await poll_until(check, 0, 5, sleep=SleepRecorder())
    assert len(calls) == 2


@pytest.mark.asyncio
async def test_check_errors_propagate():
    def check():
        raise RuntimeError("boom")

    with pytest.raises(RuntimeError):
        await poll_until(check, 0, 5, sleep=SleepRecorder())


@pytest.mark.asyncio
async def test_real_sleep_default():
    check = Counter(succeed_on=2)
    assert await poll_until(check, 0.01, 3)
    assert check.calls == 2
