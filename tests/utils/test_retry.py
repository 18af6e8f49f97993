import pytest

from kubeshepherd.utils.retry import RetryError, retry


def test_retries_until_success():
    calls, sleeps = [], []

    @retry(retries=3, delay=2, sleep=sleeps.append)
    def flaky():
        calls.append(1)
        if len(calls) < 3:
            raise OSError("not yet")
        return "ok"

    assert flaky() == "ok"
    assert sleeps == [2, 2]


def test_backoff_and_callback():
    sleeps, seen = [], []

    @retry(
        retries=3,
        delay=1,
        backoff=True,
        retry_on=(KeyError,),
        on_retry=lambda n, e: seen.append(n),
        sleep=sleeps.append,
    )
    def always():
        raise KeyError("x")

    with pytest.raises(RetryError) as exc:
        always()

    assert sleeps == [1, 2]
    assert seen == [1, 2, 3]
    assert isinstance(exc.value.__cause__, KeyError)


def test_other_exceptions_pass_through():
    @retry(retries=5, delay=0, retry_on=(KeyError,), sleep=lambda s: None)
    def wrong():
        raise ValueError("no retry")

    with pytest.raises(ValueError):
        wrong()
