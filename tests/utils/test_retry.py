import pytest

from kubeboot.utils.retry import RetryError, backoff_delay, retry


def test_backoff_doubles_and_caps():
    assert [backoff_delay(a, 1.0) for a in (1, 2, 3)] == [1.0, 2.0, 4.0]
    assert backoff_delay(10, 1.0, cap=30.0) == 30.0


def test_retry_until_success():
    calls, sleeps, seen = [], [], []

    @retry(retries=3, delay=2.0, on_retry=lambda n, e: seen.append(n), sleep=sleeps.append)
    def flaky():
        calls.append(1)
        if len(calls) < 3:
            raise OSError("connection refused")
        return "ok"

    assert flaky() == "ok"
    assert seen == [1, 2]
    assert sleeps == [2.0, 2.0]


def test_retry_gives_up_with_cause():
    @retry(retries=2, delay=1.0, exponential=True, sleep=lambda s: None)
    def down():
        raise OSError("no route to host")

    with pytest.raises(RetryError) as exc:
        down()
    assert isinstance(exc.value.__cause__, OSError)


def test_other_exceptions_are_not_retried():
    calls = []

    @retry(retries=5, delay=0, retry_on=(OSError,), sleep=lambda s: None)
    def broken():
        calls.append(1)
        raise ValueError("bad input")

    with pytest.raises(ValueError):
        broken()
    assert calls == [1]
