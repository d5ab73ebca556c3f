import unittest

from gitopsmgr.errors import (
    ApplyRejectedError,
    DestinationUnreachableError,
    GitOpsMgrError,
    RunCancelledError,
)
from gitopsmgr.models import RetryPolicy
from gitopsmgr.util.cancel import CancelToken
from gitopsmgr.util.retry import call_with_retry


def _map(exc: Exception) -> GitOpsMgrError:
    if isinstance(exc, OSError):
        return DestinationUnreachableError(str(exc), cause=exc)
    return ApplyRejectedError(str(exc), cause=exc)


class Flaky:
    def __init__(self, failures: list) -> None:
        self.failures = list(failures)
        self.calls = 0

    def __call__(self) -> str:
        self.calls += 1
        if self.failures:
            raise self.failures.pop(0)
        return "ok"


NO_DELAY = RetryPolicy(limit=3, base_delay=0.0, factor=1.0, max_delay=0.0)


class TestCallWithRetry(unittest.TestCase):
    def test_returns_first_success(self) -> None:
        func = Flaky([])
        self.assertEqual(
            call_with_retry(func, policy=NO_DELAY, token=CancelToken(), map_exception=_map, what="x"),
            "ok",
        )
        self.assertEqual(func.calls, 1)

    def test_retries_transient_then_succeeds(self) -> None:
        func = Flaky([OSError("reset"), DestinationUnreachableError("503")])
        result = call_with_retry(
            func, policy=NO_DELAY, token=CancelToken(), map_exception=_map, what="x"
        )
        self.assertEqual(result, "ok")
        self.assertEqual(func.calls, 3)

    def test_gives_up_after_limit(self) -> None:
        func = Flaky([OSError("down")] * 10)
        with self.assertRaises(DestinationUnreachableError) as ctx:
            call_with_retry(
                func, policy=NO_DELAY, token=CancelToken(), map_exception=_map, what="x"
            )
        self.assertEqual(func.calls, 4)
        self.assertIsInstance(ctx.exception.cause, OSError)

    def test_non_transient_is_not_retried(self) -> None:
        func = Flaky([ValueError("bad")])
        with self.assertRaises(ApplyRejectedError):
            call_with_retry(
                func, policy=NO_DELAY, token=CancelToken(), map_exception=_map, what="x"
            )
        self.assertEqual(func.calls, 1)

    def test_custom_should_retry(self) -> None:
        func = Flaky([ValueError("bad"), ValueError("bad")])
        result = call_with_retry(
            func,
            policy=NO_DELAY,
            token=CancelToken(),
            map_exception=_map,
            what="x",
            should_retry=lambda e: isinstance(e, ApplyRejectedError),
        )
        self.assertEqual(result, "ok")

    def test_cancelled_token_stops_before_call(self) -> None:
        token = CancelToken()
        token.cancel()
        func = Flaky([])
        with self.assertRaises(RunCancelledError):
            call_with_retry(func, policy=NO_DELAY, token=token, map_exception=_map, what="x")
        self.assertEqual(func.calls, 0)


if __name__ == "__main__":
    unittest.main()
