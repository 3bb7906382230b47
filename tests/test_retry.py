"""Tests for RetryPolicy."""

from unittest.mock import MagicMock, call

import pytest

from account_analytics.config import RetryConfig
from account_analytics.exceptions import StoreError, TransientStoreError
from account_analytics.retry import RetryPolicy


class TestRetryPolicy:
    def test_success_first_try(self, sleep: MagicMock) -> None:
        policy = RetryPolicy(sleep=sleep)
        fn = MagicMock(return_value="ok")

        assert policy.call("read", fn, "a", key="b") == "ok"
        fn.assert_called_once_with("a", key="b")
        sleep.assert_not_called()

    def test_retries_transient_with_backoff(self, sleep: MagicMock) -> None:
        policy = RetryPolicy(RetryConfig(max_attempts=3, initial_delay_seconds=1.0, multiplier=2.0), sleep=sleep)
        fn = MagicMock(side_effect=[TransientStoreError("t1"), TransientStoreError("t2"), "ok"])

        assert policy.call("write", fn) == "ok"
        assert fn.call_count == 3
        assert sleep.call_args_list == [call(1.0), call(2.0)]

    def test_gives_up_after_max_attempts(self, sleep: MagicMock) -> None:
        policy = RetryPolicy(RetryConfig(max_attempts=3), sleep=sleep)
        fn = MagicMock(side_effect=TransientStoreError("down"))

        with pytest.raises(TransientStoreError, match="down"):
            policy.call("write", fn)

        assert fn.call_count == 3
        assert sleep.call_count == 2

    def test_permanent_errors_not_retried(self, sleep: MagicMock) -> None:
        policy = RetryPolicy(sleep=sleep)
        fn = MagicMock(side_effect=StoreError("bad query"))

        with pytest.raises(StoreError):
            policy.call("write", fn)

        fn.assert_called_once()
        sleep.assert_not_called()

    def test_delay_capped(self) -> None:
        policy = RetryPolicy(RetryConfig(initial_delay_seconds=1.0, multiplier=10.0, max_delay_seconds=30.0))

        assert policy.delay_for(1) == 1.0
        assert policy.delay_for(2) == 10.0
        assert policy.delay_for(3) == 30.0
