"""
Tests for the retry policy
"""
from unittest.mock import Mock

import pytest
import requests

from src.propsignal.scrapers.retry import RetryPolicy


class TestRetryPolicy:
    """Tests for RetryPolicy"""

    def test_delay_schedule(self):
        policy = RetryPolicy(base_delay=2.0, backoff_factor=2.0, max_delay=5.0)

        assert policy.delay_for(1) == 2.0
        assert policy.delay_for(2) == 4.0
        assert policy.delay_for(3) == 5.0

    def test_succeeds_after_transient_failures(self):
        sleep = Mock()
        policy = RetryPolicy(max_attempts=3, sleep=sleep)
        func = Mock(side_effect=[requests.Timeout("slow"), requests.ConnectionError("reset"), ["ok"]])

        assert policy.call(func) == ["ok"]
        assert func.call_count == 3
        assert [c.args[0] for c in sleep.call_args_list] == [2.0, 4.0]

    def test_exhausted_raises_last_error(self):
        sleep = Mock()
        policy = RetryPolicy(max_attempts=2, sleep=sleep)
        func = Mock(side_effect=requests.ConnectionError("down"))

        with pytest.raises(requests.ConnectionError):
            policy.call(func)

        assert func.call_count == 2
        assert sleep.call_count == 1

    def test_non_transient_error_not_retried(self):
        sleep = Mock()
        policy = RetryPolicy(sleep=sleep)
        func = Mock(side_effect=KeyError("bad"))

        with pytest.raises(KeyError):
            policy.call(func)

        assert func.call_count == 1
        sleep.assert_not_called()

    def test_requires_an_attempt(self):
        with pytest.raises(ValueError):
            RetryPolicy(max_attempts=0)
