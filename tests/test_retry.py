from __future__ import annotations

import pytest

from cluster_bootstrap.errors import RemoteOperationError, TransientInfrastructureError
from cluster_bootstrap.retry import RetryPolicy


class Flaky:
    def __init__(self, failures: int, error: Exception) -> None:
        self.failures = failures
        self.error = error
        self.calls = 0

    def __call__(self) -> str:
        self.calls += 1
        if self.calls <= self.failures:
            raise self.error
        return "ok"


class TestRetryPolicy:
    def test_retries_transient_until_success(self):
        fn = Flaky(3, TransientInfrastructureError("sealed"))
        assert RetryPolicy(max_attempts=5, delay_seconds=0).call(fn) == "ok"
        assert fn.calls == 4

    def test_gives_up_after_max_attempts(self):
        fn = Flaky(10, TransientInfrastructureError("sealed"))
        with pytest.raises(TransientInfrastructureError, match="sealed"):
            RetryPolicy(max_attempts=3, delay_seconds=0).call(fn)
        assert fn.calls == 3

    def test_other_errors_not_retried(self):
        fn = Flaky(1, RemoteOperationError("rejected"))
        with pytest.raises(RemoteOperationError):
            RetryPolicy(max_attempts=5, delay_seconds=0).call(fn)
        assert fn.calls == 1

    @pytest.mark.parametrize(("attempts", "delay"), [(0, 1.0), (1, -1.0)])
    def test_invalid_policy(self, attempts, delay):
        with pytest.raises(ValueError):
            RetryPolicy(max_attempts=attempts, delay_seconds=delay)
