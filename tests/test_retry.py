"""
Tests for bounded retry and readiness polling.
"""

import socket
import threading

import pytest

from provisionctl.errors import DeadlineExceeded, OperationCancelled, ProcessError, ReadinessTimeout
from provisionctl.readiness import probe_tcp, wait_for_tcp
from provisionctl.retry import retry_with_backoff


class Flaky:
    """Fails `failures` times, then returns 'ok'."""

    def __init__(self, failures, error=None):
        self.failures = failures
        self.calls = 0
        self.error = error or ProcessError("transient")

    def __call__(self):
        self.calls += 1
        if self.calls <= self.failures:
            raise self.error
        return "ok"


class TestRetryWithBackoff:

    def test_succeeds_after_transient_failures(self):
        flaky = Flaky(2)
        assert retry_with_backoff(flaky, "flaky", max_attempts=3, initial_delay=0) == "ok"
        assert flaky.calls == 3

    def test_reraises_last_error_when_attempts_exhausted(self):
        flaky = Flaky(5)
        with pytest.raises(ProcessError, match="transient"):
            retry_with_backoff(flaky, "flaky", max_attempts=3, initial_delay=0)
        assert flaky.calls == 3

    def test_other_errors_are_not_retried(self):
        flaky = Flaky(1, error=ValueError("bug"))
        with pytest.raises(ValueError):
            retry_with_backoff(flaky, "flaky", max_attempts=3, initial_delay=0)
        assert flaky.calls == 1

    def test_deadline_raises_typed_timeout(self):
        now = [0.0]

        def clock():
            return now[0]

        def operation():
            now[0] += 10
            raise ProcessError("still down")

        with pytest.raises(ReadinessTimeout) as exc_info:
            retry_with_backoff(
                operation, "probe", max_attempts=None, initial_delay=0.01, timeout=25, clock=clock
            )
        assert exc_info.value.attempts >= 1
        assert exc_info.value.retryable

    def test_cancel_stops_retrying(self):
        cancel = threading.Event()

        def operation():
            cancel.set()
            raise ProcessError("down")

        with pytest.raises(OperationCancelled):
            retry_with_backoff(operation, "probe", max_attempts=5, initial_delay=0.01, cancel=cancel)

    def test_passed_deadline_is_not_retried(self):
        flaky = Flaky(5, error=DeadlineExceeded("operation deadline exceeded"))
        with pytest.raises(DeadlineExceeded):
            retry_with_backoff(flaky, "flaky", max_attempts=3, initial_delay=0)
        assert flaky.calls == 1

    def test_requires_a_bound(self):
        with pytest.raises(ValueError):
            retry_with_backoff(lambda: None, "unbounded", max_attempts=None, timeout=None)


class TestReadiness:

    def test_reachable_port(self):
        server = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        server.bind(("127.0.0.1", 0))
        server.listen(1)
        port = server.getsockname()[1]
        try:
            probe_tcp("127.0.0.1", port, connect_timeout=1)
            wait_for_tcp("127.0.0.1", port, timeout=2, initial_delay=0.01, max_delay=0.05)
        finally:
            server.close()

    def test_unreachable_port_times_out(self):
        sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        sock.bind(("127.0.0.1", 0))
        port = sock.getsockname()[1]
        sock.close()

        with pytest.raises(ReadinessTimeout):
            wait_for_tcp(
                "127.0.0.1", port, timeout=0.3, initial_delay=0.05, max_delay=0.1, connect_timeout=0.1
            )
