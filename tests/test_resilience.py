"""Tests de resiliencia: token bucket, circuit breaker, backoff y errores.

Ejecutar:
    pytest tests/test_resilience.py -v
"""

import random
from unittest.mock import MagicMock

import pytest
import requests

from compliance_api.resilience.backoff import BackoffConfig, BackoffController
from compliance_api.resilience.circuit_breaker import CircuitBreaker
from compliance_api.resilience.circuit_breaker_config import CircuitBreakerConfig, CircuitState
from compliance_api.resilience.context import CycleContext
from compliance_api.resilience.errors import (
    BudgetExceededError,
    CycleCancelled,
    ErrorClass,
    PermanentSourceError,
    RateLimitedError,
    SourceDegradedError,
    TransientSourceError,
    classify_error,
    error_from_response,
    parse_retry_after,
)
from compliance_api.resilience.token_bucket import (
    BudgetPolicy,
    SourceRateLimiter,
    TokenBucket,
    TokenBucketConfig,
)

from conftest import FakeClock


def make_controller(clock=None, failure_threshold=5.0, max_attempts=4, policy=BudgetPolicy.BLOCK):
    clock = clock or FakeClock()
    sleep = MagicMock()
    controller = BackoffController(
        config=BackoffConfig(max_attempts=max_attempts, base_delay=1.0, max_delay=60.0, jitter_ratio=0.0),
        breaker_config=CircuitBreakerConfig(
            failure_threshold=failure_threshold, recovery_timeout_seconds=120.0
        ),
        budget_policy=policy,
        clock=clock,
        sleep=sleep,
        rng=random.Random(7),
    )
    controller.register_source("hpd", TokenBucketConfig(requests_per_min=6000, burst=100))
    return controller, sleep, clock


# =============================================================================
# TOKEN BUCKET
# =============================================================================

class TestTokenBucket:
    """Capacidad = burst, recarga = requests_per_min / 60."""

    def test_burst_then_wait(self):
        clock = FakeClock()
        bucket = TokenBucket(TokenBucketConfig(requests_per_min=60, burst=2), clock=clock)

        assert bucket.try_acquire() == 0.0
        assert bucket.try_acquire() == 0.0
        assert bucket.try_acquire() == pytest.approx(1.0)

        clock.advance(1.0)
        assert bucket.try_acquire() == 0.0

    def test_refill_capped_at_burst(self):
        clock = FakeClock()
        bucket = TokenBucket(TokenBucketConfig(requests_per_min=60, burst=3), clock=clock)
        clock.advance(3600)
        assert bucket.available == 3.0

    def test_invalid_config(self):
        with pytest.raises(ValueError):
            TokenBucket(TokenBucketConfig(requests_per_min=60, burst=0))

    def test_fail_fast_policy(self):
        clock = FakeClock()
        limiter = SourceRateLimiter(policy=BudgetPolicy.FAIL_FAST, clock=clock)
        limiter.register("dob", TokenBucketConfig(requests_per_min=60, burst=1))

        limiter.acquire("dob")
        with pytest.raises(BudgetExceededError):
            limiter.acquire("dob")

    def test_unregistered_source_is_unlimited(self):
        SourceRateLimiter(clock=FakeClock()).acquire("unknown")

    def test_policy_from_env(self, monkeypatch):
        monkeypatch.setenv("RATE_BUDGET_POLICY", "fail_fast")
        assert BudgetPolicy.from_env() == BudgetPolicy.FAIL_FAST
        monkeypatch.setenv("RATE_BUDGET_POLICY", "whatever")
        assert BudgetPolicy.from_env() == BudgetPolicy.BLOCK


# =============================================================================
# CONTEXTO DE CICLO
# =============================================================================

class TestCycleContext:

    def test_deadline_cancels(self):
        clock = FakeClock()
        ctx = CycleContext("14", deadline_seconds=10, clock=clock)
        assert ctx.cancelled is False
        clock.advance(10)
        assert ctx.cancelled is True
        assert ctx.reason == "deadline"
        with pytest.raises(CycleCancelled):
            ctx.raise_if_cancelled()

    def test_first_reason_wins(self):
        ctx = CycleContext("14")
        ctx.cancel("superseded")
        ctx.cancel("shutdown")
        assert ctx.reason == "superseded"
        assert ctx.wait(5.0) is True


# =============================================================================
# CIRCUIT BREAKER
# =============================================================================

class TestCircuitBreaker:
    """Fallos ponderados y recuperación por half-open."""

    def test_opens_at_threshold(self):
        clock = FakeClock()
        cb = CircuitBreaker("hpd", CircuitBreakerConfig(failure_threshold=2), clock=clock)
        cb.record_failure(1.0)
        assert cb.state == CircuitState.CLOSED
        cb.record_failure(1.0)
        assert cb.state == CircuitState.OPEN
        with pytest.raises(SourceDegradedError) as exc:
            cb.before_call()
        assert exc.value.remaining_seconds == pytest.approx(120.0)

    def test_permanent_weight_ignored(self):
        cb = CircuitBreaker("hpd", CircuitBreakerConfig(failure_threshold=1), clock=FakeClock())
        cb.record_failure(0.0)
        assert cb.state == CircuitState.CLOSED

    def test_half_open_recovery(self):
        clock = FakeClock()
        cb = CircuitBreaker(
            "hpd", CircuitBreakerConfig(failure_threshold=1, recovery_timeout_seconds=30), clock=clock
        )
        cb.record_failure(1.0)
        clock.advance(30)
        assert cb.state == CircuitState.HALF_OPEN

        cb.before_call()
        cb.record_success()
        assert cb.state == CircuitState.CLOSED

    def test_half_open_failure_reopens(self):
        clock = FakeClock()
        cb = CircuitBreaker(
            "hpd", CircuitBreakerConfig(failure_threshold=1, recovery_timeout_seconds=30), clock=clock
        )
        cb.record_failure(1.0)
        clock.advance(30)
        assert cb.state == CircuitState.HALF_OPEN
        cb.record_failure(1.0)
        assert cb.state == CircuitState.OPEN

    def test_success_resets_weight_when_closed(self):
        cb = CircuitBreaker("hpd", CircuitBreakerConfig(failure_threshold=2), clock=FakeClock())
        cb.record_failure(1.0)
        cb.record_success()
        cb.record_failure(1.0)
        assert cb.state == CircuitState.CLOSED
        assert cb.get_stats()["failure_weight"] == 1.0


# =============================================================================
# BACKOFF CONTROLLER
# =============================================================================

class TestBackoffController:
    """Retry con backoff exponencial, Retry-After y clasificación."""

    def test_delay_law_with_jitter_bounds(self):
        config = BackoffConfig(base_delay=1.0, max_delay=60.0, jitter_ratio=0.2)
        rng = random.Random(1)
        for attempt, base in [(0, 1.0), (1, 2.0), (3, 8.0), (10, 60.0)]:
            delay = config.calculate_delay(attempt, rng)
            assert base <= delay <= base * 1.2

    def test_transient_then_success(self):
        controller, sleep, _ = make_controller()
        func = MagicMock(side_effect=[
            TransientSourceError("hpd", "503"),
            TransientSourceError("hpd", "503"),
            ["row"],
        ])

        assert controller.execute("hpd", func) == ["row"]
        assert func.call_count == 3
        assert [c.args[0] for c in sleep.call_args_list] == [1.0, 2.0]
        assert controller.stats["total_retries"] == 2

    def test_retry_after_honored_and_capped(self):
        controller, sleep, _ = make_controller()
        func = MagicMock(side_effect=[
            RateLimitedError("hpd", "429", retry_after=7),
            RateLimitedError("hpd", "429", retry_after=500),
            [],
        ])
        controller.execute("hpd", func)
        assert [c.args[0] for c in sleep.call_args_list] == [7, 60.0]

    def test_permanent_not_retried(self):
        controller, sleep, _ = make_controller()
        func = MagicMock(side_effect=PermanentSourceError("hpd", "HTTP 400", status_code=400))

        with pytest.raises(PermanentSourceError):
            controller.execute("hpd", func)
        assert func.call_count == 1
        sleep.assert_not_called()
        assert controller.breaker("hpd").get_stats()["failure_weight"] == 0.0

    def test_exhausted_raises_last_error(self):
        controller, sleep, _ = make_controller(max_attempts=3)
        func = MagicMock(side_effect=requests.Timeout("read timeout"))

        with pytest.raises(TransientSourceError):
            controller.execute("hpd", func)
        assert func.call_count == 3
        assert sleep.call_count == 2
        assert controller.stats["total_failures"] == 1

    def test_open_circuit_short_circuits(self):
        controller, _, _ = make_controller(failure_threshold=2, max_attempts=1)
        failing = MagicMock(side_effect=TransientSourceError("hpd", "503"))
        for _ in range(2):
            with pytest.raises(TransientSourceError):
                controller.execute("hpd", failing)

        func = MagicMock(return_value=[])
        with pytest.raises(SourceDegradedError):
            controller.execute("hpd", func)
        func.assert_not_called()

    def test_rate_limits_weigh_half(self):
        controller, _, _ = make_controller(failure_threshold=2, max_attempts=1)
        limited = MagicMock(side_effect=RateLimitedError("hpd", "429"))
        for _ in range(3):
            with pytest.raises(RateLimitedError):
                controller.execute("hpd", limited)
        assert controller.breaker("hpd").state == CircuitState.CLOSED

        with pytest.raises(RateLimitedError):
            controller.execute("hpd", limited)
        assert controller.breaker("hpd").state == CircuitState.OPEN

    def test_cancelled_context_stops_before_call(self):
        controller, _, _ = make_controller()
        ctx = CycleContext("14")
        ctx.cancel("shutdown")
        func = MagicMock()

        with pytest.raises(CycleCancelled):
            controller.execute("hpd", func, ctx)
        func.assert_not_called()

    def test_cancel_during_backoff_interrupts_wait(self):
        controller, _, _ = make_controller()
        ctx = CycleContext("14")

        def fail_and_cancel():
            ctx.cancel("superseded")
            raise TransientSourceError("hpd", "503")

        with pytest.raises(CycleCancelled):
            controller.execute("hpd", fail_and_cancel, ctx)

    def test_stats_shape(self):
        controller, _, _ = make_controller()
        stats = controller.stats
        assert "hpd" in stats["circuits"]
        assert stats["rate_limits"]["policy"] == "block"


# =============================================================================
# CLASIFICACIÓN DE ERRORES
# =============================================================================

class TestErrorClassification:

    def _response(self, status, headers=None):
        response = MagicMock()
        response.status_code = status
        response.text = "body"
        response.headers = headers or {}
        return response

    def test_429_is_rate_limited_with_retry_after(self):
        error = error_from_response("hpd", self._response(429, {"Retry-After": "12"}))
        assert isinstance(error, RateLimitedError)
        assert error.retry_after == 12.0

    def test_5xx_is_transient(self):
        assert isinstance(error_from_response("hpd", self._response(503)), TransientSourceError)

    def test_4xx_is_permanent(self):
        error = error_from_response("hpd", self._response(404))
        assert isinstance(error, PermanentSourceError)
        assert error.status_code == 404

    def test_network_errors_are_transient(self):
        assert classify_error(requests.ConnectionError()) == ErrorClass.TRANSIENT
        assert classify_error(ValueError("bad")) == ErrorClass.PERMANENT

    def test_retry_after_parsing(self):
        assert parse_retry_after("3") == 3.0
        assert parse_retry_after("Wed, 21 Oct 2015 07:28:00 GMT") is None
        assert parse_retry_after(None) is None
