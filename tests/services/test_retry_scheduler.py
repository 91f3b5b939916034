"""결제 재시도/일시정지 스케줄러 테스트"""
from datetime import timedelta

import pytest

from core.responses import HandlerFailure, PauseFailed, RetrySchedulingFailed
from services.commerce_client import CommerceAPIError
from services.retry_scheduler import PaymentRetryScheduler, retry_delay_days


@pytest.mark.parametrize(
    "attempt, expected",
    [(1, 1), (2, 3), (3, 7), (4, None), (5, None), (0, None)],
)
def test_retry_delay_table(attempt, expected):
    assert retry_delay_days(attempt) == expected


def test_decide_builds_retry_date_from_clock(commerce, clock, fixed_now):
    scheduler = PaymentRetryScheduler(commerce, clock=clock)

    decision = scheduler.decide(3)

    assert decision.retry_days == 7
    assert decision.retry_at == fixed_now + timedelta(days=7)
    assert decision.terminal is False


def test_decide_terminal_after_third_attempt(commerce, clock):
    decision = PaymentRetryScheduler(commerce, clock=clock).decide(4)

    assert decision.terminal is True
    assert decision.retry_at is None


@pytest.mark.asyncio
async def test_schedule_retry_issues_one_mutation(commerce, clock, fixed_now):
    scheduler = PaymentRetryScheduler(commerce, clock=clock)

    await scheduler.schedule_retry("1001", 3, attempt_number=2)

    assert commerce.calls_to("schedule_payment_retry") == [
        ("schedule_payment_retry", "1001", fixed_now + timedelta(days=3)),
    ]
    assert commerce.count("pause_subscription") == 0


@pytest.mark.asyncio
async def test_schedule_retry_failure_carries_context(commerce, clock):
    commerce.errors["schedule_payment_retry"] = CommerceAPIError(
        "subscriptionPaymentRetry 실패: invalid date", 200, code="user_errors"
    )
    scheduler = PaymentRetryScheduler(commerce, clock=clock)

    with pytest.raises(RetrySchedulingFailed) as excinfo:
        await scheduler.schedule_retry("1001", 7, attempt_number=3)

    error = excinfo.value
    assert isinstance(error, HandlerFailure)
    assert error.status_code == 500
    assert error.error_code == "RETRY_SCHEDULING_FAILED"
    assert error.subscription_id == "1001"
    assert error.attempt_number == 3
    assert error.retry_days == 7
    assert isinstance(error.cause, CommerceAPIError)


@pytest.mark.asyncio
async def test_pause_failure_raises_pause_failed(commerce, clock):
    commerce.errors["pause_subscription"] = CommerceAPIError("boom", 500)
    scheduler = PaymentRetryScheduler(commerce, clock=clock)

    with pytest.raises(PauseFailed) as excinfo:
        await scheduler.pause_subscription("1001", attempt_number=4)

    assert excinfo.value.error_code == "PAUSE_FAILED"
    assert excinfo.value.subscription_id == "1001"
    assert excinfo.value.attempt_number == 4
