import pytest

from utils.backoff import Backoff


def test_no_failures_no_delay():
    assert Backoff().delay() == 0.0


def test_logged_delay_is_the_delay_slept():
    backoff = Backoff(base=0.2, cap=5.0, jitter=0.2)
    for _ in range(5):
        retry_in = backoff.record_failure()
        assert backoff.delay() == retry_in
        assert backoff.delay() == retry_in


def test_delay_doubles_up_to_cap():
    backoff = Backoff(base=0.2, cap=1.0, jitter=0.0)
    delays = [backoff.record_failure() for _ in range(5)]
    assert delays == pytest.approx([0.2, 0.4, 0.8, 1.0, 1.0])


def test_success_resets():
    backoff = Backoff(jitter=0.0)
    backoff.record_failure()
    backoff.record_failure()
    backoff.record_success()
    assert backoff.failures == 0
    assert backoff.delay() == 0.0
    assert backoff.record_failure() == pytest.approx(0.2)


def test_huge_failure_count_stays_capped():
    backoff = Backoff(base=0.2, cap=5.0, jitter=0.0)
    for _ in range(200):
        backoff.record_failure()
    assert backoff.delay() == 5.0
