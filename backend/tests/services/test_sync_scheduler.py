from datetime import datetime, timedelta

import pytest

from budget_app.services.exceptions import NotFoundError
from budget_app.services.sync_scheduler import SyncScheduler

NOW = datetime(2024, 3, 15, 8, 0)


class FakeClock:
    def __init__(self, now):
        self.now = now

    def __call__(self):
        return self.now


def make_scheduler(sync_fn, accounts=("acc-1", "acc-2"), clock=None, sleeps=None):
    return SyncScheduler(
        sync_fn=sync_fn,
        list_accounts_fn=lambda: list(accounts),
        interval_seconds=86400,
        initial_delay_seconds=60,
        max_retries=3,
        base_retry_delay_seconds=3600,
        account_delay_seconds=1.0,
        clock=clock or FakeClock(NOW),
        sleep=(sleeps.append if sleeps is not None else (lambda _seconds: None)),
    )


def test_daily_sync_visits_every_account_with_delay():
    synced = []
    sleeps = []

    def sync_fn(account_id, user_id=None):
        synced.append(account_id)
        return {"imported": 1, "duplicates": 0}

    scheduler = make_scheduler(sync_fn, accounts=("a", "b", "c"), sleeps=sleeps)
    summary = scheduler.run_daily_sync()

    assert synced == ["a", "b", "c"]
    assert summary == {"synced": 3, "failed": 0, "skipped": 0}
    assert sleeps == [1.0, 1.0]


def test_failures_back_off_exponentially():
    def sync_fn(account_id, user_id=None):
        raise RuntimeError("ITEM_LOGIN_REQUIRED")

    scheduler = make_scheduler(sync_fn)

    delays = []
    for _ in range(3):
        state = scheduler.handle_sync_failure("acc-1", RuntimeError("boom"))
        delays.append(state.next_retry - NOW)

    assert delays == [timedelta(hours=1), timedelta(hours=2), timedelta(hours=4)]
    assert scheduler.retry_queue["acc-1"].retry_count == 3
    assert scheduler.retry_queue["acc-1"].last_error == "boom"


def test_gives_up_after_max_retries():
    scheduler = make_scheduler(lambda account_id, user_id=None: {})

    for _ in range(3):
        scheduler.handle_sync_failure("acc-1", RuntimeError("boom"))
    assert scheduler.handle_sync_failure("acc-1", RuntimeError("boom")) is None
    assert "acc-1" not in scheduler.retry_queue


def test_failed_daily_sync_is_queued_and_later_skipped():
    calls = []

    def sync_fn(account_id, user_id=None):
        calls.append(account_id)
        if account_id == "acc-1":
            raise RuntimeError("timeout")
        return {"imported": 0, "duplicates": 0}

    clock = FakeClock(NOW)
    scheduler = make_scheduler(sync_fn, clock=clock)

    assert scheduler.run_daily_sync() == {"synced": 1, "failed": 1, "skipped": 0}
    status = scheduler.get_retry_queue_status()
    assert status[0]["account_id"] == "acc-1"
    assert status[0]["retry_count"] == 1

    clock.now = NOW + timedelta(minutes=30)
    assert scheduler.run_daily_sync() == {"synced": 1, "failed": 0, "skipped": 1}


def test_successful_retry_clears_state():
    results = iter([RuntimeError("timeout"), {"imported": 2, "duplicates": 0}])

    def sync_fn(account_id, user_id=None):
        result = next(results)
        if isinstance(result, Exception):
            raise result
        return result

    scheduler = make_scheduler(sync_fn)
    assert scheduler.sync_account("acc-1") is False
    assert "acc-1" in scheduler.retry_queue

    assert scheduler.retry_sync("acc-1") is True
    assert scheduler.retry_queue == {}


def test_retry_for_removed_account_is_dropped():
    def sync_fn(account_id, user_id=None):
        raise NotFoundError("Account not found")

    scheduler = make_scheduler(sync_fn)
    scheduler.handle_sync_failure("acc-1", RuntimeError("timeout"))

    assert scheduler.retry_sync("acc-1") is False
    assert scheduler.retry_queue == {}


def test_manual_sync_propagates_errors_and_clears_retry():
    def failing(account_id, user_id=None):
        raise NotFoundError("Account not found")

    scheduler = make_scheduler(failing)
    with pytest.raises(NotFoundError):
        scheduler.manual_sync("acc-1", "user-1")

    seen = []

    def ok(account_id, user_id=None):
        seen.append((account_id, user_id))
        return {"imported": 3, "duplicates": 1}

    scheduler = make_scheduler(ok)
    scheduler.handle_sync_failure("acc-1", RuntimeError("timeout"))
    assert scheduler.manual_sync("acc-1", "user-1") == {"imported": 3, "duplicates": 1}
    assert seen == [("acc-1", "user-1")]
    assert scheduler.retry_queue == {}


def test_start_and_stop_are_idempotent():
    scheduler = make_scheduler(lambda account_id, user_id=None: {})

    scheduler.start()
    scheduler.start()
    assert scheduler.is_running
    scheduler.stop()
    scheduler.stop()
    assert not scheduler.is_running
