"""
Account Sync Scheduler

Polls every active linked account on a fixed interval (24h by default, first
run shortly after startup). Accounts that fail to sync are retried with
exponential backoff: 1h, 2h, 4h, then given up on until the next daily run.
Retry state lives in memory and is lost on restart.
"""
import logging
import threading
import time
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, NamedTuple, Optional

from budget_app.config import settings
from budget_app.services.exceptions import NotFoundError

logger = logging.getLogger(__name__)


class RetryState(NamedTuple):
    retry_count: int
    next_retry: datetime
    last_error: str


def _default_sync(account_id: str, user_id: Optional[str] = None) -> Dict[str, int]:
    from budget_app.services.account_linking import sync_linked_account
    return sync_linked_account(account_id, user_id=user_id)


def _default_list_accounts() -> List[str]:
    from budget_app.services.account_linking import list_active_account_ids
    return list_active_account_ids()


class SyncScheduler:
    def __init__(
        self,
        sync_fn: Callable[..., Dict[str, int]] = _default_sync,
        list_accounts_fn: Callable[[], List[str]] = _default_list_accounts,
        interval_seconds: Optional[float] = None,
        initial_delay_seconds: Optional[float] = None,
        max_retries: Optional[int] = None,
        base_retry_delay_seconds: Optional[float] = None,
        account_delay_seconds: Optional[float] = None,
        clock: Callable[[], datetime] = datetime.utcnow,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.sync_fn = sync_fn
        self.list_accounts_fn = list_accounts_fn
        self.interval_seconds = interval_seconds if interval_seconds is not None else settings.SYNC_INTERVAL_HOURS * 3600
        self.initial_delay_seconds = (
            initial_delay_seconds if initial_delay_seconds is not None else settings.SYNC_INITIAL_DELAY_SECONDS
        )
        self.max_retries = max_retries if max_retries is not None else settings.SYNC_MAX_RETRIES
        self.base_retry_delay_seconds = (
            base_retry_delay_seconds if base_retry_delay_seconds is not None else settings.SYNC_BASE_RETRY_DELAY_SECONDS
        )
        self.account_delay_seconds = (
            account_delay_seconds if account_delay_seconds is not None else settings.SYNC_ACCOUNT_DELAY_SECONDS
        )
        self.clock = clock
        self.sleep = sleep

        self.retry_queue: Dict[str, RetryState] = {}
        self._lock = threading.Lock()
        self._retry_timers: Dict[str, threading.Timer] = {}
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.is_running:
            logger.info("Sync scheduler already running")
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run_loop, name="sync-scheduler", daemon=True)
        self._thread.start()
        logger.info(
            "Sync scheduler started: first run in %ss, then every %ss",
            self.initial_delay_seconds,
            self.interval_seconds,
        )

    def stop(self) -> None:
        self._stop_event.set()
        with self._lock:
            for timer in self._retry_timers.values():
                timer.cancel()
            self._retry_timers.clear()
        if self._thread is not None:
            self._thread.join(timeout=5)
            self._thread = None
            logger.info("Sync scheduler stopped")

    def _run_loop(self) -> None:
        if self._stop_event.wait(self.initial_delay_seconds):
            return
        while not self._stop_event.is_set():
            try:
                self.run_daily_sync()
            except Exception:
                logger.exception("Daily sync run failed")
            if self._stop_event.wait(self.interval_seconds):
                return

    def run_daily_sync(self) -> Dict[str, int]:
        """Sync every active account once, skipping accounts still waiting on a retry."""
        account_ids = self.list_accounts_fn()
        logger.info("Starting daily sync for %d accounts", len(account_ids))

        summary = {"synced": 0, "failed": 0, "skipped": 0}
        for index, account_id in enumerate(account_ids):
            with self._lock:
                state = self.retry_queue.get(account_id)
            if state and state.next_retry > self.clock():
                summary["skipped"] += 1
                continue

            if self.sync_account(account_id):
                summary["synced"] += 1
            else:
                summary["failed"] += 1

            if index < len(account_ids) - 1 and self.account_delay_seconds:
                self.sleep(self.account_delay_seconds)

        logger.info(
            "Daily sync finished: %d synced, %d failed, %d skipped",
            summary["synced"],
            summary["failed"],
            summary["skipped"],
        )
        return summary

    def sync_account(self, account_id: str) -> bool:
        try:
            result = self.sync_fn(account_id)
        except Exception as e:
            self.handle_sync_failure(account_id, e)
            return False

        self._clear_retry(account_id)
        logger.info(
            "Synced account %s: %s imported, %s duplicates",
            account_id,
            result.get("imported", 0),
            result.get("duplicates", 0),
        )
        return True

    def handle_sync_failure(self, account_id: str, error: Exception) -> Optional[RetryState]:
        """Record a failure and schedule the next retry, or give up after max_retries."""
        with self._lock:
            previous = self.retry_queue.get(account_id)
            retry_count = (previous.retry_count if previous else 0) + 1

            logger.error("SYNC_ERROR account=%s retry_count=%d error=%s", account_id, retry_count, error)

            if retry_count > self.max_retries:
                self.retry_queue.pop(account_id, None)
                logger.error("Max retries exceeded for account %s; waiting for next scheduled sync", account_id)
                return None

            delay = self.base_retry_delay_seconds * (2 ** (retry_count - 1))
            state = RetryState(retry_count, self.clock() + timedelta(seconds=delay), str(error))
            self.retry_queue[account_id] = state

        logger.info("Retry %d for account %s scheduled in %ss", retry_count, account_id, delay)
        if self.is_running:
            self._schedule_retry(account_id, delay)
        return state

    def _schedule_retry(self, account_id: str, delay: float) -> None:
        timer = threading.Timer(delay, self.retry_sync, args=(account_id,))
        timer.daemon = True
        with self._lock:
            existing = self._retry_timers.pop(account_id, None)
            if existing:
                existing.cancel()
            self._retry_timers[account_id] = timer
        timer.start()

    def retry_sync(self, account_id: str) -> bool:
        with self._lock:
            self._retry_timers.pop(account_id, None)
        try:
            result = self.sync_fn(account_id)
        except NotFoundError:
            self._clear_retry(account_id)
            logger.info("Account %s is no longer active; dropping retry", account_id)
            return False
        except Exception as e:
            self.handle_sync_failure(account_id, e)
            return False

        self._clear_retry(account_id)
        logger.info("Retry succeeded for account %s (%s imported)", account_id, result.get("imported", 0))
        return True

    def manual_sync(self, account_id: str, user_id: str) -> Dict[str, int]:
        """Sync one of the user's accounts right now. Errors propagate to the caller."""
        result = self.sync_fn(account_id, user_id=user_id)
        self._clear_retry(account_id)
        return result

    def _clear_retry(self, account_id: str) -> None:
        with self._lock:
            self.retry_queue.pop(account_id, None)
            timer = self._retry_timers.pop(account_id, None)
        if timer:
            timer.cancel()

    def get_retry_queue_status(self) -> List[Dict[str, Any]]:
        with self._lock:
            return [
                {
                    "account_id": account_id,
                    "retry_count": state.retry_count,
                    "next_retry": state.next_retry.isoformat(),
                    "last_error": state.last_error,
                }
                for account_id, state in self.retry_queue.items()
            ]


_scheduler: Optional[SyncScheduler] = None


def get_sync_scheduler() -> SyncScheduler:
    global _scheduler
    if _scheduler is None:
        _scheduler = SyncScheduler()
    return _scheduler
