import logging
from typing import Optional, Dict, Any

from redis import Redis
from rq import Queue
from rq.job import Job

from budget_app.config import settings

logger = logging.getLogger(__name__)

_redis_connection: Optional[Redis] = None
_plaid_queue: Optional[Queue] = None


def get_redis_connection() -> Redis:
    global _redis_connection
    if _redis_connection is None:
        _redis_connection = Redis.from_url(settings.REDIS_URL)
    return _redis_connection


def get_plaid_queue() -> Queue:
    global _plaid_queue
    if _plaid_queue is None:
        _plaid_queue = Queue(
            settings.PLAID_QUEUE_NAME,
            connection=get_redis_connection(),
            default_timeout=settings.PLAID_JOB_TIMEOUT,
        )
    return _plaid_queue


def enqueue_account_sync_job(user_id: str, account_id: Optional[str] = None) -> Job:
    """Queue a transaction sync for one account, or for all of the user's active accounts."""
    from budget_app.tasks.account_sync import run_account_sync_job

    queue = get_plaid_queue()
    job = queue.enqueue(
        run_account_sync_job,
        user_id,
        account_id,
        job_timeout=settings.PLAID_JOB_TIMEOUT,
    )
    job.meta = job.meta or {}
    job.meta.update(
        {
            "user_id": user_id,
            "account_id": account_id,
        }
    )
    job.save_meta()
    logger.info(
        "Enqueued account sync job %s for user %s (account=%s)",
        job.id,
        user_id,
        account_id or "all",
    )
    return job


def get_job_info(job_id: str) -> Dict[str, Any]:
    job = Job.fetch(job_id, connection=get_redis_connection())
    info = {
        "job_id": job.id,
        "status": job.get_status(),
        "enqueued_at": job.enqueued_at.isoformat() if job.enqueued_at else None,
        "started_at": job.started_at.isoformat() if job.started_at else None,
        "ended_at": job.ended_at.isoformat() if job.ended_at else None,
        "meta": job.meta or {},
    }

    if job.is_finished:
        info["result"] = job.result
    elif job.is_failed:
        info["error"] = job.exc_info

    return info
