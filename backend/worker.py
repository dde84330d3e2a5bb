import logging
import os
import signal
import sys

from redis import Redis
from rq import Worker, Queue

from budget_app.config import settings

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


def signal_handler(signum, frame):
    """Handle shutdown signals gracefully"""
    logger.info(f"Received signal {signum}, shutting down worker gracefully...")
    sys.exit(0)


def main():
    signal.signal(signal.SIGTERM, signal_handler)
    signal.signal(signal.SIGINT, signal_handler)

    redis_conn = Redis.from_url(settings.REDIS_URL)
    queue_list = os.getenv("QUEUE_LIST")
    if queue_list:
        listen = [q.strip() for q in queue_list.split(",") if q.strip()]
    else:
        listen = [settings.PLAID_QUEUE_NAME]

    # Deduplicate while preserving order
    seen = set()
    listen = [q for q in listen if not (q in seen or seen.add(q))]

    logger.info(f"Worker starting, listening to queues: {', '.join(listen)}")

    worker = Worker(
        [Queue(name, connection=redis_conn) for name in listen],
        connection=redis_conn,
        log_job_description=True,
    )

    logger.info("Worker started and ready to process jobs")

    worker.work(
        logging_level=logging.INFO,
        with_scheduler=True,
    )


if __name__ == "__main__":
    main()
