"""
Background worker using RQ (Redis Queue).

Run with: python -m app.workers.worker
"""
from redis import Redis
from rq import Worker, Queue

from app.core.config import settings
from app.core.logging import setup_logging, get_logger

setup_logging()
logger = get_logger(__name__)


def run_worker():
    """Start the RQ worker."""
    redis_conn = Redis.from_url(settings.REDIS_URL)

    worker = Worker(
        queues=[
            Queue("high", connection=redis_conn),
            Queue("default", connection=redis_conn),
        ],
        connection=redis_conn,
        name="quotedesk-worker",
    )
    logger.info("Starting QuoteDesk worker...")
    worker.work()


if __name__ == "__main__":
    run_worker()
