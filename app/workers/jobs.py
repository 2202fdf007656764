"""
Background job definitions.
"""
from redis import Redis
from rq import Queue, Retry

from app.core.config import settings
from app.core.logging import get_logger

logger = get_logger(__name__)


def get_queue(name: str = "default") -> Queue:
    """Get RQ queue."""
    redis_conn = Redis.from_url(settings.REDIS_URL)
    return Queue(name, connection=redis_conn)


# ============= JOB FUNCTIONS =============

def send_invitation_job(rfq_id: int, supplier_id: str):
    """Background job to generate a supplier workbook and email it."""
    from app.db.session import get_db_context
    from app.services.notifications import get_notification_service
    from app.services.rfq_service import deliver_invitation

    logger.info(f"Sending RFQ {rfq_id} invitation to supplier {supplier_id}")

    with get_db_context() as db:
        transport = deliver_invitation(db, rfq_id, supplier_id, get_notification_service())

    logger.info(f"Invitation for supplier {supplier_id} delivered via {transport}")
    return transport


# ============= QUEUE HELPERS =============

def enqueue_invitation(rfq_id: int, supplier_id: str) -> str:
    """Queue a supplier invitation; returns the job id."""
    queue = get_queue("high")
    job = queue.enqueue(
        send_invitation_job,
        rfq_id,
        supplier_id,
        retry=Retry(max=3, interval=[10, 60, 300]),
    )
    return job.id
