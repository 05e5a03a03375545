"""
Background job dispatch.

The request-status aggregator runs in a separate worker fleet; this service
only enqueues recomputation jobs for it by dotted path.
"""
from redis import Redis
from rq import Queue

from partflow.core.config import settings
from partflow.core.logging import get_logger

logger = get_logger(__name__)


def get_queue(name: str = "default") -> Queue:
    """Get RQ queue."""
    redis_conn = Redis.from_url(settings.REDIS_URL)
    return Queue(name, connection=redis_conn)


def enqueue_request_status_recompute(request_id: int):
    """Ask the aggregator to recompute the status of a client request."""
    queue = get_queue(settings.REQUEST_STATUS_QUEUE)
    job = queue.enqueue(settings.REQUEST_STATUS_JOB, request_id)
    logger.info(f"Enqueued request status recompute for request {request_id} (job {job.id})")
    return job
