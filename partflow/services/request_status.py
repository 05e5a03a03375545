"""
Request-status recomputation hook.

Response mutations mark the owning client request as dirty on the session;
the IDs are dispatched to the aggregator only once the transaction commits,
so a rolled-back request never triggers a recompute.
"""
from typing import Optional

from redis.exceptions import RedisError
from sqlalchemy.orm import Session

from partflow.core.config import settings
from partflow.core.logging import get_logger
from partflow.services.rfq_records import request_id_for_rfq_supplier
from partflow.workers.jobs import enqueue_request_status_recompute

logger = get_logger(__name__)

_PENDING_KEY = "pending_request_status"


def mark_request_dirty(db: Session, rfq_supplier_id: int) -> Optional[int]:
    """Queue a recompute for the client request behind an RFQ supplier."""
    request_id = request_id_for_rfq_supplier(db, rfq_supplier_id)
    if request_id is not None:
        db.info.setdefault(_PENDING_KEY, set()).add(request_id)
    return request_id


def pending_request_ids(db: Session) -> set:
    return set(db.info.get(_PENDING_KEY, ()))


def dispatch_request_status(request_id: int):
    if not settings.REQUEST_STATUS_HOOK_ENABLED:
        logger.debug(f"Request status hook disabled; skipping recompute for request {request_id}")
        return
    try:
        enqueue_request_status_recompute(request_id)
    except RedisError as e:
        logger.warning(f"Could not enqueue request status recompute for request {request_id}: {e}")


def commit_and_notify(db: Session):
    """Commit, then fire the recompute hook for every request touched."""
    db.commit()
    for request_id in sorted(db.info.pop(_PENDING_KEY, set())):
        dispatch_request_status(request_id)
