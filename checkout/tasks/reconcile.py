# checkout/tasks/reconcile.py
from datetime import datetime

from redis import RedisError
from requests import RequestException

from checkout.celery_worker import celery_app
from checkout.data.database import SessionLocal
from checkout.domain.schemas import PaymentEvent, PaymentStatus
from checkout.repos.payment_repo import PaymentRepo
from checkout.services.dispatcher import utcnow
from checkout.services.payment_channel import FAILED, PAID, PaymentChannel, RedisPaymentChannel, normalize_status
from checkout.services.payment_client import PaymentClient
from checkout.utils.logging import get_logger

logger = get_logger(__name__)

_RESOURCE_STATUS = {PAID: PaymentStatus.PAID, FAILED: PaymentStatus.FAILED}


def reconcile_pending_payments(
    session_factory,
    payment_client: PaymentClient,
    channel: PaymentChannel,
    now: datetime | None = None,
) -> dict:
    """
    Settle the fate of push payments whose confirmation never arrived.

    Every PENDING resource past ``expires_at`` is checked against the payment
    service. A decided payment is published to its room as ``paid`` or
    ``failed``; one that is still undecided is expired. The owning session,
    if any, reacts through its normal event path.
    """
    now = now or utcnow()
    counts = {"paid": 0, "failed": 0, "expired": 0, "skipped": 0}

    db = session_factory()
    try:
        repo = PaymentRepo(db)
        stale = repo.list_stale_pending(now)
        logger.info(f"Found {len(stale)} stale pending payments")

        for resource in stale:
            try:
                data = payment_client.get_payment_status(resource.payment_id)
            except RequestException as e:
                logger.warning(f"Status check for payment {resource.payment_id} failed: {e}")
                counts["skipped"] += 1
                continue

            status = normalize_status((data or {}).get("status"))
            if status is None:
                repo.update_status(resource.payment_id, PaymentStatus.EXPIRED)
                event_status = "expired"
                counts["expired"] += 1
            else:
                repo.update_status(resource.payment_id, _RESOURCE_STATUS[status])
                event_status = status
                counts[status] += 1

            try:
                channel.publish(
                    PaymentEvent(payment_id=resource.payment_id, user_id=resource.user_id, status=event_status)
                )
            except RedisError as e:
                logger.warning(f"Could not publish {event_status} for payment {resource.payment_id}: {e}")
    finally:
        db.close()

    logger.info(f"Reconcile finished: {counts}")
    return counts


@celery_app.task(name="checkout.tasks.reconcile.reconcile_pending_payments_task")
def reconcile_pending_payments_task():
    logger.info("Reconcile pending payments task started")
    channel = RedisPaymentChannel()
    try:
        return reconcile_pending_payments(SessionLocal, PaymentClient(), channel)
    finally:
        channel.close()
