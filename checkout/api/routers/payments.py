#checkout/api/routers/payments.py
from fastapi import APIRouter, Depends

from checkout.api.dependencies import get_registry
from checkout.domain.schemas import PaymentEvent
from checkout.services.session_registry import SessionRegistry

router = APIRouter(prefix="/payments", tags=["payments"])


@router.post("/events", status_code=202)
def payment_event(payload: PaymentEvent, registry: SessionRegistry = Depends(get_registry)):
    """
    Status push from the payment service, relayed to the payment room.
    Terminal events settle or fail the owning checkout.
    """
    delivered = registry.services.channel.publish(payload)
    return {"payment_id": payload.payment_id, "delivered": delivered}


@router.post("/reconcile")
def reconcile(registry: SessionRegistry = Depends(get_registry)):
    decided = sum(session.reconcile() for session in registry.sessions())
    return {"decided": decided}
