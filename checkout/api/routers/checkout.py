#checkout/api/routers/checkout.py
from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import JSONResponse
from requests import RequestException

from checkout.api.dependencies import get_registry
from checkout.domain.schemas import (
    CartIn,
    JobIn,
    Partition,
    SessionIn,
    SubmitIn,
    SubmitOut,
    SummaryOut,
    WalletResultIn,
)
from checkout.services.checkout_session import CheckoutSession
from checkout.services.session_registry import SessionRegistry

router = APIRouter(prefix="/checkout", tags=["checkout"])

ERROR_STATUS = {
    "insufficient_balance": 402,
    "submit_in_progress": 409,
    "cooldown": 429,
    "rail_unavailable": 422,
    "payment_creation_failed": 502,
}


def get_session(user_id: str, registry: SessionRegistry) -> CheckoutSession:
    try:
        return registry.get(user_id)
    except KeyError:
        raise HTTPException(status_code=404, detail="No checkout in progress")


@router.post("/{user_id}/session", response_model=SummaryOut)
def open_session(user_id: str, payload: SessionIn, registry: SessionRegistry = Depends(get_registry)):
    session = registry.open(
        user_id, payload.variant, payload.capabilities, payload.machine_id, payload.machine_owner_id
    )
    return session.summary()


@router.put("/{user_id}/cart", response_model=SummaryOut)
def set_cart(user_id: str, payload: CartIn, registry: SessionRegistry = Depends(get_registry)):
    """
    Replace the cart snapshot. Any change drops the pending order so it is
    never paid against different contents.
    """
    opts = payload.session
    session = registry.set_cart(
        user_id,
        [i.to_line_item() for i in payload.items],
        variant=opts.variant if opts else None,
        capabilities=opts.capabilities if opts else None,
        machine_id=opts.machine_id if opts else None,
        machine_owner_id=opts.machine_owner_id if opts else None,
    )
    return session.summary()


@router.get("/{user_id}/summary", response_model=SummaryOut)
def summary(
    user_id: str,
    partition: Partition | None = Query(None),
    registry: SessionRegistry = Depends(get_registry),
):
    return get_session(user_id, registry).summary(partition)


@router.post("/{user_id}/discount/{token_id}", response_model=SummaryOut)
def toggle_discount(user_id: str, token_id: str, registry: SessionRegistry = Depends(get_registry)):
    session = get_session(user_id, registry)
    try:
        session.toggle_discount(token_id)
    except ValueError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return session.summary()


@router.post("/{user_id}/balance", response_model=SummaryOut)
def refresh_balance(user_id: str, registry: SessionRegistry = Depends(get_registry)):
    session = get_session(user_id, registry)
    try:
        session.refresh_balance()
    except RequestException as e:
        raise HTTPException(status_code=502, detail=f"Balance service unavailable: {e}")
    return session.summary()


@router.post("/{user_id}/submit", response_model=SubmitOut)
def submit(user_id: str, payload: SubmitIn, registry: SessionRegistry = Depends(get_registry)):
    session = get_session(user_id, registry)
    out = session.submit(payload.rail, payload.address_id, payload.partition)
    if not out.ok:
        return JSONResponse(status_code=ERROR_STATUS.get(out.error, 400), content=out.model_dump(mode="json"))
    return out


@router.post("/{user_id}/wallet-result", response_model=SubmitOut)
def wallet_result(user_id: str, payload: WalletResultIn, registry: SessionRegistry = Depends(get_registry)):
    session = get_session(user_id, registry)
    try:
        return session.complete_wallet_sheet(payload.payment_id, payload.succeeded)
    except KeyError:
        raise HTTPException(status_code=404, detail="Unknown payment")


@router.post("/{user_id}/jobs")
def track_job(user_id: str, payload: JobIn, registry: SessionRegistry = Depends(get_registry)):
    session = get_session(user_id, registry)
    polling = session.track_job(payload.job_id, payload.status)
    return {"job_id": payload.job_id, "status": payload.status, "polling": polling}


@router.delete("/{user_id}")
def close_session(user_id: str, registry: SessionRegistry = Depends(get_registry)):
    if not registry.close(user_id):
        raise HTTPException(status_code=404, detail="No checkout in progress")
    return {"closed": True}
