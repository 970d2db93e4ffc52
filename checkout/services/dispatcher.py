# checkout/services/dispatcher.py
from datetime import datetime, timezone
from typing import Callable, Dict

from requests import RequestException

from checkout.data.database import SessionLocal
from checkout.data.models.payment import PaymentResourceModel
from checkout.domain.errors import (
    OrderInvariantError,
    PaymentCreationError,
    RailUnavailableError,
    ResourceCooldownError,
)
from checkout.domain.schemas import Amounts, Rail
from checkout.repos.payment_repo import PaymentRepo
from checkout.services.http_client import error_message
from checkout.services.lock_service import LockService
from checkout.services.payment_client import PaymentClient
from checkout.services.rails import DispatchResult, RailContext, RailStrategy, build_strategies
from checkout.utils.logging import get_logger
from checkout.utils.settings import PAYMENT_COOLDOWN_SECONDS

logger = get_logger(__name__)


def utcnow() -> datetime:
    # stored naive, sqlite drops tzinfo anyway
    return datetime.now(timezone.utc).replace(tzinfo=None)


class PaymentRailDispatcher:
    """
    Single entry point for every rail.

    Order of checks: order id, availability, local preconditions, cooldown.
    The processor is called only when all of them pass, and the cooldown
    starts only after a resource was actually created.
    """

    def __init__(
        self,
        payment_client: PaymentClient,
        lock_service: LockService,
        session_factory=SessionLocal,
        strategies: Dict[Rail, RailStrategy] | None = None,
        cooldown_seconds: int = PAYMENT_COOLDOWN_SECONDS,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.payment_client = payment_client
        self.lock_service = lock_service
        self.session_factory = session_factory
        self.strategies = strategies or build_strategies(payment_client)
        self.cooldown_seconds = cooldown_seconds
        self.clock = clock

    def strategy(self, rail: Rail) -> RailStrategy:
        return self.strategies[Rail(rail)]

    def cooldown_remaining(self, order_id: str) -> int:
        return self.lock_service.cooldown_remaining(order_id)

    def dispatch(self, order_id: str | None, amounts: Amounts, rail: Rail, context: RailContext) -> DispatchResult:
        if not order_id:
            raise OrderInvariantError(f"Refusing to dispatch {rail} payment without an order id")

        strategy = self.strategy(rail)
        if not strategy.is_available(context):
            raise RailUnavailableError("This payment method is not available on this device")

        strategy.check(amounts, context)

        if strategy.cooldown_gated:
            remaining = self.lock_service.cooldown_remaining(order_id)
            if remaining > 0:
                logger.info(f"Payment regeneration for order {order_id} blocked ({remaining}s left)")
                raise ResourceCooldownError(remaining)

        request = strategy.build_request(order_id, amounts, context)
        try:
            data = strategy.create(request) or {}
        except RequestException as e:
            logger.error(f"{strategy.rail.value} payment creation failed for order {order_id}: {e}")
            raise PaymentCreationError(error_message(e, "Failed to create payment")) from e

        result = strategy.to_result(order_id, request, data, self.clock())

        if strategy.cooldown_gated:
            self.lock_service.start_cooldown(order_id, self.cooldown_seconds)

        if result.resource is not None:
            self._persist(result, context.user_id)

        logger.info(
            f"{strategy.rail.value} payment {result.payment_id} issued for order {order_id} "
            f"({strategy.protocol.value})"
        )
        return result

    def _persist(self, result: DispatchResult, user_id: str) -> None:
        resource = result.resource
        db = self.session_factory()
        try:
            PaymentRepo(db).create_resource(
                PaymentResourceModel(
                    payment_id=resource.payment_id,
                    order_id=resource.order_id,
                    user_id=user_id,
                    rail=resource.rail.value,
                    url=resource.url,
                    qr_image=resource.qr_image,
                    status=resource.status,
                    created_at=resource.created_at,
                    expires_at=resource.expires_at,
                )
            )
        finally:
            db.close()
