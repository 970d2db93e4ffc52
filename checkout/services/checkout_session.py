# checkout/services/checkout_session.py
import threading
import uuid
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, List, NamedTuple

from redis import RedisError
from requests import RequestException
from sqlalchemy.exc import SQLAlchemyError

from checkout.data.database import SessionLocal
from checkout.domain.errors import (
    CheckoutError,
    ConfirmationTimeoutError,
    InvalidTransitionError,
    RailUnavailableError,
    SubmitInProgressError,
)
from checkout.domain.schemas import (
    Amounts,
    CheckoutState,
    CheckoutVariant,
    DiscountToken,
    Notification,
    Partition,
    PaymentEvent,
    PaymentResource,
    PaymentStatus,
    Rail,
    SubmitOut,
    SummaryOut,
    TerminalResult,
    WalletCapabilities,
    WalletSheet,
)
from checkout.repos.payment_repo import PaymentRepo
from checkout.services.balance_service import UserBalance
from checkout.services.cart_provider import CartProvider, SnapshotCart
from checkout.services.confirmation import JobPoller, PaymentConfirmationListener
from checkout.services.discount_service import DiscountSelector
from checkout.services.dispatcher import PaymentRailDispatcher, utcnow
from checkout.services.lock_service import LockService
from checkout.services.order_client import OrderClient
from checkout.services.order_ledger import OrderLedger
from checkout.services.payment_channel import PAID, PaymentChannel
from checkout.services.payment_client import PaymentClient
from checkout.services.rails import ConfirmationProtocol, RailContext, available_rails
from checkout.services.settlement import SettlementFinalizer
from checkout.services.wallet_client import BalanceClient, JobClient, RewardClient
from checkout.utils.logging import get_logger
from checkout.utils.settings import JOB_POLL_INTERVAL_SECONDS, SUBMIT_LOCK_TTL_SECONDS

logger = get_logger(__name__)


@dataclass
class CheckoutServices:
    """Collaborators shared by every session of one process."""

    order_client: OrderClient
    payment_client: PaymentClient
    lock_service: LockService
    channel: PaymentChannel
    reward_client: RewardClient | None = None
    balance_client: BalanceClient | None = None
    job_client: JobClient | None = None
    session_factory: object = SessionLocal
    poll_interval: float = JOB_POLL_INTERVAL_SECONDS
    strategies: dict | None = None


class PendingPayment(NamedTuple):
    payment_id: str | None
    order_id: str
    rail: Rail
    amounts: Amounts
    partition: Partition | None
    discount_token: DiscountToken | None
    expires_at: datetime | None
    status: str = PAID
    #paid, but settling it failed and must be retried
    settle_due: bool = False


TRANSITIONS = {
    CheckoutState.IDLE: {CheckoutState.ORDER_CREATED},
    CheckoutState.ORDER_CREATED: {
        CheckoutState.ORDER_CREATED,
        CheckoutState.RESOURCE_ISSUED,
        CheckoutState.CONFIRMED,
        CheckoutState.FAILED,
        CheckoutState.IDLE,
    },
    CheckoutState.RESOURCE_ISSUED: {
        CheckoutState.ORDER_CREATED,
        CheckoutState.RESOURCE_ISSUED,
        CheckoutState.CONFIRMED,
        CheckoutState.FAILED,
        CheckoutState.IDLE,
    },
    CheckoutState.CONFIRMED: {CheckoutState.ORDER_CREATED, CheckoutState.IDLE},
    CheckoutState.FAILED: {CheckoutState.ORDER_CREATED, CheckoutState.CONFIRMED, CheckoutState.IDLE},
}


class CheckoutSession:
    """
    One user's checkout, from cart snapshot to settled order.

    IDLE -> ORDER_CREATED -> RESOURCE_ISSUED -> CONFIRMED | FAILED

    The session owns every subscription it makes (cart, payment rooms, job
    poll) and drops all of them on ``close()``. A cart change while an
    order is pending sends the session back to IDLE before ``replace``
    returns.
    """

    def __init__(
        self,
        user_id: str,
        services: CheckoutServices,
        variant: CheckoutVariant = CheckoutVariant.CONSUMER,
        capabilities: WalletCapabilities | None = None,
        machine_id: str | None = None,
        cart: CartProvider | None = None,
        machine_owner_id: str | None = None,
    ):
        self.user_id = user_id
        self.services = services
        self.variant = variant
        self.machine_owner_id = machine_owner_id
        self.capabilities = capabilities or WalletCapabilities()
        self.cart = cart if cart is not None else SnapshotCart()

        self.discounts = DiscountSelector(user_id, services.reward_client)
        self.balance = UserBalance(user_id, services.balance_client)
        self.ledger = OrderLedger(
            user_id,
            services.order_client,
            session_factory=services.session_factory,
            variant=variant,
            machine_id=machine_id,
        )
        self.dispatcher = PaymentRailDispatcher(
            services.payment_client,
            services.lock_service,
            session_factory=services.session_factory,
            strategies=services.strategies,
        )
        self.listener = PaymentConfirmationListener(user_id, services.channel, services.payment_client)
        self.poller = JobPoller(services.job_client, on_status=self._on_job_status, interval=services.poll_interval)
        self.finalizer = SettlementFinalizer(
            user_id,
            self.cart,
            self.ledger,
            self.discounts,
            self.balance,
            services.reward_client,
            services.lock_service,
        )

        self._state = CheckoutState.IDLE
        self._partition = Partition.PHYSICAL
        self._pending: Dict[str, PendingPayment] = {}
        self._resource: PaymentResource | None = None
        self._wallet_sheet: WalletSheet | None = None
        self._result: TerminalResult | None = None
        self._jobs: Dict[str, str] = {}
        self._notifications: List[Notification] = []
        self._closed = False
        self._lock = threading.RLock()
        self._busy = threading.Lock()
        self._unsubscribe = self.cart.subscribe(self._on_cart_changed)

    @property
    def state(self) -> CheckoutState:
        return self._state

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def order_id(self) -> str | None:
        return self.ledger.order_id

    def start(self) -> None:
        """Initial balance and owned tokens; neither blocks the checkout."""
        try:
            self.discounts.refresh_owned()
        except RequestException as e:
            logger.warning(f"Could not load discount tokens for user {self.user_id}: {e}")
        try:
            self.balance.refresh()
        except RequestException as e:
            logger.warning(f"Could not load balance for user {self.user_id}: {e}")

    # queries

    def items(self, partition: Partition | None = None):
        if self.variant == CheckoutVariant.KIOSK:
            return self.cart.get_line_items()
        return self.cart.get_line_items(partition or self._partition)

    def amounts(self, partition: Partition | None = None) -> Amounts:
        return self.discounts.amounts_for(self.items(partition))

    def available_rails(self) -> List[Rail]:
        return available_rails(self.variant, self.capabilities, self.dispatcher.strategies)

    def summary(self, partition: Partition | None = None) -> SummaryOut:
        with self._lock:
            partition = partition or self._partition
            order_id = self.ledger.order_id
            return SummaryOut(
                state=self._state,
                partition=partition,
                amounts=self.amounts(partition).display(),
                active_discount=self.discounts.active,
                discounts=self.discounts.owned,
                rails=self.available_rails(),
                balance=self.balance.value,
                order_id=order_id,
                resource=self._resource,
                wallet_sheet=self._wallet_sheet,
                result=self._result,
                cooldown_seconds=self.dispatcher.cooldown_remaining(order_id) if order_id else 0,
                jobs=dict(self._jobs),
                notifications=list(self._notifications[-10:]),
            )

    # commands

    def toggle_discount(self, token_id: str) -> DiscountToken | None:
        with self._lock:
            return self.discounts.toggle(token_id)

    def refresh_balance(self):
        return self.balance.refresh()

    def submit(
        self,
        rail: Rail,
        address_id: str | None = None,
        partition: Partition = Partition.PHYSICAL,
    ) -> SubmitOut:
        try:
            with self._submission():
                return self._submit(Rail(rail), address_id, partition)
        except CheckoutError as e:
            logger.info(f"Checkout of user {self.user_id} rejected: {e}")
            note = self._notify("error", e.title, str(e))
            return SubmitOut(
                ok=False,
                state=self._state,
                order_id=self.ledger.order_id,
                error=e.code,
                notifications=[note],
            )

    def complete_wallet_sheet(self, payment_id: str, succeeded: bool) -> SubmitOut:
        with self._lock:
            if payment_id not in self._pending:
                if self._result is not None and self._result.payment_id == payment_id:
                    # repeated sheet callback for a payment already decided
                    return self._snapshot(ok=self._result.status != "failed")
                raise KeyError(payment_id)
            if succeeded:
                return self._snapshot(ok=self._confirm(payment_id))
            self._fail(payment_id, "Your wallet payment was not completed.")
            return self._snapshot(ok=False)

    def handle_payment_event(self, event: PaymentEvent) -> None:
        with self._lock:
            if self._closed or event.payment_id not in self._pending:
                return
            if event.status == PAID:
                self._confirm(event.payment_id)
            else:
                self._fail(event.payment_id, "Your payment was not completed.")

    def track_job(self, job_id: str, status: str) -> bool:
        with self._lock:
            self._jobs[job_id] = status
            if self._closed:
                return False
        return self.poller.track(job_id, status)

    def reconcile(self) -> int:
        """Re-check every payment still waiting for a push; returns how many settled or failed."""
        decided = 0
        with self._lock:
            due = [(key, p.status) for key, p in self._pending.items() if p.settle_due]
            for key, status in due:
                if key in self._pending and self._confirm(key, status=status):
                    decided += 1
        for payment_id in self.listener.payment_ids:
            status = self.listener.reconcile(payment_id)
            if status is None:
                continue
            self.handle_payment_event(PaymentEvent(payment_id=payment_id, user_id=self.user_id, status=status))
            decided += 1
        return decided

    def close(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
            self._unsubscribe()
            self.listener.close()
            self.poller.cancel()
            self._pending.clear()
        logger.info(f"Checkout session of user {self.user_id} closed")

    # internals

    @contextmanager
    def _submission(self):
        if not self._busy.acquire(blocking=False):
            raise SubmitInProgressError("Your order is already being processed")
        token = uuid.uuid4().hex
        locked = False
        try:
            locked = self.services.lock_service.acquire_submit_lock(self.user_id, token, SUBMIT_LOCK_TTL_SECONDS)
            if not locked:
                raise SubmitInProgressError("Your order is already being processed")
            yield
        finally:
            if locked:
                self.services.lock_service.release_submit_lock(self.user_id, token)
            self._busy.release()

    def _submit(self, rail: Rail, address_id: str | None, partition: Partition) -> SubmitOut:
        with self._lock:
            if self._closed:
                raise SubmitInProgressError("This checkout is closed")
            if self.variant == CheckoutVariant.KIOSK:
                partition = None
            else:
                self._partition = partition

            items = self.items(partition)
            amounts = self.discounts.amounts_for(items)
            context = RailContext(
                user_id=self.user_id,
                balance=self.balance.value,
                capabilities=self.capabilities,
                variant=self.variant,
                payee_id=self.machine_owner_id if self.variant == CheckoutVariant.KIOSK else None,
            )

            strategy = self.dispatcher.strategy(rail)
            if not strategy.is_available(context):
                raise RailUnavailableError("This payment method is not available on this device")
            #balance is checked before an order exists for this attempt
            strategy.check(amounts, context)

            token = self.discounts.active
            previous = self.ledger.order_id
            order_id = self.ledger.ensure_order(
                items, amounts, rail, partition or Partition.PHYSICAL, address_id, token
            )
            if order_id != previous:
                # resources of the replaced order are void
                self._drop_pending()
                self._transition(CheckoutState.ORDER_CREATED)
            elif self._state != CheckoutState.RESOURCE_ISSUED:
                self._transition(CheckoutState.ORDER_CREATED)

            dispatched = self.dispatcher.dispatch(order_id, amounts, rail, context)
            payment_id = dispatched.payment_id or f"{rail.value}:{order_id}"
            expires_at = dispatched.resource.expires_at if dispatched.resource else None
            self._pending[payment_id] = PendingPayment(
                dispatched.payment_id, order_id, rail, amounts, partition, token, expires_at
            )
            self._result = None

            if dispatched.protocol == ConfirmationProtocol.SYNCHRONOUS:
                self._confirm(payment_id, status=dispatched.result.status)
                return self._snapshot(ok=True)

            if dispatched.protocol == ConfirmationProtocol.PUSH:
                self._resource = dispatched.resource
                self._wallet_sheet = None
                self.listener.listen(payment_id, self.handle_payment_event)
            else:
                self._wallet_sheet = dispatched.wallet_sheet
                self._resource = None

            self._transition(CheckoutState.RESOURCE_ISSUED)
            return self._snapshot(ok=True)

    def _confirm(self, payment_id: str, status: str = PAID) -> bool:
        pending = self._pending.pop(payment_id)
        if self.finalizer.is_settled(pending.order_id):
            return True

        previous = self._state
        self._transition(CheckoutState.CONFIRMED)
        try:
            if pending.payment_id:
                self._set_payment_status(pending.payment_id, PaymentStatus.PAID)
            settlement = self.finalizer.settle(
                pending.order_id,
                pending.payment_id,
                pending.rail,
                pending.amounts,
                pending.partition,
                discount_token=pending.discount_token,
                status=status,
            )
        except (RedisError, SQLAlchemyError) as e:
            #keep the payment pending so a redelivery or reconcile settles it
            logger.error(f"Settling order {pending.order_id} of user {self.user_id} failed: {e}")
            self._pending[payment_id] = pending._replace(status=status, settle_due=True)
            self._state = previous
            self._notify(
                "error",
                "Payment Received",
                "Your payment was received but the order could not be completed yet. It will be retried.",
            )
            return False

        #other resources minted for the same order are void now
        for other, p in list(self._pending.items()):
            if p.order_id == pending.order_id:
                self._pending.pop(other)
        self.listener.stop_all()
        self._resource = None
        self._wallet_sheet = None

        if settlement is None:
            self._result = TerminalResult(payment_id=pending.payment_id, order_id=pending.order_id, status=status)
            return True
        self._result = settlement.result
        self._notifications.extend(settlement.warnings)
        self._notify("success", "Payment Successful", f"Order {pending.order_id} is confirmed.")
        return True

    def _fail(self, payment_id: str, message: str) -> None:
        pending = self._pending.pop(payment_id)
        self.listener.stop(payment_id)
        self._set_payment_status(payment_id, PaymentStatus.FAILED)
        if self._resource is not None and self._resource.payment_id == payment_id:
            self._resource = None
        if self._wallet_sheet is not None and self._wallet_sheet.payment_id == payment_id:
            self._wallet_sheet = None

        if pending.expires_at is not None and pending.expires_at <= utcnow():
            err = ConfirmationTimeoutError("The payment was not confirmed in time. Please try again.")
            self._notify("error", err.title, str(err))
        else:
            self._notify("error", "Payment Failed", message)

        if self._state in (CheckoutState.ORDER_CREATED, CheckoutState.RESOURCE_ISSUED):
            self._transition(CheckoutState.FAILED)
        self._result = TerminalResult(payment_id=payment_id, order_id=pending.order_id, status="failed")

    def _on_cart_changed(self) -> None:
        with self._lock:
            self.ledger.invalidate()
            if self._state not in (
                CheckoutState.ORDER_CREATED,
                CheckoutState.RESOURCE_ISSUED,
                CheckoutState.FAILED,
            ):
                return
            self._drop_pending()
            self._result = None
            self._transition(CheckoutState.IDLE)

    def _drop_pending(self) -> None:
        self._pending.clear()
        self.listener.stop_all()
        self._resource = None
        self._wallet_sheet = None

    def _on_job_status(self, job_id: str, status: str) -> None:
        with self._lock:
            if self._closed:
                return
            self._jobs[job_id] = status
            level = "error" if status == "failed" else "info"
            self._notify(level, "Job Update", f"Job {job_id} is {status}.")

    def _transition(self, target: CheckoutState) -> None:
        if target not in TRANSITIONS[self._state]:
            raise InvalidTransitionError(f"{self._state.value} -> {target.value}")
        if target != self._state:
            logger.info(f"Checkout of user {self.user_id}: {self._state.value} -> {target.value}")
        self._state = target

    def _set_payment_status(self, payment_id: str, status: str) -> None:
        db = self.services.session_factory()
        try:
            PaymentRepo(db).update_status(payment_id, status)
        finally:
            db.close()

    def _notify(self, level: str, title: str, message: str) -> Notification:
        note = Notification(level=level, title=title, message=message)
        with self._lock:
            self._notifications.append(note)
        return note

    def _snapshot(self, ok: bool) -> SubmitOut:
        return SubmitOut(
            ok=ok,
            state=self._state,
            order_id=self._result.order_id if self._result else self.ledger.order_id,
            resource=self._resource,
            wallet_sheet=self._wallet_sheet,
            result=self._result,
            notifications=list(self._notifications[-3:]),
        )
