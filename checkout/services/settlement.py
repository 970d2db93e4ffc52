# checkout/services/settlement.py
import threading
import warnings
from typing import List, NamedTuple

from redis import RedisError
from requests import RequestException

from checkout.domain.errors import SettlementSideEffectWarning
from checkout.domain.schemas import Amounts, DiscountToken, Notification, OrderStatus, Partition, Rail, TerminalResult
from checkout.services.balance_service import UserBalance
from checkout.services.cart_provider import CartProvider
from checkout.services.discount_service import DiscountSelector
from checkout.services.lock_service import LockService
from checkout.services.order_ledger import OrderLedger
from checkout.services.wallet_client import RewardClient
from checkout.utils.logging import get_logger
from checkout.utils.settings import SETTLEMENT_MARKER_TTL_SECONDS

logger = get_logger(__name__)


class Settlement(NamedTuple):
    result: TerminalResult
    warnings: List[Notification]


class SettlementFinalizer:
    """
    Runs the success side effects of a paid order, at most once per order.

    The discount transfer and the balance refresh are best effort: their
    failures become warnings and never stop the cart clear, the baseline
    reset or the terminal result.
    """

    def __init__(
        self,
        user_id: str,
        cart: CartProvider,
        ledger: OrderLedger,
        discounts: DiscountSelector,
        balance: UserBalance,
        reward_client: RewardClient | None,
        lock_service: LockService,
        marker_ttl: int = SETTLEMENT_MARKER_TTL_SECONDS,
    ):
        self.user_id = user_id
        self.cart = cart
        self.ledger = ledger
        self.discounts = discounts
        self.balance = balance
        self.reward_client = reward_client
        self.lock_service = lock_service
        self.marker_ttl = marker_ttl
        self._settled: set[str] = set()
        self._lock = threading.Lock()

    def is_settled(self, order_id: str) -> bool:
        return order_id in self._settled

    def settle(
        self,
        order_id: str,
        payment_id: str | None,
        rail: Rail,
        amounts: Amounts,
        partition: Partition | None,
        discount_token: DiscountToken | None = None,
        status: str = "paid",
    ) -> Settlement | None:
        """
        None when the order was already settled (here or by another worker).

        If settling fails the order is released again, so a redelivered
        confirmation settles it instead of being taken for a duplicate.
        """
        with self._lock:
            if order_id in self._settled:
                logger.info(f"Order {order_id} already settled, ignoring duplicate confirmation")
                return None
            self._settled.add(order_id)

        claimed = False
        try:
            claimed = self.lock_service.claim_settlement(order_id, self.marker_ttl)
            if not claimed:
                logger.info(f"Order {order_id} settled by another worker")
                return None
            return self._finalize(order_id, payment_id, rail, amounts, partition, discount_token, status)
        except Exception:
            logger.error(f"Settlement of order {order_id} failed, releasing it for a retry")
            with self._lock:
                self._settled.discard(order_id)
            if claimed:
                self._release(order_id)
            raise

    def _finalize(self, order_id, payment_id, rail, amounts, partition, discount_token, status) -> Settlement:
        notes: List[Notification] = []

        if discount_token is not None:
            try:
                self._transfer_discount(discount_token.token_id, order_id)
            except RequestException as e:
                notes.append(self._warn(f"Your discount token could not be transferred: {e}"))
            finally:
                self.discounts.clear()
            try:
                self.discounts.refresh_owned()
            except RequestException as e:
                notes.append(self._warn(f"Your discount tokens could not be refreshed: {e}"))

        if rail == Rail.LEDGER_TRANSFER:
            self.balance.debit(amounts.total_tokens)
            try:
                self.balance.refresh()
            except RequestException as e:
                notes.append(self._warn(f"Your token balance could not be refreshed: {e}"))

        #baseline goes first so the cart notification has no order to abandon
        self.ledger.mark_status(order_id, OrderStatus.SETTLED)
        self.ledger.reset()
        self.cart.clear(partition)

        logger.info(f"Order {order_id} settled with payment {payment_id} ({rail.value})")
        result = TerminalResult(payment_id=payment_id, order_id=order_id, status=status)
        return Settlement(result, notes)

    def _release(self, order_id: str) -> None:
        try:
            self.lock_service.release_settlement(order_id)
        except RedisError as e:
            logger.warning(f"Settlement marker of order {order_id} could not be released: {e}")

    def _transfer_discount(self, token_id: str, order_id: str) -> None:
        if self.reward_client is None:
            return
        self.reward_client.transfer_for_discount(token_id, self.user_id, order_id)
        logger.info(f"Discount token {token_id} transferred for order {order_id}")

    def _warn(self, message: str) -> Notification:
        logger.warning(f"Settlement side effect failed for user {self.user_id}: {message}")
        warnings.warn(message, SettlementSideEffectWarning, stacklevel=3)
        return Notification(level="warning", title="Payment Successful", message=message)
