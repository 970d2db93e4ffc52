# checkout/services/order_ledger.py
import hashlib
import json
import threading
from decimal import Decimal
from typing import Iterable, List, NamedTuple

from requests import RequestException

from checkout.data.database import SessionLocal
from checkout.data.models.order import OrderModel
from checkout.domain.errors import AddressRequiredError, EmptyCartError, OrderCreationError
from checkout.domain.schemas import (
    Amounts,
    CheckoutVariant,
    CurrencyUnit,
    DiscountToken,
    LineItem,
    OrderStatus,
    Partition,
    Rail,
)
from checkout.repos.order_repo import OrderRepo
from checkout.services.http_client import error_message
from checkout.services.order_client import OrderClient
from checkout.services.rails import currency_code, currency_unit_for, payment_method_for
from checkout.utils.logging import get_logger

logger = get_logger(__name__)


def _plain(value: Decimal) -> str:
    # 10 and 10.00 must hash the same
    value = Decimal(value)
    return format(value.normalize(), "f") if value else "0"


def content_hash(items: Iterable[LineItem]) -> str:
    """Order independent fingerprint of the cart lines."""
    rows = sorted(
        (
            str(i.product_id),
            str(i.variant_id),
            int(i.quantity),
            _plain(i.unit_fiat_price),
            _plain(i.unit_token_price),
        )
        for i in items
    )
    return hashlib.sha256(json.dumps(rows).encode("utf-8")).hexdigest()


def normalized_items(items: Iterable[LineItem]) -> List[dict]:
    return [
        {
            "productId": i.product_id,
            "variantId": i.variant_id,
            "quantity": i.quantity,
            "unitPrice": float(i.unit_fiat_price),
            "totalPrice": float(i.unit_fiat_price * i.quantity),
        }
        for i in items
    ]


class Baseline(NamedTuple):
    order_id: str
    line_items_hash: str
    currency_unit: CurrencyUnit
    discount_token_id: str | None


class OrderLedger:
    """
    Create-or-reuse of the order behind the current cart.

    The baseline (order id + content hash) is the only memory of a created
    order. It is dropped synchronously whenever the cart changes, so an
    order id is never reused against different contents.
    """

    def __init__(
        self,
        user_id: str,
        order_client: OrderClient,
        session_factory=SessionLocal,
        variant: CheckoutVariant = CheckoutVariant.CONSUMER,
        machine_id: str | None = None,
    ):
        self.user_id = user_id
        self.order_client = order_client
        self.session_factory = session_factory
        self.variant = variant
        self.machine_id = machine_id
        self._baseline: Baseline | None = None
        self._lock = threading.RLock()

    @property
    def order_id(self) -> str | None:
        baseline = self._baseline
        return baseline.order_id if baseline else None

    @property
    def baseline(self) -> Baseline | None:
        return self._baseline

    def ensure_order(
        self,
        items: List[LineItem],
        amounts: Amounts,
        rail: Rail,
        partition: Partition,
        address_id: str | None = None,
        discount_token: DiscountToken | None = None,
    ) -> str:
        if not items:
            raise EmptyCartError("Your cart is empty")

        ships = self.variant == CheckoutVariant.CONSUMER and partition == Partition.PHYSICAL and any(
            i.requires_shipping for i in items
        )
        if ships and not address_id:
            raise AddressRequiredError("Please select an address to continue")

        digest = content_hash(items)
        unit = currency_unit_for(rail)
        wanted = Baseline("", digest, unit, discount_token.token_id if discount_token else None)

        with self._lock:
            if self._baseline and self._baseline[1:] == wanted[1:]:
                logger.info(f"Reusing order {self._baseline.order_id} for user {self.user_id}")
                return self._baseline.order_id

            existing = self._find_pending(digest)
            if existing is not None and existing[1:] == wanted[1:]:
                self._baseline = existing
                logger.info(f"Rehydrated pending order {existing.order_id} for user {self.user_id}")
                return existing.order_id

            payload = self.build_payload(
                items, amounts, rail, address_id if ships else None, discount_token
            )
            try:
                if self.variant == CheckoutVariant.KIOSK:
                    data = self.order_client.create_kiosk_order(payload)
                else:
                    data = self.order_client.create_order(payload)
            except RequestException as e:
                logger.error(f"Order creation failed for user {self.user_id}: {e}")
                raise OrderCreationError(error_message(e, "Failed to create order")) from e

            order_id = str((data or {}).get("orderId") or "")
            if not order_id:
                raise OrderCreationError("Failed to create order")

            #the replaced order, in memory or left over from a previous process
            for replaced in {b.order_id for b in (self._baseline, existing) if b is not None}:
                self._set_status(replaced, OrderStatus.ABANDONED)

            self._persist(order_id, digest, items, amounts, rail, partition, payload, discount_token)
            self._baseline = wanted._replace(order_id=order_id)
            logger.info(f"Order {order_id} created for user {self.user_id} ({len(items)} items)")
            return order_id

    def build_payload(
        self,
        items: List[LineItem],
        amounts: Amounts,
        rail: Rail,
        address_id: str | None,
        discount_token: DiscountToken | None,
    ) -> dict:
        unit = currency_unit_for(rail)
        payload = {
            "totalAmount": float(amounts.total_for(unit)),
            "discountAmount": float(amounts.discount_for(unit)),
            "discount": {
                "percentage": float(amounts.discount_percent),
                "fiatAmount": float(amounts.discount_fiat),
                "tokenAmount": float(amounts.discount_tokens),
            },
            "discountTokenId": discount_token.token_id if discount_token else None,
            "discountTokenName": discount_token.name if discount_token else None,
            "couponCode": "",
            "message": "",
            "addressId": address_id or "",
            "currency": currency_code(unit),
            "orderItems": normalized_items(items),
            "paymentMethod": payment_method_for(rail),
        }
        if self.variant == CheckoutVariant.KIOSK:
            payload["machineId"] = self.machine_id or ""
        return payload

    def invalidate(self) -> None:
        """Cart changed: forget the baseline and abandon its pending order."""
        with self._lock:
            baseline, self._baseline = self._baseline, None
        if baseline is not None:
            logger.info(f"Cart changed, dropping order {baseline.order_id} for user {self.user_id}")
            self._set_status(baseline.order_id, OrderStatus.ABANDONED)

    def reset(self) -> None:
        with self._lock:
            self._baseline = None

    def mark_status(self, order_id: str, status: str) -> None:
        self._set_status(order_id, status)

    def _find_pending(self, digest: str) -> Baseline | None:
        db = self.session_factory()
        try:
            row = OrderRepo(db).find_pending(self.user_id, digest)
            if row is None:
                return None
            return Baseline(
                row.order_id, row.line_items_hash, CurrencyUnit(row.currency_unit), row.discount_token_id
            )
        finally:
            db.close()

    def _persist(self, order_id, digest, items, amounts, rail, partition, payload, discount_token) -> None:
        db = self.session_factory()
        try:
            OrderRepo(db).create_order(
                OrderModel(
                    order_id=order_id,
                    user_id=self.user_id,
                    line_items_hash=digest,
                    partition=partition.value,
                    total_fiat=amounts.total_fiat,
                    total_tokens=amounts.total_tokens,
                    discount_fiat=amounts.discount_fiat,
                    discount_tokens=amounts.discount_tokens,
                    discount_percent=amounts.discount_percent,
                    discount_token_id=discount_token.token_id if discount_token else None,
                    currency_unit=currency_unit_for(rail).value,
                    payment_method=payload["paymentMethod"],
                    address_id=payload["addressId"] or None,
                    status=OrderStatus.PENDING,
                )
            )
        finally:
            db.close()

    def _set_status(self, order_id: str, status: str) -> None:
        db = self.session_factory()
        try:
            OrderRepo(db).update_order_status(order_id, status)
        finally:
            db.close()
