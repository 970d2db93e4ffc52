from decimal import Decimal

import pytest

from checkout.data.models.order import OrderModel
from checkout.domain.errors import AddressRequiredError, EmptyCartError, OrderCreationError
from checkout.domain.schemas import CheckoutVariant, DiscountToken, OrderStatus, Partition, Rail
from checkout.services.amounts import compute_amounts
from checkout.services.order_ledger import OrderLedger, content_hash
from conftest import FakeOrderClient, http_error, item


@pytest.fixture()
def ledger(order_client, session_factory):
    return OrderLedger("user-1", order_client, session_factory=session_factory)


def _ensure(ledger, items, rail=Rail.QR_REDIRECT, partition=Partition.PHYSICAL, address="addr-1", token=None):
    amounts = compute_amounts(items, token.discount_percent if token else 0)
    return ledger.ensure_order(items, amounts, rail, partition, address, token)


def _status(session_factory, order_id):
    db = session_factory()
    try:
        return db.query(OrderModel).filter(OrderModel.order_id == order_id).one().status
    finally:
        db.close()


def test_hash_ignores_order_and_number_formatting():
    a = [item("p1", fiat="10"), item("p2", quantity=2)]
    b = [item("p2", quantity=2), item("p1", fiat="10.00")]

    assert content_hash(a) == content_hash(b)


def test_hash_changes_with_quantity_and_items():
    base = [item("p1"), item("p2")]

    assert content_hash(base) != content_hash([item("p1", quantity=2), item("p2")])
    assert content_hash(base) != content_hash([item("p1")])
    assert content_hash(base) != content_hash(base + [item("p3")])


def test_unchanged_cart_creates_one_order(ledger, order_client):
    items = [item("p1"), item("p2")]

    first = _ensure(ledger, items)
    second = _ensure(ledger, list(reversed(items)))
    third = _ensure(ledger, items)

    assert first == second == third
    assert len(order_client.calls) == 1


def test_changed_cart_creates_new_order(ledger, order_client):
    first = _ensure(ledger, [item("p1")])
    second = _ensure(ledger, [item("p1", quantity=3)])

    assert first != second
    assert len(order_client.calls) == 2


def test_invalidate_abandons_pending_order(ledger, order_client, session_factory):
    order_id = _ensure(ledger, [item("p1")])

    ledger.invalidate()

    assert ledger.order_id is None
    assert _status(session_factory, order_id) == OrderStatus.ABANDONED
    assert _ensure(ledger, [item("p1")]) != order_id
    assert len(order_client.calls) == 2


def test_pending_order_is_rehydrated_after_restart(ledger, order_client, session_factory):
    order_id = _ensure(ledger, [item("p1")])
    restarted = OrderLedger("user-1", order_client, session_factory=session_factory)

    assert _ensure(restarted, [item("p1")]) == order_id
    assert len(order_client.calls) == 1


def test_restart_with_other_terms_abandons_left_over_order(ledger, order_client, session_factory):
    first = _ensure(ledger, [item("p1")])
    restarted = OrderLedger("user-1", order_client, session_factory=session_factory)

    second = _ensure(restarted, [item("p1")], rail=Rail.LEDGER_TRANSFER)

    assert second != first
    assert _status(session_factory, first) == OrderStatus.ABANDONED
    db = session_factory()
    try:
        pending = db.query(OrderModel).filter(OrderModel.status == OrderStatus.PENDING).all()
    finally:
        db.close()
    assert [o.order_id for o in pending] == [second]


def test_changed_discount_token_creates_new_order(ledger, order_client, session_factory):
    token = DiscountToken(token_id="nft-20", discount_percent=Decimal("20"), owner_id="user-1")
    first = _ensure(ledger, [item("p1")])
    second = _ensure(ledger, [item("p1")], token=token)

    assert first != second
    assert _status(session_factory, first) == OrderStatus.ABANDONED
    assert order_client.calls[1]["discountTokenId"] == "nft-20"
    assert order_client.calls[1]["totalAmount"] == 8.0


def test_address_required_for_physical_shipping_items(ledger, order_client):
    with pytest.raises(AddressRequiredError):
        _ensure(ledger, [item("shirt")], address=None)

    assert order_client.calls == []


def test_no_address_needed_for_digital_or_kiosk_items(ledger, order_client):
    _ensure(ledger, [item("ebook", digital=True)], partition=Partition.DIGITAL, address=None)
    _ensure(ledger, [item("snack", sold_by="Kiosk")], address=None)

    assert order_client.calls[0]["addressId"] == ""
    assert order_client.calls[1]["addressId"] == ""


def test_empty_cart_rejected(ledger, order_client):
    with pytest.raises(EmptyCartError):
        _ensure(ledger, [])
    assert order_client.calls == []


def test_failed_creation_keeps_no_baseline(ledger, order_client):
    order_client.error = http_error(400, {"message": "Invalid address"})

    with pytest.raises(OrderCreationError, match="Invalid address"):
        _ensure(ledger, [item("p1")])

    assert ledger.order_id is None


def test_ledger_rail_payload_is_in_tokens(ledger, order_client):
    _ensure(ledger, [item("p1", quantity=2, fiat="10.00", tokens="21.25")], rail=Rail.LEDGER_TRANSFER)

    payload = order_client.calls[0]
    assert payload["totalAmount"] == 42.5
    assert payload["currency"] == "app_token"
    assert payload["paymentMethod"] == "app_token"
    assert payload["addressId"] == "addr-1"
    assert payload["orderItems"] == [
        {"productId": "p1", "variantId": "0", "quantity": 2, "unitPrice": 10.0, "totalPrice": 20.0}
    ]


def test_fiat_rail_payload(ledger, order_client):
    _ensure(ledger, [item("p1", fiat="42.50", tokens="100")], rail=Rail.WALLET_QR)

    payload = order_client.calls[0]
    assert payload["totalAmount"] == 42.5
    assert payload["currency"] == "USD"
    assert payload["paymentMethod"] == "googlepay"


def test_kiosk_orders_go_to_kiosk_endpoint(session_factory):
    client = FakeOrderClient()
    ledger = OrderLedger(
        "user-1", client, session_factory=session_factory, variant=CheckoutVariant.KIOSK, machine_id="m-7"
    )

    _ensure(ledger, [item("snack")], address=None)

    assert client.calls == []
    assert client.kiosk_calls[0]["machineId"] == "m-7"
