from datetime import datetime, timedelta
from decimal import Decimal

import pytest

from checkout.data.models.payment import PaymentResourceModel
from checkout.domain.errors import (
    InsufficientBalanceError,
    OrderInvariantError,
    PaymentCreationError,
    RailUnavailableError,
    ResourceCooldownError,
)
from checkout.domain.schemas import CheckoutVariant, Rail, WalletCapabilities
from checkout.services.amounts import compute_amounts
from checkout.services.dispatcher import PaymentRailDispatcher
from checkout.services.rails import ConfirmationProtocol, RailContext, available_rails
from conftest import http_error, item

NOW = datetime(2026, 10, 17, 12, 0, 0)


@pytest.fixture()
def dispatcher(payment_client, lock_service, session_factory):
    return PaymentRailDispatcher(payment_client, lock_service, session_factory=session_factory, clock=lambda: NOW)


@pytest.fixture()
def amounts():
    return compute_amounts([item(fiat="42.50", tokens="42.50")])


def _context(balance="0", apple_pay=False, google_pay=False):
    return RailContext(
        user_id="user-1",
        balance=Decimal(balance),
        capabilities=WalletCapabilities(apple_pay=apple_pay, google_pay=google_pay),
    )


def test_missing_order_id_is_a_hard_failure(dispatcher, payment_client, amounts):
    with pytest.raises(OrderInvariantError):
        dispatcher.dispatch(None, amounts, Rail.QR_REDIRECT, _context())
    assert payment_client.product_calls == []


def test_qr_request_and_persisted_resource(dispatcher, payment_client, amounts, session_factory):
    result = dispatcher.dispatch("ord-1", amounts, Rail.QR_REDIRECT, _context())

    assert payment_client.product_calls == [
        {
            "amount": 4250,
            "currency": "USD",
            "orderId": "ord-1",
            "userId": "user-1",
            "paymentType": "buyProduct",
            "paymentMethod": "stripe",
        }
    ]
    assert result.protocol == ConfirmationProtocol.PUSH
    assert result.resource.url == "https://pay.test/session/1"
    assert result.resource.qr_image.startswith("data:image/png")

    db = session_factory()
    try:
        row = db.query(PaymentResourceModel).filter_by(payment_id="pay-1").one()
        assert row.status == "PENDING"
        assert row.user_id == "user-1"
        assert row.expires_at == NOW + timedelta(seconds=300)
    finally:
        db.close()


def test_regeneration_blocked_during_cooldown(dispatcher, payment_client, amounts, clock):
    first = dispatcher.dispatch("ord-1", amounts, Rail.QR_REDIRECT, _context())

    clock.advance(30)
    with pytest.raises(ResourceCooldownError) as exc:
        dispatcher.dispatch("ord-1", amounts, Rail.QR_REDIRECT, _context())
    assert exc.value.remaining_seconds == 30
    assert "30 seconds" in str(exc.value)
    assert len(payment_client.product_calls) == 1

    clock.advance(31)
    second = dispatcher.dispatch("ord-1", amounts, Rail.QR_REDIRECT, _context())
    assert second.resource.payment_id != first.resource.payment_id


def test_cooldown_is_per_order(dispatcher, payment_client, amounts):
    dispatcher.dispatch("ord-1", amounts, Rail.CARD_REDIRECT, _context())
    dispatcher.dispatch("ord-2", amounts, Rail.CARD_REDIRECT, _context())

    assert len(payment_client.product_calls) == 2


def test_failed_creation_does_not_start_cooldown(dispatcher, payment_client, amounts):
    payment_client.error = http_error(502, {"error": "Processor unavailable"})
    with pytest.raises(PaymentCreationError, match="Processor unavailable"):
        dispatcher.dispatch("ord-1", amounts, Rail.QR_REDIRECT, _context())

    payment_client.error = None
    assert dispatcher.cooldown_remaining("ord-1") == 0
    assert dispatcher.dispatch("ord-1", amounts, Rail.QR_REDIRECT, _context()).resource is not None


def test_insufficient_balance_makes_no_call(dispatcher, payment_client, amounts):
    with pytest.raises(InsufficientBalanceError) as exc:
        dispatcher.dispatch("ord-1", amounts, Rail.LEDGER_TRANSFER, _context(balance="10"))

    assert exc.value.required == Decimal("42.50")
    assert payment_client.transfer_calls == []


def test_ledger_transfer_is_synchronous(dispatcher, payment_client, amounts):
    result = dispatcher.dispatch("ord-1", amounts, Rail.LEDGER_TRANSFER, _context(balance="50"))

    assert result.protocol == ConfirmationProtocol.SYNCHRONOUS
    assert result.result.status == "paid"
    assert result.result.payment_id == "tx-1"
    call = payment_client.transfer_calls[0]
    assert call["amount"] == 42.5
    assert call["fromUserId"] == "user-1"
    assert call["toUserId"] == "platform"
    assert call["orderId"] == "ord-1"
    assert dispatcher.cooldown_remaining("ord-1") == 0


def test_rejected_ledger_transfer(dispatcher, payment_client, amounts):
    payment_client.transfer_response = {"success": False, "message": "Wallet locked"}

    with pytest.raises(PaymentCreationError, match="Wallet locked"):
        dispatcher.dispatch("ord-1", amounts, Rail.LEDGER_TRANSFER, _context(balance="50"))


def test_crypto_returns_hosted_page(dispatcher, payment_client, amounts):
    result = dispatcher.dispatch("ord-1", amounts, Rail.ON_CHAIN_CRYPTO, _context())

    assert result.resource.payment_id == "ch-1"
    assert result.resource.url == "https://commerce.test/charge/ch-1"
    assert payment_client.crypto_calls[0]["amount"] == 42.5


def test_wallet_push_needs_capability(dispatcher, payment_client, amounts):
    with pytest.raises(RailUnavailableError):
        dispatcher.dispatch("ord-1", amounts, Rail.WALLET_PUSH, _context())
    assert payment_client.intent_calls == []

    result = dispatcher.dispatch("ord-1", amounts, Rail.WALLET_PUSH, _context(apple_pay=True))
    assert result.protocol == ConfirmationProtocol.WALLET_CALLBACK
    assert result.wallet_sheet.amount_minor == 4250
    assert result.wallet_sheet.client_secret == "pi_1_secret"
    assert result.wallet_sheet.payment_id == "pi-1"


def test_wallet_qr_shares_cooldown_rules(dispatcher, payment_client, amounts):
    ctx = _context(google_pay=True)
    dispatcher.dispatch("ord-1", amounts, Rail.WALLET_QR, ctx)

    with pytest.raises(ResourceCooldownError):
        dispatcher.dispatch("ord-1", amounts, Rail.WALLET_QR, ctx)
    assert payment_client.product_calls[0]["paymentMethod"] == "googlepay"


def test_cash_on_delivery_calls_nothing(dispatcher, payment_client, amounts):
    result = dispatcher.dispatch("ord-1", amounts, Rail.CASH_ON_DELIVERY, _context())

    assert result.result.status == "pending"
    assert payment_client.product_calls == payment_client.transfer_calls == []


def test_available_rails_hide_failed_wallet_checks():
    rails = available_rails(CheckoutVariant.CONSUMER, WalletCapabilities(apple_pay=False, google_pay=True))

    assert Rail.WALLET_PUSH not in rails
    assert Rail.WALLET_QR in rails
    assert Rail.LEDGER_TRANSFER in rails
    assert Rail.CASH_ON_DELIVERY not in available_rails(CheckoutVariant.KIOSK)


def test_kiosk_offers_only_the_ledger_rail():
    rails = available_rails(CheckoutVariant.KIOSK, WalletCapabilities(apple_pay=True, google_pay=True))

    assert rails == [Rail.LEDGER_TRANSFER]


def test_kiosk_transfer_pays_the_machine_owner(dispatcher, payment_client, amounts):
    context = RailContext(
        user_id="user-1", balance=Decimal("50"), variant=CheckoutVariant.KIOSK, payee_id="owner-9"
    )

    dispatcher.dispatch("ord-1", amounts, Rail.LEDGER_TRANSFER, context)

    assert payment_client.transfer_calls[0]["toUserId"] == "owner-9"


def test_kiosk_rejects_other_rails_and_missing_owner(dispatcher, payment_client, amounts):
    context = RailContext(user_id="user-1", balance=Decimal("50"), variant=CheckoutVariant.KIOSK)

    with pytest.raises(RailUnavailableError):
        dispatcher.dispatch("ord-1", amounts, Rail.QR_REDIRECT, context)
    with pytest.raises(RailUnavailableError):
        dispatcher.dispatch("ord-1", amounts, Rail.LEDGER_TRANSFER, context)

    assert payment_client.product_calls == payment_client.transfer_calls == []
