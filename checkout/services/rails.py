# checkout/services/rails.py
"""
One strategy per payment rail.

A strategy only knows the narrow part of its rail: which unit it charges
in, the request shape, how the processor answer maps to a resource or a
result, and how the payment is confirmed afterwards. Order creation,
amounts and settlement are shared and live elsewhere.
"""
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal
from enum import Enum
from typing import Dict, List

from pydantic import BaseModel

from checkout.domain.errors import InsufficientBalanceError, PaymentCreationError, RailUnavailableError
from checkout.domain.schemas import (
    Amounts,
    CheckoutVariant,
    CurrencyUnit,
    PaymentResource,
    PaymentStatus,
    Rail,
    TerminalResult,
    WalletCapabilities,
    WalletSheet,
)
from checkout.services.amounts import to_minor_units
from checkout.services.payment_client import PaymentClient
from checkout.utils.settings import (
    CONFIRMATION_TIMEOUT_SECONDS,
    FIAT_CURRENCY,
    LEDGER_CURRENCY,
    PAYMENT_TYPE,
    PLATFORM_ACCOUNT_ID,
)


class ConfirmationProtocol(str, Enum):
    PUSH = "push"
    SYNCHRONOUS = "synchronous"
    WALLET_CALLBACK = "wallet_callback"


_PAYMENT_METHODS: Dict[Rail, str] = {
    Rail.QR_REDIRECT: "stripe",
    Rail.CARD_REDIRECT: "stripe",
    Rail.LEDGER_TRANSFER: "app_token",
    Rail.ON_CHAIN_CRYPTO: "crypto",
    Rail.WALLET_PUSH: "apple_pay",
    Rail.WALLET_QR: "googlepay",
    Rail.CASH_ON_DELIVERY: "cash_on_delivery",
}


def payment_method_for(rail: Rail) -> str:
    return _PAYMENT_METHODS[rail]


def currency_unit_for(rail: Rail) -> CurrencyUnit:
    return CurrencyUnit.LEDGER if rail == Rail.LEDGER_TRANSFER else CurrencyUnit.FIAT


def currency_code(unit: CurrencyUnit) -> str:
    return LEDGER_CURRENCY if unit == CurrencyUnit.LEDGER else FIAT_CURRENCY


@dataclass
class RailContext:
    user_id: str
    balance: Decimal = Decimal("0")
    capabilities: WalletCapabilities = field(default_factory=WalletCapabilities)
    variant: CheckoutVariant = CheckoutVariant.CONSUMER
    #kiosk transfers pay the machine owner
    payee_id: str | None = None


class DispatchResult(BaseModel):
    rail: Rail
    protocol: ConfirmationProtocol
    resource: PaymentResource | None = None
    wallet_sheet: WalletSheet | None = None
    result: TerminalResult | None = None

    @property
    def payment_id(self) -> str | None:
        for part in (self.resource, self.wallet_sheet, self.result):
            if part is not None:
                return part.payment_id
        return None


class RailStrategy:
    rail: Rail
    protocol = ConfirmationProtocol.PUSH
    cooldown_gated = False

    def __init__(self, payment_client: PaymentClient):
        self.payment_client = payment_client

    @property
    def unit(self) -> CurrencyUnit:
        return currency_unit_for(self.rail)

    @property
    def payment_method(self) -> str:
        return payment_method_for(self.rail)

    def is_available(self, context: RailContext) -> bool:
        #kiosk checkout is token only
        return context.variant == CheckoutVariant.CONSUMER

    def check(self, amounts: Amounts, context: RailContext) -> None:
        """Local preconditions, evaluated before any network call."""

    def build_request(self, order_id: str, amounts: Amounts, context: RailContext) -> dict:
        raise NotImplementedError

    def create(self, request: dict) -> dict:
        raise NotImplementedError

    def to_result(self, order_id: str, request: dict, data: dict, now: datetime) -> DispatchResult:
        raise NotImplementedError

    def _resource(self, order_id: str, payment_id, now: datetime, **kwargs) -> DispatchResult:
        if not payment_id:
            raise PaymentCreationError("Payment service returned no payment id")
        resource = PaymentResource(
            payment_id=str(payment_id),
            order_id=order_id,
            rail=self.rail,
            status=PaymentStatus.PENDING,
            created_at=now,
            expires_at=now + timedelta(seconds=CONFIRMATION_TIMEOUT_SECONDS),
            **kwargs,
        )
        return DispatchResult(rail=self.rail, protocol=self.protocol, resource=resource)


class QrRedirectRail(RailStrategy):
    rail = Rail.QR_REDIRECT
    cooldown_gated = True

    def build_request(self, order_id, amounts, context):
        return {
            "amount": to_minor_units(amounts.total_fiat),
            "currency": FIAT_CURRENCY,
            "orderId": order_id,
            "userId": context.user_id,
            "paymentType": PAYMENT_TYPE,
            "paymentMethod": self.payment_method,
        }

    def create(self, request):
        return self.payment_client.create_product_payment(request)

    def to_result(self, order_id, request, data, now):
        return self._resource(
            order_id,
            data.get("paymentId"),
            now,
            url=data.get("url"),
            qr_image=data.get("qrCode"),
        )


class CardRedirectRail(QrRedirectRail):
    rail = Rail.CARD_REDIRECT


class WalletQrRail(QrRedirectRail):
    """Mobile handoff: a link and a code the phone wallet opens."""

    rail = Rail.WALLET_QR

    def is_available(self, context):
        return context.variant == CheckoutVariant.CONSUMER and context.capabilities.google_pay


class CryptoRail(RailStrategy):
    rail = Rail.ON_CHAIN_CRYPTO

    def build_request(self, order_id, amounts, context):
        return {
            "amount": float(amounts.total_fiat),
            "currency": FIAT_CURRENCY,
            "orderId": order_id,
            "userId": context.user_id,
            "paymentType": PAYMENT_TYPE,
        }

    def create(self, request):
        return self.payment_client.create_crypto_payment(request)

    def to_result(self, order_id, request, data, now):
        if not data.get("success") or not data.get("hosted_url"):
            raise PaymentCreationError(data.get("message") or "Crypto payment is still pending, try again")
        return self._resource(
            order_id,
            data.get("paymentId") or data.get("charge_id"),
            now,
            url=data.get("hosted_url"),
            qr_image=data.get("qr_code_url"),
        )


class LedgerTransferRail(RailStrategy):
    rail = Rail.LEDGER_TRANSFER
    protocol = ConfirmationProtocol.SYNCHRONOUS

    def is_available(self, context):
        return True

    def check(self, amounts, context):
        if context.variant == CheckoutVariant.KIOSK and not context.payee_id:
            raise RailUnavailableError("This machine has no owner to pay")
        if context.balance < amounts.total_tokens:
            raise InsufficientBalanceError(amounts.total_tokens, context.balance)

    def build_request(self, order_id, amounts, context):
        return {
            "amount": float(amounts.total_tokens),
            "currency": LEDGER_CURRENCY,
            "fromUserId": context.user_id,
            "toUserId": context.payee_id or PLATFORM_ACCOUNT_ID,
            "orderId": order_id,
        }

    def create(self, request):
        return self.payment_client.transfer_tokens(request)

    def to_result(self, order_id, request, data, now):
        if not data.get("success"):
            raise PaymentCreationError(data.get("message") or "Token payment failed")
        result = TerminalResult(
            payment_id=str(data.get("paymentId") or ""),
            order_id=order_id,
            status="paid",
        )
        return DispatchResult(rail=self.rail, protocol=self.protocol, result=result)


class WalletPushRail(RailStrategy):
    """In-app wallet sheet; the sheet callback is the only confirmation."""

    rail = Rail.WALLET_PUSH
    protocol = ConfirmationProtocol.WALLET_CALLBACK

    def is_available(self, context):
        return context.variant == CheckoutVariant.CONSUMER and context.capabilities.apple_pay

    def build_request(self, order_id, amounts, context):
        return {
            "amount": to_minor_units(amounts.total_fiat),
            "currency": FIAT_CURRENCY.lower(),
            "orderId": order_id,
            "userId": context.user_id,
            "paymentMethod": self.payment_method,
        }

    def create(self, request):
        return self.payment_client.create_payment_intent(request)

    def to_result(self, order_id, request, data, now):
        secret = data.get("clientSecret") or data.get("client_secret")
        payment_id = data.get("paymentIntentId") or data.get("paymentId")
        if not secret or not payment_id:
            raise PaymentCreationError("Failed to create payment intent")
        sheet = WalletSheet(
            order_id=order_id,
            payment_id=str(payment_id),
            client_secret=secret,
            amount_minor=request["amount"],
            currency=request["currency"],
        )
        return DispatchResult(rail=self.rail, protocol=self.protocol, wallet_sheet=sheet)


class CashOnDeliveryRail(RailStrategy):
    rail = Rail.CASH_ON_DELIVERY
    protocol = ConfirmationProtocol.SYNCHRONOUS

    def build_request(self, order_id, amounts, context):
        return {"orderId": order_id, "userId": context.user_id}

    def create(self, request):
        # settled by the courier, nothing to create upfront
        return {"success": True}

    def to_result(self, order_id, request, data, now):
        result = TerminalResult(payment_id=None, order_id=order_id, status="pending")
        return DispatchResult(rail=self.rail, protocol=self.protocol, result=result)


RAIL_STRATEGIES = (
    QrRedirectRail,
    CardRedirectRail,
    LedgerTransferRail,
    CryptoRail,
    WalletPushRail,
    WalletQrRail,
    CashOnDeliveryRail,
)


def build_strategies(payment_client: PaymentClient) -> Dict[Rail, RailStrategy]:
    return {cls.rail: cls(payment_client) for cls in RAIL_STRATEGIES}


def available_rails(
    variant: CheckoutVariant,
    capabilities: WalletCapabilities | None = None,
    strategies: Dict[Rail, RailStrategy] | None = None,
) -> List[Rail]:
    """Rails to offer; a wallet rail whose capability check failed is hidden."""
    context = RailContext(user_id="", capabilities=capabilities or WalletCapabilities(), variant=variant)
    strategies = strategies or {cls.rail: cls(None) for cls in RAIL_STRATEGIES}
    return [rail for rail, strategy in strategies.items() if strategy.is_available(context)]
