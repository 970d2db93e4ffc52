# checkout/domain/schemas.py
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from enum import Enum
from typing import Any, List

from pydantic import BaseModel, ConfigDict, Field

from checkout.utils.settings import DISPLAY_QUANT, KIOSK_SELLER, PAYMENT_TYPE


class Rail(str, Enum):
    QR_REDIRECT = "qr_redirect"
    CARD_REDIRECT = "card_redirect"
    LEDGER_TRANSFER = "ledger_transfer"
    ON_CHAIN_CRYPTO = "on_chain_crypto"
    WALLET_PUSH = "wallet_push"
    WALLET_QR = "wallet_qr"
    CASH_ON_DELIVERY = "cash_on_delivery"


class Partition(str, Enum):
    PHYSICAL = "physical"
    DIGITAL = "digital"


class CheckoutVariant(str, Enum):
    CONSUMER = "consumer"
    KIOSK = "kiosk"


class CurrencyUnit(str, Enum):
    FIAT = "fiat"
    LEDGER = "ledger"


class CheckoutState(str, Enum):
    IDLE = "idle"
    ORDER_CREATED = "order_created"
    RESOURCE_ISSUED = "resource_issued"
    CONFIRMED = "confirmed"
    FAILED = "failed"


class OrderStatus:
    PENDING = "PENDING"
    SETTLED = "SETTLED"
    FAILED = "FAILED"
    ABANDONED = "ABANDONED"


class PaymentStatus:
    PENDING = "PENDING"
    PAID = "PAID"
    FAILED = "FAILED"
    EXPIRED = "EXPIRED"


class LineItem(BaseModel):
    """Immutable cart line captured at submit time."""

    model_config = ConfigDict(frozen=True)

    product_id: str
    variant_id: str = "0"
    quantity: int = Field(..., gt=0)
    unit_fiat_price: Decimal = Decimal("0")
    unit_token_price: Decimal = Decimal("0")
    is_digital: bool = False
    sold_by: str | None = None
    seller_id: str | None = None
    title: str | None = None

    @property
    def requires_shipping(self) -> bool:
        return not self.is_digital and self.sold_by != KIOSK_SELLER


class DiscountToken(BaseModel):
    model_config = ConfigDict(frozen=True)

    token_id: str
    discount_percent: Decimal = Field(..., ge=0, le=100)
    owner_id: str
    name: str | None = None

    @classmethod
    def from_payload(cls, data: dict[str, Any], owner_id: str) -> "DiscountToken":
        # the reward service has shipped both spellings
        raw = data.get("discount")
        if raw is None:
            raw = data.get("discountPercentage")
        percent = Decimal(str(raw or 0))
        percent = min(max(percent, Decimal("0")), Decimal("100"))
        return cls(
            token_id=str(data.get("id") or data.get("tokenId")),
            discount_percent=percent,
            owner_id=str(data.get("ownerId") or owner_id),
            name=data.get("name") or data.get("nftName"),
        )


class Amounts(BaseModel):
    model_config = ConfigDict(frozen=True)

    subtotal_fiat: Decimal
    subtotal_tokens: Decimal
    discount_percent: Decimal
    discount_fiat: Decimal
    discount_tokens: Decimal
    total_fiat: Decimal
    total_tokens: Decimal

    def total_for(self, unit: CurrencyUnit) -> Decimal:
        return self.total_tokens if unit == CurrencyUnit.LEDGER else self.total_fiat

    def discount_for(self, unit: CurrencyUnit) -> Decimal:
        return self.discount_tokens if unit == CurrencyUnit.LEDGER else self.discount_fiat

    def display(self) -> dict[str, Decimal]:
        return {
            name: value.quantize(DISPLAY_QUANT, rounding=ROUND_HALF_UP)
            for name, value in self.model_dump().items()
        }


class PaymentResource(BaseModel):
    payment_id: str
    order_id: str
    rail: Rail
    url: str | None = None
    qr_image: str | None = None
    client_secret: str | None = None
    status: str = PaymentStatus.PENDING
    created_at: datetime | None = None
    expires_at: datetime | None = None


class WalletSheet(BaseModel):
    """What the client needs to present a wallet payment sheet."""

    order_id: str
    payment_id: str
    client_secret: str | None = None
    amount_minor: int
    currency: str
    label: str = "Order Total"


class TerminalResult(BaseModel):
    payment_id: str | None = None
    order_id: str | None = None
    status: str
    order_type: str = PAYMENT_TYPE


class Notification(BaseModel):
    level: str
    title: str
    message: str


class PaymentEvent(BaseModel):
    """Status update pushed by the payment service to a payment room."""

    model_config = ConfigDict(populate_by_name=True)

    payment_id: str = Field(..., alias="paymentId")
    user_id: str = Field(..., alias="userId")
    status: str
    for_payment: str = Field(PAYMENT_TYPE, alias="forpayment")


class WalletCapabilities(BaseModel):
    apple_pay: bool = False
    google_pay: bool = False


# API schemas


class LineItemIn(BaseModel):
    product_id: str
    variant_id: str = "0"
    quantity: int = Field(..., gt=0, description="Quantity (must be > 0)")
    price: Decimal = Field(Decimal("0"), ge=0)
    token_price: Decimal = Field(Decimal("0"), ge=0)
    is_digital: bool = False
    sold_by: str | None = None
    seller_id: str | None = None
    title: str | None = None

    def to_line_item(self) -> LineItem:
        return LineItem(
            product_id=self.product_id,
            variant_id=self.variant_id,
            quantity=self.quantity,
            unit_fiat_price=self.price,
            unit_token_price=self.token_price,
            is_digital=self.is_digital,
            sold_by=self.sold_by,
            seller_id=self.seller_id,
            title=self.title,
        )


class SessionIn(BaseModel):
    variant: CheckoutVariant = CheckoutVariant.CONSUMER
    capabilities: WalletCapabilities = WalletCapabilities()
    machine_id: str | None = None
    machine_owner_id: str | None = None


class CartIn(BaseModel):
    items: List[LineItemIn]
    session: SessionIn | None = None


class SubmitIn(BaseModel):
    rail: Rail
    partition: Partition = Partition.PHYSICAL
    address_id: str | None = None


class WalletResultIn(BaseModel):
    payment_id: str
    succeeded: bool


class JobIn(BaseModel):
    job_id: str
    status: str


class SummaryOut(BaseModel):
    state: CheckoutState
    partition: Partition
    amounts: dict[str, Decimal]
    active_discount: DiscountToken | None = None
    discounts: List[DiscountToken] = []
    rails: List[Rail]
    balance: Decimal
    order_id: str | None = None
    resource: PaymentResource | None = None
    wallet_sheet: WalletSheet | None = None
    result: TerminalResult | None = None
    cooldown_seconds: int = 0
    jobs: dict[str, str] = {}
    notifications: List[Notification] = []


class SubmitOut(BaseModel):
    ok: bool
    state: CheckoutState
    order_id: str | None = None
    resource: PaymentResource | None = None
    wallet_sheet: WalletSheet | None = None
    result: TerminalResult | None = None
    error: str | None = None
    notifications: List[Notification] = []
