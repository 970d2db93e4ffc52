# checkout/services/amounts.py
"""
Pure amount computation.

Totals are kept at full precision for submission; rounding to two decimals
happens only through ``Amounts.display()``. Nothing here is cached, every
caller re-derives amounts from the current line items and discount.
"""
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable, List

from checkout.domain.schemas import Amounts, LineItem, Partition

_HUNDRED = Decimal("100")
_ZERO = Decimal("0")


def filter_partition(items: Iterable[LineItem], partition: Partition) -> List[LineItem]:
    if partition == Partition.DIGITAL:
        return [i for i in items if i.is_digital]
    return [i for i in items if not i.is_digital]


def compute_amounts(items: Iterable[LineItem], discount_percent: Decimal = _ZERO) -> Amounts:
    items = list(items)
    pct = Decimal(discount_percent or 0)

    subtotal_fiat = sum((i.unit_fiat_price * i.quantity for i in items), _ZERO)
    subtotal_tokens = sum((i.unit_token_price * i.quantity for i in items), _ZERO)

    #the same percent applies to both units
    discount_fiat = subtotal_fiat * pct / _HUNDRED
    discount_tokens = subtotal_tokens * pct / _HUNDRED

    return Amounts(
        subtotal_fiat=subtotal_fiat,
        subtotal_tokens=subtotal_tokens,
        discount_percent=pct,
        discount_fiat=discount_fiat,
        discount_tokens=discount_tokens,
        total_fiat=subtotal_fiat - discount_fiat,
        total_tokens=subtotal_tokens - discount_tokens,
    )


def to_minor_units(amount: Decimal) -> int:
    """Fiat amount in cents, as processors expect it."""
    return int((amount * _HUNDRED).quantize(Decimal("1"), rounding=ROUND_HALF_UP))
