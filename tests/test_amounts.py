from decimal import Decimal

import pytest

from checkout.domain.schemas import CurrencyUnit, Partition
from checkout.services.amounts import compute_amounts, filter_partition, to_minor_units
from conftest import item


def test_no_discount_totals_match_subtotals():
    amounts = compute_amounts([item(quantity=2, fiat="10.00", tokens="12.50"), item("p2", fiat="5.25", tokens="5")])

    assert amounts.subtotal_fiat == Decimal("25.25")
    assert amounts.subtotal_tokens == Decimal("30.00")
    assert amounts.total_fiat == amounts.subtotal_fiat
    assert amounts.total_tokens == amounts.subtotal_tokens
    assert amounts.discount_fiat == 0


def test_twenty_percent_on_one_hundred():
    amounts = compute_amounts([item(fiat="100.00", tokens="100.00")], Decimal("20"))

    assert amounts.total_fiat == Decimal("80")
    assert amounts.total_tokens == Decimal("80")
    assert amounts.total_for(CurrencyUnit.LEDGER) == Decimal("80")
    assert amounts.discount_for(CurrencyUnit.FIAT) == Decimal("20")


@pytest.mark.parametrize(
    "fiat,tokens,pct",
    [("100.00", "250", "20"), ("19.99", "7.5", "15"), ("0.03", "1000", "33.3"), ("42.50", "42.50", "100")],
)
def test_discount_is_the_same_share_of_both_units(fiat, tokens, pct):
    amounts = compute_amounts([item(fiat=fiat, tokens=tokens)], Decimal(pct))

    expected = Decimal(pct) / 100
    assert amounts.discount_fiat / amounts.subtotal_fiat == expected
    assert amounts.discount_tokens / amounts.subtotal_tokens == expected


def test_full_precision_kept_until_display():
    amounts = compute_amounts([item(fiat="10.01", tokens="10.01")], Decimal("15"))

    # 10.01 * 0.85 = 8.5085
    assert amounts.total_fiat == Decimal("8.5085")
    assert amounts.display()["total_fiat"] == Decimal("8.51")
    assert amounts.display()["discount_fiat"] == Decimal("1.50")


def test_recomputed_from_current_inputs():
    items = [item(fiat="10.00")]
    first = compute_amounts(items)
    items.append(item("p2", fiat="5.00"))

    assert compute_amounts(items).total_fiat == first.total_fiat + Decimal("5.00")


def test_minor_units_round_half_up():
    assert to_minor_units(Decimal("42.50")) == 4250
    assert to_minor_units(Decimal("8.5085")) == 851
    assert to_minor_units(Decimal("0.005")) == 1


def test_filter_partition():
    items = [item("shirt"), item("ebook", digital=True)]

    assert [i.product_id for i in filter_partition(items, Partition.PHYSICAL)] == ["shirt"]
    assert [i.product_id for i in filter_partition(items, Partition.DIGITAL)] == ["ebook"]
