from decimal import Decimal

import pytest

from checkout.domain.schemas import DiscountToken
from checkout.services.discount_service import DiscountSelector
from conftest import FakeRewardClient, item


def _token(token_id, pct, owner="user-1"):
    return DiscountToken(token_id=token_id, discount_percent=Decimal(pct), owner_id=owner)


@pytest.fixture()
def selector():
    s = DiscountSelector("user-1")
    s.set_owned([_token("t20", 20), _token("t50", 50)])
    return s


def test_toggle_selects_and_clears(selector):
    items = [item(fiat="100.00", tokens="100.00")]

    assert selector.toggle("t20").token_id == "t20"
    assert selector.amounts_for(items).total_fiat == Decimal("80")
    assert selector.amounts_for(items).total_tokens == Decimal("80")

    assert selector.toggle("t20") is None
    assert selector.amounts_for(items).total_fiat == Decimal("100.00")


def test_selecting_another_token_replaces(selector):
    selector.toggle("t20")
    selector.toggle("t50")

    assert selector.active.token_id == "t50"
    assert selector.percent == Decimal("50")


def test_unknown_token_rejected(selector):
    with pytest.raises(ValueError):
        selector.toggle("nope")


def test_token_of_another_user_rejected(selector):
    with pytest.raises(ValueError):
        selector.toggle(_token("t99", 10, owner="someone-else"))


def test_refresh_drops_selection_of_token_no_longer_owned():
    client = FakeRewardClient([{"id": "t20", "discount": 20}])
    selector = DiscountSelector("user-1", client)
    selector.refresh_owned()
    selector.toggle("t20")

    client.tokens = []
    selector.refresh_owned()

    assert selector.active is None
    assert selector.owned == []


def test_payload_spellings_and_clamping():
    a = DiscountToken.from_payload({"id": "a", "discount": 15}, owner_id="u")
    b = DiscountToken.from_payload({"tokenId": "b", "discountPercentage": "250"}, owner_id="u")
    c = DiscountToken.from_payload({"id": "c"}, owner_id="u")

    assert a.discount_percent == Decimal("15")
    assert b.discount_percent == Decimal("100")
    assert c.discount_percent == Decimal("0")
    assert b.owner_id == "u"
