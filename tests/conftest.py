import json
import os

#never touch a real database file from tests
os.environ.setdefault("DATABASE_URL", "sqlite://")

from decimal import Decimal
from typing import Any, Dict, List

import pytest
import requests
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import checkout.data.models  # noqa: F401
from checkout.data.database import Base
from checkout.domain.schemas import LineItem, WalletCapabilities
from checkout.services.checkout_session import CheckoutServices, CheckoutSession
from checkout.services.lock_service import LocalLockService
from checkout.services.payment_channel import LocalPaymentChannel


def http_error(status: int, body: Dict[str, Any] | None = None) -> requests.HTTPError:
    resp = requests.Response()
    resp.status_code = status
    resp._content = json.dumps(body).encode() if body else b""
    return requests.HTTPError(f"{status} error", response=resp)


def item(product_id="p1", quantity=1, fiat="10.00", tokens="10.00", digital=False, variant_id="0", sold_by=None):
    return LineItem(
        product_id=product_id,
        variant_id=variant_id,
        quantity=quantity,
        unit_fiat_price=Decimal(fiat),
        unit_token_price=Decimal(tokens),
        is_digital=digital,
        sold_by=sold_by,
    )


class FakeClock:
    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeOrderClient:
    def __init__(self):
        self.calls: List[dict] = []
        self.kiosk_calls: List[dict] = []
        self.error: Exception | None = None

    def _next(self, payload):
        if self.error is not None:
            raise self.error
        return {"orderId": f"ord-{len(self.calls) + len(self.kiosk_calls)}"}

    def create_order(self, payload):
        self.calls.append(payload)
        return self._next(payload)

    def create_kiosk_order(self, payload):
        self.kiosk_calls.append(payload)
        return self._next(payload)


class FakePaymentClient:
    def __init__(self):
        self.product_calls: List[dict] = []
        self.crypto_calls: List[dict] = []
        self.intent_calls: List[dict] = []
        self.transfer_calls: List[dict] = []
        self.status_calls: List[str] = []
        self.statuses: Dict[str, str] = {}
        self.error: Exception | None = None
        self.transfer_response = {"success": True, "paymentId": "tx-1", "message": "Transfer complete"}

    def _check(self):
        if self.error is not None:
            raise self.error

    def create_product_payment(self, payload):
        self._check()
        self.product_calls.append(payload)
        n = len(self.product_calls)
        return {
            "paymentId": f"pay-{n}",
            "url": f"https://pay.test/session/{n}",
            "qrCode": "data:image/png;base64,iVBORw0KGgo=",
            "status": "pending",
        }

    def create_crypto_payment(self, payload):
        self._check()
        self.crypto_calls.append(payload)
        n = len(self.crypto_calls)
        return {
            "success": True,
            "hosted_url": f"https://commerce.test/charge/ch-{n}",
            "qr_code_url": "data:image/png;base64,AAAA",
            "charge_id": f"ch-{n}",
        }

    def create_payment_intent(self, payload):
        self._check()
        self.intent_calls.append(payload)
        return {"clientSecret": "pi_1_secret", "paymentIntentId": "pi-1"}

    def transfer_tokens(self, payload):
        self._check()
        self.transfer_calls.append(payload)
        return dict(self.transfer_response)

    def get_payment_status(self, payment_id):
        self.status_calls.append(payment_id)
        status = self.statuses.get(payment_id, "pending")
        if isinstance(status, Exception):
            raise status
        return {"paymentId": payment_id, "status": status}


class FakeRewardClient:
    def __init__(self, tokens: List[dict] | None = None):
        self.tokens = list(tokens or [])
        self.transfers: List[tuple] = []
        self.error: Exception | None = None

    def fetch_user_tokens(self, user_id):
        return [dict(t) for t in self.tokens]

    def transfer_for_discount(self, token_id, user_id, order_id):
        if self.error is not None:
            raise self.error
        self.transfers.append((token_id, user_id, order_id))
        self.tokens = [t for t in self.tokens if t["id"] != token_id]
        return {"success": True}


class FakeBalanceClient:
    """Returns the queued balances in order, repeating the last one."""

    def __init__(self, *values):
        self.values = [Decimal(str(v)) for v in values] or [Decimal("0")]
        self.calls = 0
        self.error: Exception | None = None

    def fetch_balance(self, user_id):
        if self.error is not None:
            raise self.error
        value = self.values[min(self.calls, len(self.values) - 1)]
        self.calls += 1
        return value


class FakeJobClient:
    def __init__(self, *statuses):
        self.statuses = list(statuses)
        self.calls: List[str] = []

    def fetch_status(self, job_id):
        self.calls.append(job_id)
        index = min(len(self.calls), len(self.statuses)) - 1
        return self.statuses[index]


@pytest.fixture()
def session_factory():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield sessionmaker(bind=engine, autocommit=False, autoflush=False, expire_on_commit=False)
    engine.dispose()


@pytest.fixture()
def clock():
    return FakeClock()


@pytest.fixture()
def lock_service(clock):
    return LocalLockService(clock=clock)


@pytest.fixture()
def channel():
    return LocalPaymentChannel()


@pytest.fixture()
def order_client():
    return FakeOrderClient()


@pytest.fixture()
def payment_client():
    return FakePaymentClient()


@pytest.fixture()
def reward_client():
    return FakeRewardClient([{"id": "nft-20", "discount": 20, "name": "Gold Pass"}])


@pytest.fixture()
def balance_client():
    return FakeBalanceClient(50)


@pytest.fixture()
def job_client():
    return FakeJobClient("processing", "completed")


@pytest.fixture()
def services(order_client, payment_client, lock_service, channel, reward_client, balance_client, job_client, session_factory):
    return CheckoutServices(
        order_client=order_client,
        payment_client=payment_client,
        lock_service=lock_service,
        channel=channel,
        reward_client=reward_client,
        balance_client=balance_client,
        job_client=job_client,
        session_factory=session_factory,
        poll_interval=0.01,
    )


@pytest.fixture()
def session(services):
    s = CheckoutSession(
        "user-1",
        services,
        capabilities=WalletCapabilities(apple_pay=True, google_pay=True),
    )
    s.start()
    yield s
    s.close()
