# checkout/api/dependencies.py
from checkout.services.checkout_session import CheckoutServices
from checkout.services.lock_service import LockService
from checkout.services.order_client import OrderClient
from checkout.services.payment_channel import RedisPaymentChannel
from checkout.services.payment_client import PaymentClient
from checkout.services.session_registry import SessionRegistry
from checkout.services.wallet_client import BalanceClient, JobClient, RewardClient

_registry: SessionRegistry | None = None


def build_services() -> CheckoutServices:
    return CheckoutServices(
        order_client=OrderClient(),
        payment_client=PaymentClient(),
        lock_service=LockService(),
        channel=RedisPaymentChannel(),
        reward_client=RewardClient(),
        balance_client=BalanceClient(),
        job_client=JobClient(),
    )


def get_registry() -> SessionRegistry:
    global _registry
    if _registry is None:
        _registry = SessionRegistry(build_services())
    return _registry


def shutdown_registry() -> None:
    global _registry
    if _registry is not None:
        _registry.close_all()
        _registry.services.channel.close()
        _registry = None
