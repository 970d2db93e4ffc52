# checkout/services/wallet_client.py
from decimal import Decimal

from checkout.services.http_client import ServiceClient
from checkout.utils.retry import http_retry
from checkout.utils.settings import REWARD_SERVICE_URL, WALLET_SERVICE_URL, JOB_SERVICE_URL


class BalanceClient(ServiceClient):
    def __init__(self, base_url: str | None = None, **kwargs):
        super().__init__(base_url or WALLET_SERVICE_URL, **kwargs)

    @http_retry()
    def fetch_balance(self, user_id: str) -> Decimal:
        data = self._get(f"/wallet/{user_id}/balance")
        return Decimal(str(data.get("balance", 0)))


class RewardClient(ServiceClient):
    """Discount tokens owned by a user and their transfer on settlement."""

    def __init__(self, base_url: str | None = None, **kwargs):
        super().__init__(base_url or REWARD_SERVICE_URL, **kwargs)

    @http_retry()
    def fetch_user_tokens(self, user_id: str) -> list[dict]:
        data = self._get(f"/users/{user_id}/discount-tokens")
        if isinstance(data, dict):
            return list(data.get("items") or data.get("data") or [])
        return list(data or [])

    def transfer_for_discount(self, token_id: str, user_id: str, order_id: str) -> dict:
        return self._post(
            "/rewardDistribute",
            {
                "type": "discount_token",
                "tokenId": token_id,
                "userId": user_id,
                "orderId": order_id,
                "action": "transfer_for_discount",
            },
        )


class JobClient(ServiceClient):
    def __init__(self, base_url: str | None = None, **kwargs):
        super().__init__(base_url or JOB_SERVICE_URL, **kwargs)

    @http_retry()
    def fetch_status(self, job_id: str) -> str:
        data = self._get(f"/jobs/{job_id}")
        return str(data.get("status") or "")
