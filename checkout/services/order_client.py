# checkout/services/order_client.py
from checkout.services.http_client import ServiceClient
from checkout.utils.settings import ORDER_SERVICE_URL


class OrderClient(ServiceClient):
    def __init__(self, base_url: str | None = None, **kwargs):
        super().__init__(base_url or ORDER_SERVICE_URL, **kwargs)

    def create_order(self, payload: dict) -> dict:
        return self._post("/orders", payload)

    def create_kiosk_order(self, payload: dict) -> dict:
        return self._post("/orders/kiosk", payload)
