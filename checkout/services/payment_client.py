# checkout/services/payment_client.py
from checkout.services.http_client import ServiceClient
from checkout.utils.retry import http_retry
from checkout.utils.settings import PAYMENT_SERVICE_URL


class PaymentClient(ServiceClient):
    """Payment service: processor resources, ledger transfers, status lookups."""

    def __init__(self, base_url: str | None = None, **kwargs):
        super().__init__(base_url or PAYMENT_SERVICE_URL, **kwargs)

    def create_product_payment(self, payload: dict) -> dict:
        # {url, qrCode, paymentId, status}
        return self._post("/createPaymentForToken", payload)

    def create_crypto_payment(self, payload: dict) -> dict:
        # {success, hosted_url, qr_code_url, paymentId | charge_id}
        return self._post("/createCoinbasePayment", payload)

    def create_payment_intent(self, payload: dict) -> dict:
        # {clientSecret | client_secret, paymentIntentId}
        return self._post("/create-payment-intent", payload)

    def transfer_tokens(self, payload: dict) -> dict:
        # {success, paymentId, message}
        return self._post("/transferToken", payload)

    @http_retry()
    def get_payment_status(self, payment_id: str) -> dict:
        return self._get(f"/payments/{payment_id}/status")
