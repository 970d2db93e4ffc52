# checkout/services/http_client.py
import requests

from checkout.utils.settings import HTTP_TIMEOUT_SECONDS
from checkout.utils.logging import get_logger

logger = get_logger(__name__)


def error_message(exc: Exception, default: str) -> str:
    """Human readable reason from a failed upstream call."""
    response = getattr(exc, "response", None)
    if response is not None:
        try:
            body = response.json()
        except ValueError:
            body = None
        if isinstance(body, dict):
            reason = body.get("error") or body.get("message")
            if reason:
                return str(reason)
    return default


class ServiceClient:
    def __init__(self, base_url: str, timeout: float | None = None, session: requests.Session | None = None):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout or HTTP_TIMEOUT_SECONDS
        self.http = session or requests.Session()

    def _url(self, path: str) -> str:
        return f"{self.base_url}/{path.lstrip('/')}"

    def _get(self, path: str, params: dict | None = None) -> dict:
        url = self._url(path)
        logger.info(f"{type(self).__name__} GET {url}")
        resp = self.http.get(url, params=params, timeout=self.timeout)
        resp.raise_for_status()
        return resp.json()

    def _post(self, path: str, payload: dict) -> dict:
        url = self._url(path)
        logger.info(f"{type(self).__name__} POST {url}")
        resp = self.http.post(url, json=payload, timeout=self.timeout)
        resp.raise_for_status()
        return resp.json()
