# checkout/utils/retry.py
from tenacity import retry, stop_after_attempt, wait_exponential, retry_if_exception_type
import requests
import redis

#transport errors only, a 4xx/5xx answer from the service is never retried
_TRANSIENT_HTTP = (requests.ConnectionError, requests.Timeout)


def http_retry():
    """Retry for idempotent reads only; creating calls are never replayed."""
    return retry(
        reraise=True,
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=0.3, min=0.3, max=3),
        retry=retry_if_exception_type(_TRANSIENT_HTTP),
    )


def redis_retry():
    return retry(
        reraise=True,
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=0.2, min=0.2, max=2),
        retry=retry_if_exception_type(redis.RedisError),
    )
