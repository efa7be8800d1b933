"""Shared ``requests`` session factory for the REST collaborators."""

from typing import Iterable

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

# Maximum number of transport-level retries for 429/5xx responses
MAX_RETRIES = 3

# Base delay for exponential backoff (in seconds)
BASE_RETRY_DELAY = 1.0

RETRY_STATUS_CODES = (429, 500, 502, 503, 504)

# POST creates campaigns, leads and websets; a replay after an ambiguous 5xx
# could register the same thing twice, so those are left to the job retry
IDEMPOTENT_METHODS = ("HEAD", "GET", "PUT", "DELETE", "OPTIONS")


def build_session(
    max_retries: int = MAX_RETRIES,
    backoff_factor: float = BASE_RETRY_DELAY,
    allowed_methods: Iterable[str] = IDEMPOTENT_METHODS,
) -> requests.Session:
    """Create a requests session that retries transient errors.

    Args:
        max_retries: Total retry budget per request.
        backoff_factor: Exponential backoff base, in seconds.
        allowed_methods: HTTP methods eligible for retry.

    Returns:
        Configured requests.Session instance
    """
    session = requests.Session()
    retry_strategy = Retry(
        total=max_retries,
        backoff_factor=backoff_factor,
        status_forcelist=list(RETRY_STATUS_CODES),
        allowed_methods=list(allowed_methods),
        respect_retry_after_header=True,
        raise_on_status=False,
    )
    adapter = HTTPAdapter(max_retries=retry_strategy)
    session.mount("https://", adapter)
    session.mount("http://", adapter)
    return session
