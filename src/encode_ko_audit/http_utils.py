"""HTTP session for talking to the ENCODE portal.

Metadata requests and ``@@download`` redirects to the portal's storage both
go through one session, so retries and the User-Agent are set in one place.
"""

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from encode_ko_audit import __version__

USER_AGENT = f"encode-ko-audit/{__version__}"

# The portal throttles bursts with 429 and occasionally answers 5xx
# while files are being staged.
RETRY_STATUSES = (429, 500, 502, 503, 504)
MAX_RETRIES = 3
BACKOFF_FACTOR = 0.5


def create_session(
    max_retries: int = MAX_RETRIES,
    backoff_factor: float = BACKOFF_FACTOR,
    status_forcelist: tuple = RETRY_STATUSES,
    user_agent: str = USER_AGENT,
) -> requests.Session:
    """
    Build the session used for portal downloads.

    Only GET is retried. When retries run out the last response is returned
    rather than raised, so callers see the portal's status through
    ``raise_for_status()``.
    """
    retries = Retry(
        total=max_retries,
        backoff_factor=backoff_factor,
        status_forcelist=status_forcelist,
        allowed_methods=frozenset(["GET"]),
        respect_retry_after_header=True,
        raise_on_status=False,
    )
    adapter = HTTPAdapter(max_retries=retries)

    session = requests.Session()
    for prefix in ("https://", "http://"):
        session.mount(prefix, adapter)
    session.headers["User-Agent"] = user_agent
    return session
