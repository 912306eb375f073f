"""Error taxonomy for Remote Store calls and the cache client.

Tier 1 leaf — stdlib only. The HTTP client raises these, the retry policy
classifies them, callers catch them.

    RemoteStoreError
    ├── NetworkError       request never completed
    └── ApiRequestError    server answered with a non-2xx status
    OfflineError           the client is offline; no attempt was made
"""


class RemoteStoreError(Exception):
    """Base for every failure talking to the Remote Store."""


class NetworkError(RemoteStoreError):
    """Transport failure — connect error, timeout, reset connection."""


class ApiRequestError(RemoteStoreError):
    """The Remote Store rejected a request.

    str(exc) is "<status>: <body-text>", the same shape callers match
    against when deciding how to message the failure.

    Args:
        status_code: HTTP status code of the response.
        body: Response body text, or the reason phrase when the body is empty.
    """

    def __init__(self, status_code: int, body: str) -> None:
        super().__init__(f"{status_code}: {body}")
        self.status_code = status_code
        self.body = body


class OfflineError(Exception):
    """Raised instead of attempting a fetch or mutation while offline."""
