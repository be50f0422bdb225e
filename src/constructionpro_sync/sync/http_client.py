"""Base HTTP client with retry logic for the ConstructionPro API."""

import logging
from typing import Optional

import requests

from .. import __version__
from .retry import RetryConfig, retry_with_backoff, RetryExhausted

__all__ = [
    "BaseApiClient",
    "ApiClientError",
    "ApiNetworkError",
    "ApiHttpError",
    "ApiAuthError",
    "ApiServerError",
    "is_retryable_error",
]

logger = logging.getLogger(__name__)


class ApiClientError(Exception):
    """ConstructionPro API client error."""

    pass


class ApiNetworkError(ApiClientError):
    """The request never got an HTTP response (connection failure, timeout)."""

    pass


class ApiHttpError(ApiClientError):
    """The server answered with a non-success status code."""

    def __init__(self, status_code: int, message: str = ""):
        self.status_code = status_code
        self.message = message
        super().__init__(f"API error ({status_code}): {message}" if message else f"API error ({status_code})")

    @property
    def is_not_found(self) -> bool:
        return self.status_code == 404


class ApiAuthError(ApiHttpError):
    """Authentication error (401/403)."""

    pass


class ApiServerError(ApiHttpError):
    """Server-side failure (5xx)."""

    pass


class BaseApiClient:
    """Base HTTP client with retry logic.

    Handles:
    - Session management
    - Authentication headers
    - Retry with exponential backoff for idempotent reads
    - Error classification (network vs. HTTP status)

    Single Responsibility: HTTP communication only.
    """

    DEFAULT_RETRY_CONFIG = RetryConfig(
        max_retries=2,
        base_delay=1.0,
        max_delay=10.0,
        exponential_base=2.0,
        jitter=True,
    )

    USER_AGENT = f"ConstructionPro-Sync/{__version__}"

    def __init__(
        self,
        api_url: str,
        token: Optional[str] = None,
        timeout: int = 30,
        retry_config: Optional[RetryConfig] = None,
        session: Optional[requests.Session] = None,
    ):
        """Initialize base API client.

        Args:
            api_url: ConstructionPro API base URL
            token: Bearer token for authentication
            timeout: Request timeout in seconds
            retry_config: Configuration for retry with exponential backoff
            session: Optional requests session (for dependency injection/testing)
        """
        self.api_url = api_url.rstrip("/")
        self.token = token
        self.timeout = timeout
        self.retry_config = retry_config or self.DEFAULT_RETRY_CONFIG
        self._session = session or requests.Session()
        self._owns_session = session is None  # Track if we created the session

    def _get_headers(self) -> dict:
        """Get request headers with authentication."""
        headers = {
            "Accept": "application/json",
            "User-Agent": self.USER_AGENT,
        }
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    def _request(
        self,
        method: str,
        endpoint: str,
        data: Optional[dict] = None,
        params: Optional[dict] = None,
        retry: bool = True,
        form: Optional[dict] = None,
        files: Optional[dict] = None,
    ) -> dict:
        """Make request to the ConstructionPro API.

        Args:
            method: HTTP method
            endpoint: API endpoint (relative to api_url)
            data: JSON request body
            params: Query parameters (None values are dropped)
            retry: Whether to retry on network errors and 5xx responses
            form: Multipart text fields, sent with ``files``
            files: Multipart file parts, as accepted by ``requests``

        Returns:
            Response data as dict

        Raises:
            ApiNetworkError: Connection failure or timeout
            ApiAuthError: For 401/403 responses (not retried)
            ApiServerError: For 5xx responses
            ApiHttpError: For other error responses
        """
        url = f"{self.api_url}/{endpoint.lstrip('/')}"
        kwargs: dict = {"timeout": self.timeout, "headers": self._get_headers()}
        if data is not None:
            kwargs["json"] = data
        if params:
            kwargs["params"] = {k: v for k, v in params.items() if v is not None}
        if form:
            kwargs["data"] = form
        if files:
            kwargs["files"] = files

        def do_request() -> dict:
            try:
                response = self._session.request(method, url, **kwargs)
            except requests.exceptions.ConnectionError as e:
                raise ApiNetworkError("Cannot connect to ConstructionPro API") from e
            except requests.exceptions.Timeout as e:
                raise ApiNetworkError("Request timed out") from e

            status = response.status_code
            if status == 401:
                raise ApiAuthError(status, "Invalid or expired API token")
            if status == 403:
                raise ApiAuthError(status, "Not authorized")
            if status >= 500:
                raise ApiServerError(status, _error_detail(response) or "Server error")
            if status >= 400:
                raise ApiHttpError(status, _error_detail(response))

            if not response.content:
                return {}
            try:
                return response.json()
            except ValueError as e:
                raise ApiClientError(f"Invalid JSON response from {endpoint}") from e

        if not retry:
            return do_request()

        try:
            return retry_with_backoff(
                do_request,
                config=self.retry_config,
                retryable_exceptions=(ApiNetworkError, ApiServerError),
                description=f"{method} {endpoint}",
            )
        except RetryExhausted as e:
            # Surface the last categorized error so callers can classify it
            if e.last_error:
                raise e.last_error
            raise ApiNetworkError("Request failed after retries") from e

    def set_token(self, token: Optional[str]) -> None:
        """Set (or clear) the bearer token."""
        self.token = token

    def is_reachable(self) -> bool:
        """Check if the ConstructionPro API is reachable."""
        try:
            self._request("GET", "health", retry=False)
            return True
        except ApiNetworkError:
            return False
        except ApiHttpError as e:
            # Any HTTP answer other than a gateway failure means the host is up
            return e.status_code < 500

    def close(self) -> None:
        """Close the session if we own it."""
        if self._owns_session and self._session is not None:
            self._session.close()
            self._session = None

    def __enter__(self) -> "BaseApiClient":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()


def _error_detail(response: requests.Response) -> str:
    """Extract the server's error message from a JSON body, if any."""
    try:
        body = response.json()
    except ValueError:
        return ""
    if isinstance(body, dict):
        return str(body.get("error") or body.get("message") or "")
    return ""


def is_retryable_error(error: Exception) -> bool:
    """Whether a failed outbox or upload attempt may succeed later.

    Network errors and 5xx responses are retryable; other HTTP statuses and
    programming errors are not.
    """
    if isinstance(error, ApiNetworkError):
        return True
    if isinstance(error, ApiHttpError):
        return error.status_code >= 500
    if isinstance(error, (requests.exceptions.ConnectionError, requests.exceptions.Timeout)):
        return True
    # Raw socket/IO failures from the transport
    return isinstance(error, OSError)
