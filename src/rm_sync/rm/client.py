"""Resource Management API client."""

import json
import logging
from datetime import date
from typing import Any

import httpx

from rm_sync.config import DEFAULT_API_BASE_URL
from rm_sync.rm.errors import (
    RMApiError,
    RMAuthError,
    RMNetworkError,
    RMNotFoundError,
    RMRateLimitError,
    RMValidationError,
)
from rm_sync.rm.models import RMProject, RMTimeEntry, RMTimeEntryInput, RMUser

logger = logging.getLogger(__name__)

PAGE_SIZE = 1000
MAX_PAGES = 10

_EMPTY_STATUSES = {204, 205, 304}


def _error_payload(response: httpx.Response) -> dict[str, Any]:
    try:
        data = response.json()
    except ValueError:
        return {}
    return data if isinstance(data, dict) else {}


def _parse_retry_after(value: str | None) -> float | None:
    if not value:
        return None
    try:
        return max(0.0, float(value))
    except ValueError:
        return None


def classify_response(response: httpx.Response, method: str) -> Any:
    """Turn a response into parsed JSON or a classified RM error.

    Args:
        response: Response returned by the transport.
        method: HTTP method of the request.

    Returns:
        Parsed JSON body, or None for bodiless successes.

    Raises:
        RMAuthError: On 401/403.
        RMRateLimitError: On 429.
        RMNotFoundError: On 404.
        RMValidationError: On 400/422.
        RMNetworkError: On 5xx, any other non-2xx, or an unparsable body.
    """
    status = response.status_code

    if status in (401, 403):
        data = _error_payload(response)
        raise RMAuthError(
            data.get("error") or data.get("message") or "Invalid API token",
            status_code=status,
        )

    if status == 429:
        retry_after = _parse_retry_after(response.headers.get("Retry-After"))
        suffix = f", retry after {retry_after:g}s" if retry_after is not None else ""
        raise RMRateLimitError(f"Rate limit exceeded{suffix}", retry_after=retry_after)

    if status == 404:
        raise RMNotFoundError("Resource not found", status_code=status)

    if status in (400, 422):
        data = _error_payload(response)
        field_errors = data.get("errors") or []
        details = ", ".join(
            f"{e.get('field')}: {e.get('message')}" for e in field_errors if isinstance(e, dict)
        )
        raise RMValidationError(
            data.get("error") or data.get("message") or details or "Validation error",
            status_code=status,
        )

    if status >= 500:
        raise RMNetworkError(
            f"RM API server error ({status}): {response.reason_phrase}",
            status_code=status,
        )

    if status in _EMPTY_STATUSES:
        return None

    if not response.is_success:
        data = _error_payload(response)
        raise RMNetworkError(
            data.get("error") or data.get("message") or f"HTTP error {status}",
            status_code=status,
        )

    if method.upper() == "HEAD":
        return None

    body = response.text
    if not body.strip():
        return None

    try:
        return json.loads(body)
    except ValueError as e:
        raise RMNetworkError(f"Failed to parse response JSON: {e}", status_code=status) from e


class RMClient:
    """Async client for the Resource Management API.

    Every response is classified before it reaches the caller; see
    classify_response for the status-code mapping.
    """

    def __init__(
        self,
        token: str | None,
        base_url: str = DEFAULT_API_BASE_URL,
        timeout: float = 30.0,
        page_size: int = PAGE_SIZE,
        max_pages: int = MAX_PAGES,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize RM client.

        Args:
            token: Decrypted RM API token. May be None, in which case every
                request fails with RMAuthError.
            base_url: API base URL.
            timeout: Request timeout in seconds.
            page_size: Page size for list endpoints.
            max_pages: Hard cap on pages fetched by list operations.
            transport: Optional transport (for testing).
        """
        self.token = token
        self.page_size = page_size
        self.max_pages = max_pages
        self.client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            headers={"Accept": "application/json", "Content-Type": "application/json"},
            timeout=timeout,
            transport=transport,
        )

    def _auth_headers(self) -> dict[str, str]:
        if not self.token:
            raise RMAuthError("No RM API token configured")
        # RM expects the raw token in a custom header, not "Authorization: Bearer".
        return {"auth": self.token}

    async def _request(
        self,
        method: str,
        endpoint: str,
        params: dict[str, Any] | None = None,
        payload: dict[str, Any] | None = None,
    ) -> Any:
        """Send a request and classify the outcome.

        Raises:
            RMApiError: Any classified failure, including transport errors.
        """
        headers = self._auth_headers()
        logger.debug(f"RM {method} {endpoint}")
        try:
            response = await self.client.request(
                method,
                endpoint,
                params=params,
                json=payload,
                headers=headers,
            )
        except httpx.TimeoutException as e:
            raise RMNetworkError(f"Request timed out: {e}") from e
        except httpx.HTTPError as e:
            raise RMNetworkError(f"Network error: {e}") from e

        return classify_response(response, method)

    @staticmethod
    def _data(body: Any) -> list[dict[str, Any]]:
        if not body:
            return []
        if not isinstance(body, dict) or not isinstance(body.get("data", []), list):
            raise RMNetworkError("Unexpected list response shape")
        return body.get("data") or []

    async def get_users(self, page: int = 1) -> list[RMUser]:
        """Get one page of users visible to the token.

        Args:
            page: 1-based page number.

        Returns:
            Users on that page.
        """
        body = await self._request("GET", "/users", params={"page": page})
        return [RMUser(**item) for item in self._data(body)]

    async def validate_token(self) -> RMUser:
        """Validate the token and return the user it belongs to.

        For personal API tokens the first listed user is the token owner.

        Returns:
            The authenticated user.

        Raises:
            RMAuthError: If the token is invalid or sees no users.
        """
        users = await self.get_users(page=1)
        if not users:
            raise RMAuthError("No users found - invalid token or insufficient permissions")
        return users[0]

    async def get_projects(self, page: int = 1) -> list[RMProject]:
        """Get one page of projects.

        Args:
            page: 1-based page number.

        Returns:
            Projects on that page, archived ones included.
        """
        body = await self._request(
            "GET", "/projects", params={"page": page, "per_page": self.page_size}
        )
        return [RMProject(**item) for item in self._data(body)]

    async def fetch_all_projects(self) -> list[RMProject]:
        """Fetch every active project, page by page.

        Stops on a short page. At most max_pages pages are fetched; hitting
        the cap is logged, not raised.

        Returns:
            Non-archived projects.

        Raises:
            RMRateLimitError: If rate limited while paginating.
            RMNetworkError: For any other failure while paginating.
        """
        projects: list[RMProject] = []
        page = 1
        while True:
            try:
                batch = await self.get_projects(page)
            except RMRateLimitError:
                raise
            except RMApiError as e:
                logger.error(f"Error fetching projects page {page}: {e}")
                raise RMNetworkError(f"Failed to fetch all projects: {e}") from e

            projects.extend(p for p in batch if not p.archived)

            if len(batch) < self.page_size:
                break
            if page >= self.max_pages:
                logger.warning(
                    f"Reached maximum page limit ({self.max_pages}), stopping pagination"
                )
                break
            page += 1

        logger.info(f"Fetched {len(projects)} active RM projects across {page} page(s)")
        return projects

    async def get_time_entries(
        self,
        start_date: date,
        end_date: date,
        page: int = 1,
    ) -> list[RMTimeEntry]:
        """Get one page of time entries in a date range.

        Args:
            start_date: First day (inclusive).
            end_date: Last day (inclusive).
            page: 1-based page number.

        Returns:
            Time entries on that page.
        """
        body = await self._request(
            "GET",
            "/time_entries",
            params={
                "from": start_date.isoformat(),
                "to": end_date.isoformat(),
                "page": page,
                "per_page": self.page_size,
            },
        )
        return [RMTimeEntry(**item) for item in self._data(body)]

    async def create_time_entry(self, user_id: int, entry: RMTimeEntryInput) -> RMTimeEntry:
        """Create a time entry for a user.

        Args:
            user_id: RM user id.
            entry: Entry payload.

        Returns:
            The created entry with its remote id.
        """
        body = await self._request(
            "POST", f"/users/{user_id}/time_entries", payload=entry.to_api_dict()
        )
        return self._entry(body)

    async def update_time_entry(
        self,
        user_id: int,
        entry_id: int,
        entry: RMTimeEntryInput,
    ) -> RMTimeEntry:
        """Replace the contents of an existing time entry.

        Args:
            user_id: RM user id.
            entry_id: Remote entry id.
            entry: New entry payload.

        Returns:
            The updated entry.

        Raises:
            RMNotFoundError: If the entry no longer exists remotely.
        """
        body = await self._request(
            "PUT",
            f"/users/{user_id}/time_entries/{entry_id}",
            payload=entry.to_api_dict(),
        )
        return self._entry(body)

    async def delete_time_entry(self, user_id: int, entry_id: int) -> None:
        """Delete a time entry."""
        await self._request("DELETE", f"/users/{user_id}/time_entries/{entry_id}")

    @staticmethod
    def _entry(body: Any) -> RMTimeEntry:
        if not isinstance(body, dict):
            raise RMNetworkError("Expected a time entry in the response body")
        try:
            return RMTimeEntry(**body)
        except ValueError as e:
            raise RMNetworkError(f"Malformed time entry in response: {e}") from e

    async def close(self) -> None:
        """Close the HTTP client."""
        await self.client.aclose()

    async def __aenter__(self) -> "RMClient":
        """Async context manager entry."""
        return self

    async def __aexit__(self, *args: Any) -> None:
        """Async context manager exit."""
        await self.close()
