"""
HTTP client for the Sarana Care API.

Wraps one ``httpx.AsyncClient`` per signed-in user. ``fetch_complaints``
makes the client a ``ComplaintSource`` for the notification reconciler.
"""

import logging
from typing import Any
from uuid import UUID

import httpx
from pydantic import TypeAdapter, ValidationError

from ..core.config import get_settings
from ..models import ComplaintStatus
from ..schemas import CategoryRef, ComplaintOut, ComplaintPage, ProfileOut
from ..services.reconciler import ComplaintSourceError


logger = logging.getLogger(__name__)

_complaint_list = TypeAdapter(list[ComplaintOut])
_category_list = TypeAdapter(list[CategoryRef])


class SaranaClientError(Exception):
    """A request to the API failed."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class TransitionError(SaranaClientError):
    """A status change was rejected or its outcome is unknown.

    Never retried automatically; a retry could append a second progress
    entry.
    """
    pass


class SaranaClient:
    """Async API client authenticated with a bearer token."""

    def __init__(
        self,
        token: str,
        base_url: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        settings = get_settings()
        base = (base_url or settings.server_url).rstrip("/")
        self._client = httpx.AsyncClient(
            base_url=f"{base}{settings.api_prefix}",
            headers={"Authorization": f"Bearer {token}"},
            timeout=timeout or settings.client_timeout_seconds,
            transport=transport,
        )

    async def __aenter__(self) -> "SaranaClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    async def close(self) -> None:
        await self._client.aclose()

    # =========================================================================
    # COMPLAINTS
    # =========================================================================

    async def fetch_complaints(
        self,
        page: ComplaintPage = ComplaintPage.HISTORY,
        status: ComplaintStatus | None = None,
        query: str | None = None,
    ) -> list[ComplaintOut]:
        """Complaint list, newest first. Raises ``ComplaintSourceError``.

        Defaults to the unfiltered history list, which is what notifications
        are derived from.
        """
        params: dict[str, Any] = {"page": page.value}
        if status is not None:
            params["status"] = ComplaintStatus(status).value
        if query:
            params["q"] = query

        try:
            response = await self._client.get("/complaints", params=params)
        except httpx.HTTPError as e:
            raise ComplaintSourceError(f"Complaint fetch failed: {e}") from e

        if response.status_code != 200:
            raise ComplaintSourceError(
                f"Complaint fetch failed: {response.status_code} - {response.text[:200]}"
            )

        try:
            return _complaint_list.validate_python(response.json())
        except (ValueError, ValidationError) as e:
            raise ComplaintSourceError(f"Malformed complaint list: {e}") from e

    async def transition_status(
        self,
        complaint_id: UUID,
        status: ComplaintStatus,
        note: str | None = None,
    ) -> ComplaintOut:
        """Advance a complaint. Raises ``TransitionError`` on any failure."""
        body: dict[str, Any] = {"status": ComplaintStatus(status).value}
        if note is not None:
            body["description"] = note

        try:
            response = await self._client.put(f"/complaints/{complaint_id}", json=body)
        except httpx.HTTPError as e:
            logger.error(f"Transition of {complaint_id} has unknown outcome: {e}")
            raise TransitionError(
                f"Transition of {complaint_id} did not complete: {e}"
            ) from e

        if response.status_code != 200:
            logger.error(
                f"Transition of {complaint_id} to {body['status']} rejected: "
                f"{response.status_code} - {response.text[:200]}"
            )
            raise TransitionError(
                _error_message(response),
                status_code=response.status_code,
            )
        return ComplaintOut.model_validate(response.json())

    async def file_complaint(
        self,
        title: str,
        location: str,
        category_id: UUID,
        description: str,
        image_url: str | None = None,
    ) -> ComplaintOut:
        response = await self._request(
            "POST",
            "/complaints",
            json={
                "title": title,
                "location": location,
                "category_id": str(category_id),
                "description": description,
                "image_url": image_url,
            },
        )
        return ComplaintOut.model_validate(response.json())

    # =========================================================================
    # REFERENCE DATA
    # =========================================================================

    async def list_categories(self) -> list[CategoryRef]:
        response = await self._request("GET", "/categories")
        return _category_list.validate_python(response.json())

    async def get_profile(self, auth_user_id: str) -> ProfileOut | None:
        """Profile for an identity-provider user id, None if there is none."""
        try:
            response = await self._request("GET", f"/profile/{auth_user_id}")
        except SaranaClientError as e:
            if e.status_code == 404:
                return None
            raise
        return ProfileOut.model_validate(response.json())

    # =========================================================================
    # INTERNAL HELPERS
    # =========================================================================

    async def _request(self, method: str, url: str, **kwargs) -> httpx.Response:
        try:
            response = await self._client.request(method, url, **kwargs)
        except httpx.HTTPError as e:
            raise SaranaClientError(f"{method} {url} failed: {e}") from e
        if response.is_error:
            raise SaranaClientError(
                _error_message(response),
                status_code=response.status_code,
            )
        return response


def _error_message(response: httpx.Response) -> str:
    try:
        payload = response.json()
    except ValueError:
        payload = None
    detail = payload.get("detail") if isinstance(payload, dict) else None
    return f"{response.status_code}: {detail or response.text[:200]}"
