import logging
from typing import Any, Dict, List, Optional

import httpx

from models.attendance_models import AttendanceMarkRequest, EntityKind
from utils.config import API_BASE_URL, REQUEST_TIMEOUT
from utils.errors import (
    AttendanceError, AuthRequired, NotFound, PermissionDenied, TransientFetchFailure
)
from utils.normalizer import extract_items


def _error_detail(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text
    if isinstance(body, dict):
        return str(body.get("detail") or body.get("message") or body)
    return str(body)


def error_for_response(response: httpx.Response, action: str) -> AttendanceError:
    """Map a non-2xx backend answer onto the error taxonomy"""
    detail = _error_detail(response)
    if response.status_code == 401:
        return AuthRequired()
    if response.status_code == 403:
        return PermissionDenied(f"Access Denied: {detail}" if detail else None)
    if response.status_code == 404:
        return NotFound(f"{action}: not found")
    return TransientFetchFailure(f"{action}: {response.status_code}", upstream_status=response.status_code)


class AttendanceAPIClient:
    """Async client for the Marshalats attendance endpoints.

    The bearer token of the signed-in user is forwarded unchanged; the
    backend is the one that verifies permissions.
    """

    def __init__(
        self,
        token: Optional[str] = None,
        base_url: str = API_BASE_URL,
        timeout: float = REQUEST_TIMEOUT,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip('/')
        self.token = token
        self.client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=timeout,
            transport=transport,
            headers=self.auth_headers(),
        )

    def auth_headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.aclose()

    async def aclose(self):
        await self.client.aclose()

    async def _request(self, method: str, path: str, action: str, **kwargs) -> Any:
        try:
            response = await self.client.request(method, path, **kwargs)
        except httpx.HTTPError as e:
            logging.error(f"{action}: {type(e).__name__}: {e}")
            raise TransientFetchFailure(f"{action}: {str(e) or type(e).__name__}") from e

        if not response.is_success:
            logging.warning(f"{action}: {response.status_code} {response.text}")
            raise error_for_response(response, action)

        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError as e:
            raise TransientFetchFailure(f"{action}: invalid response body") from e

    async def get_attendance(self, kind: EntityKind, date: str, branch_id: Optional[str] = None) -> List[dict]:
        """Entities of one kind with their attendance for a single date"""
        params = {"date": date}
        if branch_id:
            params["branch_id"] = branch_id
        data = await self._request(
            "GET", f"/api/attendance/{kind.plural}",
            f"Failed to load {kind.value} attendance data", params=params,
        )
        return extract_items(data, kind)

    async def get_stats(self, date: str, branch_id: Optional[str] = None) -> dict:
        params = {"date": date}
        if branch_id:
            params["branch_id"] = branch_id
        data = await self._request("GET", "/api/attendance/stats", "Failed to load attendance stats", params=params)
        return data if isinstance(data, dict) else {}

    async def get_branches(self) -> List[dict]:
        data = await self._request("GET", "/api/branches", "Failed to load branches")
        if isinstance(data, dict):
            data = data.get("branches", [])
        return data if isinstance(data, list) else []

    async def mark_attendance(self, payload: AttendanceMarkRequest) -> dict:
        data = await self._request(
            "POST", "/api/attendance/mark",
            f"Failed to save {payload.user_type.value} attendance",
            json=payload.model_dump(mode="json"),
        )
        return data if isinstance(data, dict) else {}
