"""Async client for the remote heartbeat API."""

import json
import logging
from typing import Any, Dict, List, Optional

import httpx

from heartbeat.config import DEFAULT_MEASUREMENT_LIMIT, FEED_MEASUREMENT_LIMIT
from heartbeat.errors import RequestFailedError, SessionExpiredError
from heartbeat.models import (
    Activity,
    ActivityInput,
    MeasurementPage,
    ProfileUpdate,
    RawMeasurement,
    RegisterRequest,
    UserProfile,
)
from heartbeat.session import SessionCache, bearer

logger = logging.getLogger(__name__)


def error_message(response: httpx.Response, default: str) -> str:
    """Human-readable message for a failed response.

    Prefers a JSON ``message`` field, then the raw body, then the status line.
    """
    text = response.text.strip()
    if text:
        try:
            parsed = json.loads(text)
        except ValueError:
            return text
        if isinstance(parsed, dict) and parsed.get("message"):
            return str(parsed["message"])
        return text
    status_line = f"{response.status_code} {response.reason_phrase}".strip()
    return status_line or default


class HeartbeatClient:
    """Typed wrapper over the remote API endpoints.

    Authenticated calls use the token from the session cache. A 401 or 403
    clears the session and raises SessionExpiredError; other failures raise
    RequestFailedError with a message suitable for display.
    """

    def __init__(self, http: httpx.AsyncClient, session: SessionCache):
        self.http = http
        self.session = session

    async def login(self, email: str, password: str) -> UserProfile:
        payload = await self._post_credentials(
            "/api/auth/login", {"email": email, "password": password}, "Login failed"
        )
        return self._start_session(payload)

    async def register(self, request: RegisterRequest) -> UserProfile:
        payload = await self._post_credentials(
            "/api/auth/register", request.to_wire(), "Signup failed"
        )
        return self._start_session(payload)

    async def fetch_latest_measurements(
        self, limit: int = DEFAULT_MEASUREMENT_LIMIT, since: Optional[str] = None
    ) -> List[RawMeasurement]:
        """Fetch the newest measurements, optionally only those after ``since``."""
        params: Dict[str, Any] = {"limit": limit}
        if since:
            params["since"] = since
        body = await self._request("GET", "/api/measurements/latest", params=params)
        if not isinstance(body, dict):
            body = {}
        return MeasurementPage.model_validate(body).items

    async def assign_activity(
        self, measurement_id: int, activity_id: Optional[int]
    ) -> RawMeasurement:
        """Link a measurement to an activity, or unlink it with None."""
        # Sent as a raw JSON body so that None goes over the wire as null
        body = await self._request(
            "PUT",
            f"/api/measurements/{measurement_id}/activity",
            content=json.dumps(activity_id),
            headers={"Content-Type": "application/json"},
        )
        return RawMeasurement.model_validate(body)

    async def list_activities(self) -> List[Activity]:
        body = await self._request("GET", "/api/activities")
        if isinstance(body, dict):
            body = body.get("items", [])
        return [Activity.model_validate(item) for item in body or []]

    async def create_activity(self, activity: ActivityInput) -> Activity:
        body = await self._request(
            "POST", "/api/activities", json=activity.model_dump(by_alias=True)
        )
        return Activity.model_validate(body)

    async def update_activity(self, activity_id: int, activity: ActivityInput) -> Activity:
        body = await self._request(
            "PUT", f"/api/activities/{activity_id}", json=activity.model_dump(by_alias=True)
        )
        return Activity.model_validate(body)

    async def update_profile(self, update: ProfileUpdate) -> UserProfile:
        """Save profile edits and merge the server's answer into the session cache."""
        wire = update.to_wire()
        if not wire:
            raise RequestFailedError("No fields to save. Fill something in and try again.")
        body = await self._request("PUT", "/api/users/me", json=wire)
        if not isinstance(body, dict):
            raise RequestFailedError("Unexpected response from the server")
        return self.session.ingest_profile(body)

    async def _post_credentials(
        self, path: str, payload: Dict[str, Any], default: str
    ) -> Dict[str, Any]:
        try:
            response = await self.http.post(path, json=payload)
        except httpx.HTTPError as e:
            raise RequestFailedError(f"{default}: {e}") from e
        if not response.is_success:
            raise RequestFailedError(error_message(response, default), response.status_code)
        try:
            body = response.json()
        except ValueError as e:
            raise RequestFailedError(f"{default}: malformed response") from e
        if not isinstance(body, dict) or not body.get("token"):
            raise RequestFailedError(f"{default}: no token in response")
        return body

    def _start_session(self, payload: Dict[str, Any]) -> UserProfile:
        profile = UserProfile.from_payload(payload)
        self.session.start_session(payload["token"], profile)
        return profile

    async def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        token = self.session.get_token()
        if not token:
            self.session.clear()
            raise SessionExpiredError("No auth token")
        headers = {**kwargs.pop("headers", {}), **bearer(token)}
        try:
            response = await self.http.request(method, path, headers=headers, **kwargs)
        except httpx.HTTPError as e:
            raise RequestFailedError(f"Request to {path} failed: {e}") from e

        if response.status_code in (401, 403):
            logger.warning("%s %s rejected with %s, clearing session", method, path, response.status_code)
            self.session.clear()
            raise SessionExpiredError(f"{path} returned {response.status_code}")
        if not response.is_success:
            raise RequestFailedError(
                error_message(response, f"Request to {path} failed"), response.status_code
            )
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as e:
            raise RequestFailedError(f"Malformed response from {path}") from e


class MeasurementFeed:
    """Incremental measurement polling.

    Keeps a ``since`` cursor at the newest ``createdAt`` seen so each poll
    only asks the server for samples it has not returned yet.
    """

    def __init__(self, client: HeartbeatClient, limit: int = FEED_MEASUREMENT_LIMIT):
        self.client = client
        self.limit = limit
        self.since: Optional[str] = None

    async def poll(self) -> List[RawMeasurement]:
        items = await self.client.fetch_latest_measurements(limit=self.limit, since=self.since)
        newest = max(
            (m for m in items if m.timestamp is not None),
            key=lambda m: m.timestamp,
            default=None,
        )
        if newest is not None:
            self.since = newest.created_at
        return items
