"""Session cache: auth token, cached profile and time-boxed revalidation."""

import asyncio
import logging
import time
from datetime import date
from typing import Any, Callable, Dict, Optional

import httpx
from pydantic import ValidationError

from heartbeat.config import (
    AUTHENTICATED_KEY,
    TOKEN_KEY,
    USER_KEY,
    VALIDATION_FRESHNESS_SECONDS,
)
from heartbeat.errors import StorageCorruptError
from heartbeat.models import UserProfile, parse_timestamp
from heartbeat.storage import KeyValueStore

logger = logging.getLogger(__name__)

ME_PATH = "/api/auth/me"


def bearer(token: str) -> Dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


class SessionCache:
    """Owns the persisted session (flag, token, user) and its validation state.

    One instance is created at application start and shared by every consumer,
    so the freshness timer and the in-flight validation are per instance.
    """

    def __init__(
        self,
        store: KeyValueStore,
        http: httpx.AsyncClient,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.store = store
        self.http = http
        self._clock = clock
        self._last_validated: Optional[float] = None
        self._in_flight: Optional["asyncio.Task[bool]"] = None

    def is_authenticated(self) -> bool:
        """True iff the flag is set and both token and user are stored."""
        return (
            self.store.get(AUTHENTICATED_KEY) == "true"
            and bool(self.store.get(TOKEN_KEY))
            and bool(self.store.get(USER_KEY))
        )

    def set_authenticated(self, value: bool) -> None:
        self.store.set(AUTHENTICATED_KEY, "true" if value else "false")

    def set_token(self, token: Optional[str]) -> None:
        if not token:
            self.store.remove(TOKEN_KEY)
            return
        self.store.set(TOKEN_KEY, token)

    def get_token(self) -> Optional[str]:
        return self.store.get(TOKEN_KEY) or None

    def set_user(self, profile: UserProfile) -> None:
        self.store.set_json(USER_KEY, profile.to_storage())

    def get_user(self) -> Optional[UserProfile]:
        """Read the cached profile. Corrupt data reads as no profile."""
        try:
            data = self.store.get_json(USER_KEY)
        except StorageCorruptError as e:
            logger.warning("Cached user profile is unreadable: %s", e)
            return None
        if not isinstance(data, dict):
            return None
        try:
            return UserProfile.from_payload(data)
        except ValidationError as e:
            logger.warning("Cached user profile is malformed: %s", e)
            return None

    def get_display_name(self) -> str:
        """Best available human-readable name, or an empty string."""
        user = self.get_user()
        if user is None:
            return ""
        for candidate in (user.first_name, user.name, user.username, user.email):
            if candidate:
                return candidate
        return ""

    def get_age(self, today: Optional[date] = None) -> Optional[int]:
        """Age in whole years from the cached date of birth."""
        user = self.get_user()
        if user is None or not user.date_of_birth:
            return None
        born = parse_timestamp(user.date_of_birth)
        if born is None:
            return None
        today = today or date.today()
        age = today.year - born.year - ((today.month, today.day) < (born.month, born.day))
        return age if age >= 0 else None

    def mark_validated_now(self) -> None:
        self._last_validated = self._clock()

    def start_session(self, token: str, profile: UserProfile) -> None:
        """Persist a fresh session from a login or registration response."""
        self.set_authenticated(True)
        self.set_token(token)
        self.set_user(profile)
        self.mark_validated_now()
        logger.info("Session started for %s", profile.email or "unknown user")

    def clear(self) -> None:
        """Remove flag, token and user, and forget any validation state."""
        self.store.remove(AUTHENTICATED_KEY)
        self.store.remove(USER_KEY)
        self.store.remove(TOKEN_KEY)
        self._last_validated = None
        self._in_flight = None
        logger.info("Session cleared")

    async def validate_session(self) -> bool:
        """
        Check that the cached session is still accepted by the server.

        Returns immediately when a validation succeeded less than
        VALIDATION_FRESHNESS_SECONDS ago and a profile is cached. Concurrent
        callers share a single outstanding request and its result.
        Any failure clears the session and returns False.
        """
        token = self.get_token()
        if not token:
            self.clear()
            return False

        if self._is_fresh() and self.get_user() is not None:
            logger.debug("Session validated recently, skipping network check")
            return True

        if self._in_flight is None:
            self._in_flight = asyncio.create_task(self._validate(token))
        else:
            logger.debug("Joining in-flight session validation")
        # Shielded so one caller's cancellation does not abort the shared request
        return await asyncio.shield(self._in_flight)

    async def refresh_user_from_api(self) -> Optional[UserProfile]:
        """
        Fetch the profile from the server and merge it into the cache.

        Unlike validate_session, a failure leaves the session untouched.

        Returns:
            The merged profile, or None if the request failed
        """
        token = self.get_token()
        if not token:
            return None
        try:
            payload = await self._fetch_me(token)
        except (httpx.HTTPError, ValueError) as e:
            logger.warning("Profile refresh failed: %s", e)
            return None
        return self.ingest_profile(payload)

    def ingest_profile(self, payload: Dict[str, Any]) -> UserProfile:
        """Merge a server profile payload over the cache and persist a rotated token."""
        profile = UserProfile.from_payload(payload).merged_over(self.get_user())
        self.set_user(profile)
        rotated = payload.get("token")
        if isinstance(rotated, str) and rotated:
            self.set_token(rotated)
        return profile

    def _is_fresh(self) -> bool:
        if self._last_validated is None:
            return False
        return self._clock() - self._last_validated < VALIDATION_FRESHNESS_SECONDS

    async def _validate(self, token: str) -> bool:
        try:
            payload = await self._fetch_me(token)
            self.ingest_profile(payload)
        except (httpx.HTTPError, ValueError) as e:
            logger.warning("Session validation failed: %s", e)
            self.clear()
            return False
        else:
            self.set_authenticated(True)
            self.mark_validated_now()
            return True
        finally:
            # Released before any waiter sees the result, on every path
            self._release_in_flight()

    def _release_in_flight(self) -> None:
        if self._in_flight is asyncio.current_task():
            self._in_flight = None

    async def _fetch_me(self, token: str) -> Dict[str, Any]:
        response = await self.http.get(ME_PATH, headers=bearer(token))
        if not response.is_success:
            raise httpx.HTTPStatusError(
                f"{ME_PATH} returned {response.status_code}",
                request=response.request,
                response=response,
            )
        payload = response.json()
        if not isinstance(payload, dict):
            raise ValueError(f"{ME_PATH} returned a non-object body")
        return payload
