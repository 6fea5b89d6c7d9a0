# mindfulcare/services/meetings.py
"""
Video meeting provisioning.

`MeetingProvisioner` is the only thing the booking flow talks to. It maps a
requested platform onto an adapter chosen once from settings: deterministic
mock links (MEETING_MODE=mock), or the real Zoom / Microsoft Teams / Google Meet
APIs (MEETING_MODE=live). Platforms we don't integrate with get a synthesized
link on our own meeting domain instead of an error.
"""
from __future__ import annotations

import asyncio
import hashlib
import time
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import AsyncIterator, Dict, Optional

import httpx
from googleapiclient.errors import HttpError

from mindfulcare.core.config import Settings
from mindfulcare.core.errors import ExternalServiceTimeout, MeetingProvisioningError
from mindfulcare.core.logging import get_logger
from mindfulcare.services.google_calendar import build_calendar_service
from mindfulcare.utils.timeout_protection import with_timeout

logger = get_logger(__name__)

PLATFORM_ZOOM = "zoom"
PLATFORM_GOOGLE_MEET = "google-meet"
PLATFORM_TEAMS = "microsoft-teams"
PLATFORM_GENERIC = "generic"

_PLATFORM_ALIASES = {
    "zoom": PLATFORM_ZOOM,
    "google-meet": PLATFORM_GOOGLE_MEET,
    "google_meet": PLATFORM_GOOGLE_MEET,
    "googlemeet": PLATFORM_GOOGLE_MEET,
    "meet": PLATFORM_GOOGLE_MEET,
    "microsoft-teams": PLATFORM_TEAMS,
    "microsoft_teams": PLATFORM_TEAMS,
    "ms-teams": PLATFORM_TEAMS,
    "teams": PLATFORM_TEAMS,
}


def normalize_platform(platform: Optional[str]) -> str:
    """Known platform tag, or 'generic' for anything else (skype, custom, typos, None)."""
    if not platform:
        return PLATFORM_GENERIC
    return _PLATFORM_ALIASES.get(platform.strip().lower(), PLATFORM_GENERIC)


@dataclass(frozen=True)
class MeetingDetails:
    platform: str
    meeting_id: str
    meeting_url: str
    password: Optional[str] = None
    host_url: Optional[str] = None


class MeetingAdapter(ABC):
    name: str = "abstract"

    @abstractmethod
    async def provision(
        self,
        appointment_id: int,
        platform: str,
        host_identity: Optional[str],
        guest_identity: Optional[str],
        *,
        starts_at: Optional[datetime] = None,
        duration_min: int = 50,
        topic: Optional[str] = None,
    ) -> MeetingDetails:
        """Create a meeting; raise MeetingProvisioningError on provider failure."""


def _digest(appointment_id: int, platform: str) -> str:
    return hashlib.sha256(f"{appointment_id}:{platform}".encode()).hexdigest()


def _letters(hex_digest: str, count: int) -> str:
    n = int(hex_digest, 16)
    out = []
    for _ in range(count):
        n, r = divmod(n, 26)
        out.append(chr(ord("a") + r))
    return "".join(out)


class GenericMeetingAdapter(MeetingAdapter):
    """Synthesized room link on our own meeting domain. Never fails."""

    name = "generic"

    def __init__(self, base_url: str = "https://meet.mindfulcare.com"):
        self.base_url = base_url.rstrip("/")

    async def provision(self, appointment_id, platform, host_identity, guest_identity, *,
                        starts_at=None, duration_min=50, topic=None) -> MeetingDetails:
        room = _digest(appointment_id, PLATFORM_GENERIC)[:12]
        return MeetingDetails(
            platform=PLATFORM_GENERIC,
            meeting_id=f"generic-{room}",
            meeting_url=f"{self.base_url}/room/{appointment_id}-{room}",
        )


class MockMeetingAdapter(MeetingAdapter):
    """
    Deterministic fake for every platform: the same appointment id and platform
    always give the same id, URL and password. Used in development and tests.
    """

    name = "mock"

    def __init__(self, generic_base_url: str = "https://meet.mindfulcare.com"):
        self.generic = GenericMeetingAdapter(generic_base_url)

    async def provision(self, appointment_id, platform, host_identity, guest_identity, *,
                        starts_at=None, duration_min=50, topic=None) -> MeetingDetails:
        platform = normalize_platform(platform)
        digest = _digest(appointment_id, platform)

        if platform == PLATFORM_ZOOM:
            meeting_id = str(int(digest[:16], 16) % 10**10).zfill(10)
            password = digest[16:24]
            return MeetingDetails(
                platform=platform,
                meeting_id=meeting_id,
                meeting_url=f"https://zoom.us/j/{meeting_id}?pwd={password}",
                password=password,
                host_url=f"https://zoom.us/s/{meeting_id}",
            )

        if platform == PLATFORM_GOOGLE_MEET:
            code = _letters(digest[:24], 10)
            meeting_id = f"{code[:3]}-{code[3:7]}-{code[7:]}"
            return MeetingDetails(
                platform=platform,
                meeting_id=meeting_id,
                meeting_url=f"https://meet.google.com/{meeting_id}",
            )

        if platform == PLATFORM_TEAMS:
            thread = digest[:32]
            return MeetingDetails(
                platform=platform,
                meeting_id=thread,
                meeting_url=f"https://teams.microsoft.com/l/meetup-join/19%3ameeting_{thread}%40thread.v2/0",
            )

        return await self.generic.provision(appointment_id, platform, host_identity, guest_identity)


def _start_or_soon(starts_at: Optional[datetime]) -> datetime:
    if starts_at is None:
        return datetime.now(timezone.utc) + timedelta(hours=1)
    return starts_at.astimezone(timezone.utc)


class _HttpMeetingAdapter(MeetingAdapter):
    """OAuth client-credentials token cache plus error mapping for HTTP APIs."""

    platform = PLATFORM_GENERIC

    def __init__(self, client: Optional[httpx.AsyncClient] = None, timeout: float = 10.0):
        self._client = client
        self._timeout = timeout
        self._token: Optional[str] = None
        self._token_expires_at = 0.0

    @asynccontextmanager
    async def _session(self) -> AsyncIterator[httpx.AsyncClient]:
        if self._client is not None:
            yield self._client
        else:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                yield client

    async def _request(self, client: httpx.AsyncClient, method: str, url: str, **kwargs) -> dict:
        try:
            response = await client.request(method, url, **kwargs)
        except httpx.HTTPError as e:
            raise MeetingProvisioningError(self.platform, f"transport error: {e}") from e
        if response.status_code >= 400:
            raise MeetingProvisioningError(
                self.platform, f"HTTP {response.status_code}: {response.text[:200]}"
            )
        try:
            return response.json()
        except ValueError as e:
            raise MeetingProvisioningError(self.platform, "invalid JSON in provider response") from e

    async def _access_token(self, client: httpx.AsyncClient) -> str:
        # refresh a minute early
        if self._token and time.monotonic() < self._token_expires_at - 60:
            return self._token
        data = await self._fetch_token(client)
        try:
            self._token = data["access_token"]
        except KeyError as e:
            raise MeetingProvisioningError(self.platform, "token response missing access_token") from e
        self._token_expires_at = time.monotonic() + float(data.get("expires_in", 3600))
        return self._token

    @abstractmethod
    async def _fetch_token(self, client: httpx.AsyncClient) -> dict:
        ...


class ZoomMeetingAdapter(_HttpMeetingAdapter):
    """Zoom server-to-server OAuth app."""

    name = "zoom"
    platform = PLATFORM_ZOOM
    TOKEN_URL = "https://zoom.us/oauth/token"
    API_BASE = "https://api.zoom.us/v2"

    def __init__(self, account_id: str, client_id: str, client_secret: str,
                 client: Optional[httpx.AsyncClient] = None, timeout: float = 10.0):
        super().__init__(client, timeout)
        self.account_id = account_id
        self.client_id = client_id
        self.client_secret = client_secret

    async def _fetch_token(self, client):
        return await self._request(
            client, "POST", self.TOKEN_URL,
            params={"grant_type": "account_credentials", "account_id": self.account_id},
            auth=(self.client_id, self.client_secret),
        )

    async def provision(self, appointment_id, platform, host_identity, guest_identity, *,
                        starts_at=None, duration_min=50, topic=None) -> MeetingDetails:
        start = _start_or_soon(starts_at)
        async with self._session() as client:
            token = await self._access_token(client)
            data = await self._request(
                client, "POST", f"{self.API_BASE}/users/{host_identity or 'me'}/meetings",
                headers={"Authorization": f"Bearer {token}"},
                json={
                    "topic": topic or f"Session #{appointment_id}",
                    "type": 2,  # scheduled
                    "start_time": start.strftime("%Y-%m-%dT%H:%M:%SZ"),
                    "duration": duration_min,
                    "settings": {"join_before_host": False, "waiting_room": True},
                },
            )
        try:
            return MeetingDetails(
                platform=PLATFORM_ZOOM,
                meeting_id=str(data["id"]),
                meeting_url=data["join_url"],
                password=data.get("password"),
                host_url=data.get("start_url"),
            )
        except KeyError as e:
            raise MeetingProvisioningError(PLATFORM_ZOOM, f"response missing {e}") from e


class TeamsMeetingAdapter(_HttpMeetingAdapter):
    """Microsoft Graph online meetings with an app-only (client credentials) token."""

    name = "microsoft-teams"
    platform = PLATFORM_TEAMS
    GRAPH_BASE = "https://graph.microsoft.com/v1.0"

    def __init__(self, tenant_id: str, client_id: str, client_secret: str,
                 client: Optional[httpx.AsyncClient] = None, timeout: float = 10.0):
        super().__init__(client, timeout)
        self.tenant_id = tenant_id
        self.client_id = client_id
        self.client_secret = client_secret

    async def _fetch_token(self, client):
        return await self._request(
            client, "POST",
            f"https://login.microsoftonline.com/{self.tenant_id}/oauth2/v2.0/token",
            data={
                "client_id": self.client_id,
                "client_secret": self.client_secret,
                "scope": "https://graph.microsoft.com/.default",
                "grant_type": "client_credentials",
            },
        )

    async def provision(self, appointment_id, platform, host_identity, guest_identity, *,
                        starts_at=None, duration_min=50, topic=None) -> MeetingDetails:
        if not host_identity:
            # app-only tokens can't use /me
            raise MeetingProvisioningError(PLATFORM_TEAMS, "host identity is required")

        start = _start_or_soon(starts_at)
        body = {
            "subject": topic or f"Session #{appointment_id}",
            "startDateTime": start.isoformat(),
            "endDateTime": (start + timedelta(minutes=duration_min)).isoformat(),
        }
        if guest_identity:
            body["participants"] = {"attendees": [{"upn": guest_identity, "role": "attendee"}]}

        async with self._session() as client:
            token = await self._access_token(client)
            data = await self._request(
                client, "POST", f"{self.GRAPH_BASE}/users/{host_identity}/onlineMeetings",
                headers={"Authorization": f"Bearer {token}"},
                json=body,
            )
        url = data.get("joinWebUrl") or data.get("joinUrl")
        if not url or "id" not in data:
            raise MeetingProvisioningError(PLATFORM_TEAMS, "response missing join URL")
        return MeetingDetails(platform=PLATFORM_TEAMS, meeting_id=data["id"], meeting_url=url)


class GoogleMeetAdapter(MeetingAdapter):
    """Meet links come from a Calendar event created with a conference request."""

    name = "google-meet"

    def __init__(self, calendar_service, calendar_id: str = "primary"):
        self.service = calendar_service
        self.calendar_id = calendar_id

    async def provision(self, appointment_id, platform, host_identity, guest_identity, *,
                        starts_at=None, duration_min=50, topic=None) -> MeetingDetails:
        start = _start_or_soon(starts_at)
        body = {
            "summary": topic or f"Session #{appointment_id}",
            "start": {"dateTime": start.isoformat(), "timeZone": "UTC"},
            "end": {"dateTime": (start + timedelta(minutes=duration_min)).isoformat(), "timeZone": "UTC"},
            "attendees": [{"email": e} for e in (host_identity, guest_identity) if e],
            "conferenceData": {
                "createRequest": {
                    "requestId": f"mindfulcare-{appointment_id}",
                    "conferenceSolutionKey": {"type": "hangoutsMeet"},
                }
            },
        }
        try:
            request = self.service.events().insert(
                calendarId=self.calendar_id, body=body, conferenceDataVersion=1
            )
            event = await asyncio.to_thread(request.execute)
        except HttpError as e:
            raise MeetingProvisioningError(PLATFORM_GOOGLE_MEET, f"Calendar API error: {e}") from e

        conference = event.get("conferenceData") or {}
        url = event.get("hangoutLink") or next(
            (ep.get("uri") for ep in conference.get("entryPoints", []) if ep.get("entryPointType") == "video"),
            None,
        )
        if not url:
            raise MeetingProvisioningError(PLATFORM_GOOGLE_MEET, "event created without a Meet link")
        return MeetingDetails(
            platform=PLATFORM_GOOGLE_MEET,
            meeting_id=conference.get("conferenceId") or event.get("id", ""),
            meeting_url=url,
            host_url=event.get("htmlLink"),
        )


class MeetingProvisioner:
    """Routes a platform to its adapter and bounds every provider call with a timeout."""

    def __init__(
        self,
        adapters: Dict[str, MeetingAdapter],
        fallback: MeetingAdapter,
        *,
        timeout_seconds: float = 10.0,
    ):
        self.adapters = dict(adapters)
        self.fallback = fallback
        self.timeout_seconds = timeout_seconds

    def adapter_for(self, platform: str) -> MeetingAdapter:
        return self.adapters.get(normalize_platform(platform), self.fallback)

    async def provision(
        self,
        appointment_id: int,
        platform: Optional[str],
        host_identity: Optional[str],
        guest_identity: Optional[str],
        *,
        starts_at: Optional[datetime] = None,
        duration_min: int = 50,
        topic: Optional[str] = None,
    ) -> MeetingDetails:
        normalized = normalize_platform(platform)
        adapter = self.adapter_for(normalized)
        try:
            details = await with_timeout(
                adapter.provision(
                    appointment_id, normalized, host_identity, guest_identity,
                    starts_at=starts_at, duration_min=duration_min, topic=topic,
                ),
                self.timeout_seconds,
                f"meeting:{normalized}",
            )
        except ExternalServiceTimeout as e:
            raise MeetingProvisioningError(normalized, e.message, appointment_id=appointment_id) from e
        except MeetingProvisioningError as e:
            e.appointment_id = appointment_id
            raise

        logger.info(
            "meeting_provisioned",
            appointment_id=appointment_id,
            requested_platform=platform,
            platform=details.platform,
            adapter=adapter.name,
        )
        return details


def build_meeting_provisioner(settings: Settings) -> MeetingProvisioner:
    """Resolve adapters once, at startup. Live platforms without credentials fall back to generic links."""
    generic = GenericMeetingAdapter(settings.GENERIC_MEETING_BASE_URL)
    timeout = settings.EXTERNAL_CALL_TIMEOUT_SECONDS

    if settings.MEETING_MODE.strip().lower() != "live":
        mock = MockMeetingAdapter(settings.GENERIC_MEETING_BASE_URL)
        return MeetingProvisioner(
            {PLATFORM_ZOOM: mock, PLATFORM_GOOGLE_MEET: mock, PLATFORM_TEAMS: mock},
            generic,
            timeout_seconds=timeout,
        )

    adapters: Dict[str, MeetingAdapter] = {}

    if settings.ZOOM_ACCOUNT_ID and settings.ZOOM_CLIENT_ID and settings.ZOOM_CLIENT_SECRET:
        adapters[PLATFORM_ZOOM] = ZoomMeetingAdapter(
            settings.ZOOM_ACCOUNT_ID, settings.ZOOM_CLIENT_ID, settings.ZOOM_CLIENT_SECRET, timeout=timeout
        )
    else:
        logger.warning("meeting_adapter_unconfigured", platform=PLATFORM_ZOOM)

    if settings.TEAMS_TENANT_ID and settings.TEAMS_CLIENT_ID and settings.TEAMS_CLIENT_SECRET:
        adapters[PLATFORM_TEAMS] = TeamsMeetingAdapter(
            settings.TEAMS_TENANT_ID, settings.TEAMS_CLIENT_ID, settings.TEAMS_CLIENT_SECRET, timeout=timeout
        )
    else:
        logger.warning("meeting_adapter_unconfigured", platform=PLATFORM_TEAMS)

    calendar_service = build_calendar_service(settings.GOOGLE_SERVICE_ACCOUNT_JSON)
    if calendar_service is not None:
        adapters[PLATFORM_GOOGLE_MEET] = GoogleMeetAdapter(calendar_service, settings.GOOGLE_CALENDAR_ID)
    else:
        logger.warning("meeting_adapter_unconfigured", platform=PLATFORM_GOOGLE_MEET)

    return MeetingProvisioner(adapters, generic, timeout_seconds=timeout)
