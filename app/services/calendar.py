from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Protocol
from urllib.parse import quote

import httpx

from app.core.errors import TransientError
from app.models.mentorship import Mentor

GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"
GOOGLE_CALENDAR_API = "https://www.googleapis.com/calendar/v3"


class CalendarError(RuntimeError):
    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


def to_rfc3339(value: datetime) -> str:
    return value.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


class CalendarService(Protocol):
    async def query_busy(self, calendar_id: str, start: datetime, end: datetime) -> list[dict[str, Any]]: ...

    async def create_event(
        self,
        calendar_id: str,
        *,
        summary: str,
        description: str,
        start: datetime,
        end: datetime,
        metadata: dict[str, str],
    ) -> str: ...

    async def delete_event(self, calendar_id: str, event_id: str) -> None: ...


class CalendarProvider(Protocol):
    def for_mentor(self, mentor: Mentor) -> CalendarService | None: ...


class GoogleCalendarClient:
    """Google Calendar over REST, authorised with the mentor's refresh token."""

    def __init__(
        self,
        http: httpx.AsyncClient,
        *,
        client_id: str,
        client_secret: str,
        refresh_token: str,
    ) -> None:
        self._http = http
        self._client_id = client_id
        self._client_secret = client_secret
        self._refresh_token = refresh_token
        self._access_token: str | None = None

    async def _token(self) -> str:
        if self._access_token:
            return self._access_token
        res = await self._request(
            "POST",
            GOOGLE_TOKEN_URL,
            data={
                "client_id": self._client_id,
                "client_secret": self._client_secret,
                "refresh_token": self._refresh_token,
                "grant_type": "refresh_token",
            },
        )
        token = str(res.json().get("access_token") or "")
        if not token:
            raise CalendarError("Google oauth did not return an access_token")
        self._access_token = token
        return token

    async def _request(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        try:
            res = await self._http.request(method, url, **kwargs)
        except httpx.TransportError as exc:
            raise TransientError(f"Google Calendar unreachable: {exc}") from exc
        if res.status_code >= 500 or res.status_code == 429:
            raise TransientError(f"Google Calendar error ({res.status_code})")
        if not res.is_success:
            raise CalendarError(f"Google Calendar error ({res.status_code}): {res.text}", status_code=res.status_code)
        return res

    async def _authed(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        headers = {"Authorization": f"Bearer {await self._token()}"}
        return await self._request(method, f"{GOOGLE_CALENDAR_API}{path}", headers=headers, **kwargs)

    async def query_busy(self, calendar_id: str, start: datetime, end: datetime) -> list[dict[str, Any]]:
        res = await self._authed(
            "POST",
            "/freeBusy",
            json={
                "timeMin": to_rfc3339(start),
                "timeMax": to_rfc3339(end),
                "items": [{"id": calendar_id}],
            },
        )
        calendars = res.json().get("calendars") or {}
        busy = (calendars.get(calendar_id) or {}).get("busy") or []
        return [b for b in busy if isinstance(b, dict)]

    async def create_event(
        self,
        calendar_id: str,
        *,
        summary: str,
        description: str,
        start: datetime,
        end: datetime,
        metadata: dict[str, str],
    ) -> str:
        res = await self._authed(
            "POST",
            f"/calendars/{quote(calendar_id, safe='')}/events",
            json={
                "summary": summary,
                "description": description,
                "start": {"dateTime": to_rfc3339(start)},
                "end": {"dateTime": to_rfc3339(end)},
                "extendedProperties": {"private": metadata},
            },
        )
        event_id = str(res.json().get("id") or "")
        if not event_id:
            raise CalendarError("Google Calendar did not return an event id")
        return event_id

    async def delete_event(self, calendar_id: str, event_id: str) -> None:
        try:
            await self._authed("DELETE", f"/calendars/{quote(calendar_id, safe='')}/events/{event_id}")
        except CalendarError as exc:
            # already gone
            if exc.status_code not in (404, 410):
                raise


class GoogleCalendarProvider:
    def __init__(self, http: httpx.AsyncClient, *, client_id: str, client_secret: str) -> None:
        self._http = http
        self._client_id = client_id
        self._client_secret = client_secret

    def for_mentor(self, mentor: Mentor) -> CalendarService | None:
        if not mentor.google_refresh_token:
            return None
        return GoogleCalendarClient(
            self._http,
            client_id=self._client_id,
            client_secret=self._client_secret,
            refresh_token=mentor.google_refresh_token,
        )
