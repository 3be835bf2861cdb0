"""
Matrix client-server API session built on ``requests``.

Blocking HTTP calls run in a worker thread via :func:`asyncio.to_thread`
so the migration engine can keep many rooms in flight on one event loop.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Optional, Sequence
from urllib.parse import quote

import requests

from matrix_migrator.constants import (
    ACCOUNT_DATA_DIRECT,
    CLIENT_API_PREFIX,
    DEFAULT_CALL_TIMEOUT_SECONDS,
    EVENT_CANONICAL_ALIAS,
    EVENT_POWER_LEVELS,
    EVENT_ROOM_NAME,
    HTTP_NOT_FOUND,
    USER_AGENT,
)
from matrix_migrator.exceptions import (
    LoginError,
    PermanentProtocolError,
    ProtocolError,
    TransientProtocolError,
)
from matrix_migrator.services.session import RoomDelta, SyncResult
from matrix_migrator.types import Account, Membership, PowerLevels
from matrix_migrator.utils.api import classify_http_error
from matrix_migrator.utils.logging import log_with_context

# Keep timelines tiny: only room state is needed.
SYNC_FILTER = {
    "room": {
        "timeline": {"limit": 1},
        "ephemeral": {"not_types": ["*"]},
    },
    "presence": {"not_types": ["*"]},
}


def _quote(value: str) -> str:
    return quote(value, safe="")


def _new_http_session() -> requests.Session:
    http = requests.Session()
    http.headers["User-Agent"] = USER_AGENT
    return http


def discover_homeserver(
    server_name: str,
    http: Optional[requests.Session] = None,
    timeout: float = DEFAULT_CALL_TIMEOUT_SECONDS,
) -> str:
    """Resolve a server name to its client API base URL.

    Uses ``/.well-known/matrix/client`` and falls back to
    ``https://<server_name>`` when the server publishes nothing usable.
    """
    if server_name.startswith(("http://", "https://")):
        return server_name.rstrip("/")

    http = http or _new_http_session()
    fallback = f"https://{server_name}"
    try:
        response = http.get(f"{fallback}/.well-known/matrix/client", timeout=timeout)
    except requests.RequestException as e:
        log_with_context(
            logging.DEBUG, f"Homeserver discovery for {server_name} failed: {e}"
        )
        return fallback

    if response.status_code != 200:
        return fallback
    try:
        base_url = response.json()["m.homeserver"]["base_url"]
    except (ValueError, KeyError, TypeError):
        log_with_context(
            logging.WARNING,
            f"Ignoring malformed .well-known document for {server_name}",
        )
        return fallback
    return str(base_url).rstrip("/")


def parse_sync_response(body: dict[str, Any]) -> SyncResult:
    """Turn a ``/sync`` response body into room deltas."""
    direct_rooms: dict[str, list[str]] = {}
    for event in (body.get("account_data") or {}).get("events", []):
        if event.get("type") != ACCOUNT_DATA_DIRECT:
            continue
        for user_id, room_ids in (event.get("content") or {}).items():
            if not isinstance(room_ids, list):
                continue
            for room_id in room_ids:
                direct_rooms.setdefault(room_id, []).append(user_id)

    rooms = body.get("rooms") or {}
    deltas: list[RoomDelta] = []

    for room_id, room in (rooms.get("join") or {}).items():
        events = list((room.get("state") or {}).get("events", []))
        events += [
            e
            for e in (room.get("timeline") or {}).get("events", [])
            if "state_key" in e
        ]
        state = _latest_state(events)
        power_content = state.get(EVENT_POWER_LEVELS)
        deltas.append(
            RoomDelta(
                room_id=room_id,
                membership=Membership.JOINED,
                name=_room_name(state),
                is_direct=room_id in direct_rooms,
                direct_with=tuple(sorted(direct_rooms.get(room_id, []))),
                power_levels=(
                    PowerLevels.from_content(power_content)
                    if power_content is not None
                    else None
                ),
                complete=power_content is not None,
            )
        )

    for room_id, room in (rooms.get("invite") or {}).items():
        state = _latest_state((room.get("invite_state") or {}).get("events", []))
        deltas.append(
            RoomDelta(
                room_id=room_id,
                membership=Membership.INVITED,
                name=_room_name(state),
                is_direct=room_id in direct_rooms,
                direct_with=tuple(sorted(direct_rooms.get(room_id, []))),
            )
        )

    for room_id in rooms.get("leave") or {}:
        deltas.append(RoomDelta(room_id=room_id, membership=Membership.LEFT))

    deltas.sort(key=lambda d: d.room_id)
    return SyncResult(next_token=str(body.get("next_batch", "")), rooms=tuple(deltas))


def _latest_state(events: list[dict[str, Any]]) -> dict[str, dict[str, Any]]:
    """Map event type to content for room-level (empty state key) state."""
    state: dict[str, dict[str, Any]] = {}
    for event in events:
        if event.get("state_key", None) != "":
            continue
        state[event.get("type", "")] = event.get("content") or {}
    return state


def _room_name(state: dict[str, dict[str, Any]]) -> Optional[str]:
    name = (state.get(EVENT_ROOM_NAME) or {}).get("name")
    if name:
        return str(name)
    alias = (state.get(EVENT_CANONICAL_ALIAS) or {}).get("alias")
    return str(alias) if alias else None


class MatrixSession:
    """An authenticated Matrix account."""

    def __init__(
        self,
        homeserver: str,
        user_id: str,
        access_token: str,
        device_id: Optional[str] = None,
        http: Optional[requests.Session] = None,
        request_timeout: float = DEFAULT_CALL_TIMEOUT_SECONDS,
        sync_timeout: Optional[float] = None,
    ) -> None:
        self.homeserver = homeserver.rstrip("/")
        self.user_id = user_id
        self.device_id = device_id
        self.request_timeout = request_timeout
        self.sync_timeout = sync_timeout
        self._http = http or _new_http_session()
        self._http.headers["Authorization"] = f"Bearer {access_token}"
        self._account = Account(user_id=user_id, homeserver=self.homeserver)
        self._direct_lock = asyncio.Lock()

    @property
    def account(self) -> Account:
        return self._account

    # ------------------------------------------------------------------
    # Login / logout
    # ------------------------------------------------------------------

    @classmethod
    def login(
        cls,
        user_id: str,
        password: str,
        homeserver: Optional[str] = None,
        http: Optional[requests.Session] = None,
        request_timeout: float = DEFAULT_CALL_TIMEOUT_SECONDS,
    ) -> MatrixSession:
        """Log in with a password and return a session.

        The homeserver is discovered from the user id's server name unless
        given explicitly.
        """
        if not user_id.startswith("@") or ":" not in user_id:
            raise LoginError(f"Invalid Matrix user id: {user_id}")

        http = http or _new_http_session()
        base_url = discover_homeserver(
            homeserver or user_id.partition(":")[2], http, request_timeout
        )

        log_with_context(logging.INFO, f"Logging in {user_id} on {base_url}")
        payload = {
            "type": "m.login.password",
            "identifier": {"type": "m.id.user", "user": user_id},
            "password": password,
            "initial_device_display_name": "matrix-migrator",
        }
        try:
            response = http.post(
                f"{base_url}{CLIENT_API_PREFIX}/login",
                json=payload,
                timeout=request_timeout,
            )
        except requests.RequestException as e:
            raise LoginError(f"Could not reach {base_url} to log in {user_id}: {e}") from e

        if response.status_code != 200:
            error = _error_from_response(response)
            raise LoginError(f"Login for {user_id} failed: {error}")

        data = response.json()
        return cls(
            base_url,
            data.get("user_id", user_id),
            data["access_token"],
            device_id=data.get("device_id"),
            http=http,
            request_timeout=request_timeout,
        )

    async def logout(self) -> None:
        try:
            await self._call("POST", "/logout", json_body={})
        except ProtocolError as e:
            log_with_context(logging.WARNING, f"Logout of {self.user_id} failed: {e}")

    # ------------------------------------------------------------------
    # HTTP plumbing
    # ------------------------------------------------------------------

    def _request(
        self,
        method: str,
        path: str,
        params: Optional[dict[str, Any]] = None,
        json_body: Any = None,
        timeout: Optional[float] = None,
    ) -> Any:
        url = f"{self.homeserver}{CLIENT_API_PREFIX}{path}"
        log_with_context(logging.DEBUG, f"API Request: {method} {path}")
        try:
            response = self._http.request(
                method,
                url,
                params=params,
                json=json_body,
                timeout=timeout or self.request_timeout,
            )
        except requests.Timeout as e:
            raise TransientProtocolError(f"{method} {path} timed out: {e}") from e
        except requests.ConnectionError as e:
            raise TransientProtocolError(f"{method} {path} connection failed: {e}") from e
        except requests.RequestException as e:
            raise TransientProtocolError(f"{method} {path} failed: {e}") from e

        log_with_context(
            logging.DEBUG, f"API Response: {response.status_code} from {path}"
        )
        if response.status_code >= 400:
            raise _error_from_response(response)
        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError:
            return {}

    async def _call(
        self,
        method: str,
        path: str,
        params: Optional[dict[str, Any]] = None,
        json_body: Any = None,
        timeout: Optional[float] = None,
    ) -> Any:
        return await asyncio.to_thread(
            self._request, method, path, params, json_body, timeout
        )

    # ------------------------------------------------------------------
    # Session capability
    # ------------------------------------------------------------------

    async def sync(self, since_token: Optional[str]) -> SyncResult:
        params: dict[str, Any] = {
            "full_state": "true",
            "timeout": 0,
            "filter": json.dumps(SYNC_FILTER, separators=(",", ":")),
        }
        if since_token:
            params["since"] = since_token
        body = await self._call("GET", "/sync", params=params, timeout=self.sync_timeout)
        return parse_sync_response(body)

    async def join_room(self, room_id: str) -> None:
        await self._call("POST", f"/join/{_quote(room_id)}", json_body={})

    async def invite_user(self, room_id: str, user_id: str) -> None:
        await self._call(
            "POST", f"/rooms/{_quote(room_id)}/invite", json_body={"user_id": user_id}
        )

    async def set_power_level(self, room_id: str, member: str, level: int) -> None:
        path = f"/rooms/{_quote(room_id)}/state/{EVENT_POWER_LEVELS}/"
        content = await self._call("GET", path)
        users = dict(content.get("users") or {})
        if users.get(member) == level:
            return
        users[member] = level
        content["users"] = users
        await self._call("PUT", path, json_body=content)

    async def leave_room(self, room_id: str) -> None:
        await self._call("POST", f"/rooms/{_quote(room_id)}/leave", json_body={})

    async def set_direct_flag(
        self, room_id: str, is_direct: bool, direct_with: Sequence[str] = ()
    ) -> None:
        path = f"/user/{_quote(self.user_id)}/account_data/{ACCOUNT_DATA_DIRECT}"
        # m.direct is one document per account: serialize read-modify-write.
        async with self._direct_lock:
            try:
                content = await self._call("GET", path)
            except PermanentProtocolError as e:
                if e.status != HTTP_NOT_FOUND:
                    raise
                content = {}

            direct = {
                user: [r for r in rooms if r != room_id]
                for user, rooms in content.items()
                if isinstance(rooms, list)
            }
            if is_direct:
                counterparts = list(direct_with) or await self._direct_counterparts(
                    room_id
                )
                if not counterparts:
                    raise PermanentProtocolError(
                        f"No counterpart found to mark {room_id} as direct chat"
                    )
                for user in counterparts:
                    direct.setdefault(user, []).append(room_id)
            direct = {user: rooms for user, rooms in direct.items() if rooms}

            await self._call("PUT", path, json_body=direct)

    async def _direct_counterparts(self, room_id: str) -> list[str]:
        body = await self._call("GET", f"/rooms/{_quote(room_id)}/joined_members")
        return sorted(
            user for user in (body.get("joined") or {}) if user != self.user_id
        )


def _error_from_response(response: requests.Response) -> ProtocolError:
    errcode = None
    message = ""
    retry_after_ms = None
    try:
        body = response.json()
    except ValueError:
        body = None
    if isinstance(body, dict):
        errcode = body.get("errcode")
        message = body.get("error", "")
        retry_after_ms = body.get("retry_after_ms")
    return classify_http_error(
        response.status_code,
        errcode=errcode,
        message=message or response.reason or "",
        retry_after_ms=retry_after_ms,
    )
