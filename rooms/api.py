"""Typed client for the room service.

Inputs are re-checked against the strict allow-lists before anything leaves
the device, and replies are parsed defensively: every shape the backend is
not known to send becomes a :class:`ProtocolError`. Requests are never
retried here, since a retried create could claim a second room.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Tuple

import requests

from security.policy import RoomPolicy, policy as default_policy
from security.validation import (
    ValidationError,
    ValidationIssue,
    is_valid_room_id,
    is_valid_username,
)

_logger = logging.getLogger(__name__)

TokenProvider = Callable[[], Optional[str]]


class InvalidInput(ValidationError):
    """Raised when a caller hands the client values that fail the allow-lists."""


class RoomApiError(RuntimeError):
    """Base class for failures of an in-flight room request."""


class TransportError(RoomApiError):
    """The request did not complete (connection, TLS, timeout)."""


class ProtocolError(RoomApiError):
    """The reply could not be understood."""


class RoomRejected(RoomApiError):
    """The service explicitly declined the request."""

    def __init__(self, message: str, *, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code


@dataclass(frozen=True)
class ApiResponse:
    success: bool
    room_id: Optional[str] = None
    message: Optional[str] = None
    host: Optional[str] = None
    players: Tuple[str, ...] = ()


@dataclass(frozen=True)
class RoomStatus:
    room_id: str
    host: Optional[str]
    players: Tuple[str, ...]
    status: str
    created_at: Optional[str] = None


class RoomApiClient:
    """Wrapper around the ``/rooms`` endpoints carrying bearer-token auth."""

    def __init__(
        self,
        token_provider: TokenProvider,
        *,
        policy: RoomPolicy | None = None,
        session: requests.Session | None = None,
    ) -> None:
        active_policy = policy or default_policy
        self.base_url = active_policy.api_base_url.rstrip("/")
        self.timeout = active_policy.request_timeout
        self._token_provider = token_provider
        self._session = session or requests.Session()

    # Public API -----------------------------------------------------------------
    def create_room(self, room_id: str, username: str) -> ApiResponse:
        self._require_valid(room_id=room_id, username=username)
        reply = self._request(
            "POST",
            "/rooms/create",
            {"roomId": room_id, "username": username, "host": True},
        )
        response = self._parse_room_reply(reply)
        if response.room_id is None:
            raise ProtocolError("Room service did not confirm the room code.")
        return response

    def join_room(self, room_id: str, username: str) -> ApiResponse:
        self._require_valid(room_id=room_id, username=username)
        reply = self._request("POST", "/rooms/join", {"roomId": room_id, "username": username})
        return self._parse_room_reply(reply)

    def room_status(self, room_id: str) -> RoomStatus:
        self._require_valid(room_id=room_id)
        reply = self._request("GET", f"/rooms/{room_id}/status", None)
        payload = self._check_success(reply)
        room = payload.get("room")
        if not isinstance(room, dict):
            raise ProtocolError("Room status reply is missing the room description.")
        reported_id = room.get("id")
        if not isinstance(reported_id, str) or not is_valid_room_id(reported_id):
            raise ProtocolError("Room status reply carries an invalid room code.")
        status = room.get("status")
        if not isinstance(status, str):
            raise ProtocolError("Room status reply is missing the room state.")
        return RoomStatus(
            room_id=reported_id,
            host=self._optional_str(room, "host"),
            players=self._players(room),
            status=status,
            created_at=self._optional_str(room, "createdAt"),
        )

    def close_room(self, room_id: str, username: str) -> ApiResponse:
        self._require_valid(room_id=room_id, username=username)
        reply = self._request("DELETE", f"/rooms/{room_id}", {"username": username})
        payload = self._check_success(reply)
        return ApiResponse(success=True, room_id=room_id, message=self._optional_str(payload, "message"))

    # Internals ------------------------------------------------------------------
    def _require_valid(self, *, room_id: str | None = None, username: str | None = None) -> None:
        issues: list[ValidationIssue] = []
        if room_id is not None and not is_valid_room_id(room_id):
            issues.append(ValidationIssue("room_id", "Room code must be exactly 4 uppercase letters (A-Z)."))
        if username is not None and not is_valid_username(username):
            issues.append(ValidationIssue("username", "Invalid username format."))
        if issues:
            raise InvalidInput(issues)

    def _headers(self) -> Dict[str, str]:
        token = self._token_provider()
        if not token:
            raise InvalidInput([ValidationIssue("token", "Sign in before using rooms.")])
        return {
            "Authorization": f"Bearer {token}",
            "Content-Type": "application/json",
            "Accept": "application/json",
        }

    def _request(self, method: str, path: str, body: Optional[Dict[str, Any]]) -> requests.Response:
        headers = self._headers()
        url = self.base_url + path
        _logger.debug("%s %s", method, url)
        try:
            return self._session.request(
                method,
                url,
                json=body,
                headers=headers,
                timeout=self.timeout,
                allow_redirects=False,
            )
        except requests.exceptions.Timeout as exc:
            raise TransportError(f"Room service did not answer within {self.timeout:g}s.") from exc
        except requests.exceptions.RequestException as exc:
            raise TransportError(f"Could not reach the room service: {exc}") from exc

    def _check_success(self, reply: requests.Response) -> Dict[str, Any]:
        try:
            payload = reply.json()
        except ValueError as exc:
            raise ProtocolError(
                f"Room service sent an unreadable reply (HTTP {reply.status_code})."
            ) from exc
        if not isinstance(payload, dict):
            raise ProtocolError("Room service reply is not a JSON object.")
        success = payload.get("success")
        if not isinstance(success, bool):
            raise ProtocolError("Room service reply has no success flag.")
        if not success:
            message = payload.get("message")
            if not isinstance(message, str) or not message:
                raise ProtocolError("Room service declined without a reason.")
            _logger.info("Room request rejected (HTTP %s): %s", reply.status_code, message)
            raise RoomRejected(message, status_code=reply.status_code)
        if not 200 <= reply.status_code < 300:
            raise ProtocolError(f"Room service reported success with HTTP {reply.status_code}.")
        return payload

    def _parse_room_reply(self, reply: requests.Response) -> ApiResponse:
        payload = self._check_success(reply)
        room_id = payload.get("roomId")
        if room_id is not None and (not isinstance(room_id, str) or not is_valid_room_id(room_id)):
            raise ProtocolError("Room service returned an invalid room code.")
        return ApiResponse(
            success=True,
            room_id=room_id,
            message=self._optional_str(payload, "message"),
            host=self._optional_str(payload, "host"),
            players=self._players(payload),
        )

    @staticmethod
    def _optional_str(payload: Dict[str, Any], key: str) -> Optional[str]:
        value = payload.get(key)
        if value is None:
            return None
        if not isinstance(value, str):
            raise ProtocolError(f"Room service field {key!r} has an unexpected type.")
        return value

    @staticmethod
    def _players(payload: Dict[str, Any]) -> Tuple[str, ...]:
        players = payload.get("players")
        if players is None:
            return ()
        if not isinstance(players, list) or not all(isinstance(item, str) for item in players):
            raise ProtocolError("Room service returned a malformed player list.")
        return tuple(players)


__all__ = [
    "ApiResponse",
    "InvalidInput",
    "ProtocolError",
    "RoomApiClient",
    "RoomApiError",
    "RoomRejected",
    "RoomStatus",
    "TransportError",
]
