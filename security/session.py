"""Room session state machine.

Drives a user through ``unauthenticated -> authenticated -> room_pending ->
in_room`` and owns the credential and the current :class:`RoomSession`.
All transitions go through one lock; listeners are notified after the lock
is released.
"""
from __future__ import annotations

import itertools
import logging
import re
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Callable, List, Optional

from audit.logger import try_record_event
from rooms.api import ApiResponse, ProtocolError
from rooms.codes import RoomCodeGenerator
from rooms.credentials import CredentialStore
from rooms.models import Credential, RoomSession
from security.validation import (
    ValidationError,
    ValidationIssue,
    collect_issues,
    is_valid_room_id,
    normalize_room_id,
    normalize_username,
    validate_room_id,
    validate_username,
)

_logger = logging.getLogger(__name__)

# RFC 6750 b64token
TOKEN_REGEX = re.compile(r"[A-Za-z0-9._~+/-]+=*")
TOKEN_MAX_LENGTH = 512


class SessionError(RuntimeError):
    """Raised when a transition is not allowed from the current state."""


class SessionState(str, Enum):
    UNAUTHENTICATED = "unauthenticated"
    AUTHENTICATED = "authenticated"
    ROOM_PENDING = "room_pending"
    IN_ROOM = "in_room"


class RoomAction(str, Enum):
    CREATE = "create"
    JOIN = "join"


@dataclass(frozen=True)
class PendingOperation:
    op_id: int
    action: RoomAction
    room_id: str
    username: str


StateListener = Callable[[SessionState], None]


class SessionStateMachine:
    def __init__(
        self,
        store: CredentialStore | None = None,
        *,
        code_generator: RoomCodeGenerator | None = None,
    ) -> None:
        self.store = store or CredentialStore()
        self.code_generator = code_generator or RoomCodeGenerator()
        self._lock = threading.RLock()
        self._state = SessionState.UNAUTHENTICATED
        self._credential: Optional[Credential] = None
        self._room: Optional[RoomSession] = None
        self._pending: Optional[PendingOperation] = None
        self._op_ids = itertools.count(1)
        self._listeners: List[StateListener] = []

    # Observers ------------------------------------------------------------------
    @property
    def state(self) -> SessionState:
        with self._lock:
            return self._state

    @property
    def credential(self) -> Optional[Credential]:
        with self._lock:
            return self._credential

    @property
    def room_session(self) -> Optional[RoomSession]:
        with self._lock:
            return self._room

    @property
    def pending(self) -> Optional[PendingOperation]:
        with self._lock:
            return self._pending

    def current_token(self) -> Optional[str]:
        with self._lock:
            return self._credential.token if self._credential else None

    def subscribe(self, listener: StateListener) -> None:
        self._listeners.append(listener)

    def _notify(self, state: SessionState) -> None:
        for listener in list(self._listeners):
            listener(state)

    def _set_state(self, state: SessionState) -> None:
        previous = self._state
        self._state = state
        _logger.info("Session state %s -> %s", previous.value, state.value)

    # Transitions ----------------------------------------------------------------
    def restore(self) -> SessionState:
        """Decide the initial state from persisted credentials."""

        credential = self.store.load()
        with self._lock:
            if self._state is not SessionState.UNAUTHENTICATED:
                return self._state
            if credential is None:
                return self._state
            self._credential = credential
            self._set_state(SessionState.AUTHENTICATED)
            state = self._state
        try_record_event("session.restored", details={"username": credential.username})
        self._notify(state)
        return state

    def authenticate(self, username: str, token: str) -> Credential:
        """Accept the auth callback from the trusted entry surface."""

        cleaned = normalize_username(username)
        issues = validate_username(cleaned)
        if (
            not isinstance(token, str)
            or len(token) > TOKEN_MAX_LENGTH
            or TOKEN_REGEX.fullmatch(token) is None
        ):
            issues.append(ValidationIssue("token", "Sign-in returned an unusable token."))
        if issues:
            try_record_event("session.auth_rejected", details={"fields": [issue.field for issue in issues]})
            raise ValidationError(issues)

        credential = Credential(username=cleaned, token=token)
        with self._lock:
            if self._state is not SessionState.UNAUTHENTICATED:
                raise SessionError("Already signed in.")
            self.store.save(credential)
            self._credential = credential
            self._set_state(SessionState.AUTHENTICATED)
            state = self._state
        try_record_event("session.authenticated", details={"username": cleaned})
        self._notify(state)
        return credential

    def begin_room_request(self, action: RoomAction, raw_room_id: Optional[str]) -> PendingOperation:
        """Validate input and enter ``room_pending``.

        Raises :class:`ValidationError` (state unchanged) for bad input and
        :class:`SessionError` when not in ``authenticated``, which also
        rejects a second request while one is in flight.
        """

        action = RoomAction(action)
        with self._lock:
            if self._state is SessionState.ROOM_PENDING:
                raise SessionError("A room request is already in progress.")
            if self._state is not SessionState.AUTHENTICATED or self._credential is None:
                raise SessionError("Sign in and leave the current room first.")

            room_id = normalize_room_id(raw_room_id)
            if not room_id and action is RoomAction.CREATE:
                room_id = self.code_generator.generate()
            username = normalize_username(self._credential.username)
            issues = collect_issues(validate_room_id(room_id), validate_username(username))
            if issues:
                raise ValidationError(issues)

            operation = PendingOperation(
                op_id=next(self._op_ids),
                action=action,
                room_id=room_id,
                username=username,
            )
            self._pending = operation
            self._set_state(SessionState.ROOM_PENDING)
            state = self._state
        try_record_event(
            "room.requested",
            details={"action": action.value, "room_id": room_id, "op_id": operation.op_id},
        )
        self._notify(state)
        return operation

    def _is_current(self, operation: PendingOperation) -> bool:
        return self._state is SessionState.ROOM_PENDING and self._pending == operation

    def complete_room_request(
        self, operation: PendingOperation, response: ApiResponse
    ) -> Optional[RoomSession]:
        """Enter the room confirmed by the server.

        The server's room code wins over the requested one. Returns ``None``
        without touching state when *operation* is no longer pending. Raises
        :class:`ProtocolError` (after reverting to ``authenticated``) when
        the confirmed code fails the allow-list.
        """

        session: Optional[RoomSession] = None
        with self._lock:
            current = self._is_current(operation)
            if current:
                room_id = response.room_id
                if room_id is None and operation.action is RoomAction.JOIN:
                    room_id = operation.room_id
                self._pending = None
                if room_id is not None and is_valid_room_id(room_id) and self._credential is not None:
                    session = RoomSession(
                        room_id=room_id,
                        username=operation.username,
                        token=self._credential.token,
                        is_host=operation.action is RoomAction.CREATE,
                    )
                    self._room = session
                    self._set_state(SessionState.IN_ROOM)
                else:
                    self._set_state(SessionState.AUTHENTICATED)
                state = self._state
        if not current:
            try_record_event("room.stale_reply", details={"op_id": operation.op_id})
            return None
        if session is None:
            try_record_event("room.failed", details={"op_id": operation.op_id, "error": "invalid room code"})
            self._notify(state)
            raise ProtocolError("Room service returned an invalid room code.")
        try_record_event(
            "room.entered",
            details={"room_id": session.room_id, "host": session.is_host, "op_id": operation.op_id},
        )
        self._notify(state)
        return session

    def fail_room_request(self, operation: PendingOperation, error: BaseException | str) -> bool:
        with self._lock:
            if not self._is_current(operation):
                stale = True
            else:
                stale = False
                self._pending = None
                self._set_state(SessionState.AUTHENTICATED)
                state = self._state
        if stale:
            try_record_event("room.stale_reply", details={"op_id": operation.op_id})
            return False
        try_record_event(
            "room.failed",
            details={"op_id": operation.op_id, "error": str(error), "kind": type(error).__name__},
        )
        self._notify(state)
        return True

    def cancel_room_request(self) -> bool:
        with self._lock:
            operation = self._pending
            if self._state is not SessionState.ROOM_PENDING or operation is None:
                return False
            self._pending = None
            self._set_state(SessionState.AUTHENTICATED)
            state = self._state
        try_record_event("room.cancelled", details={"op_id": operation.op_id})
        self._notify(state)
        return True

    def leave_room(self) -> None:
        with self._lock:
            if self._state is not SessionState.IN_ROOM or self._room is None:
                raise SessionError("Not in a room.")
            room_id = self._room.room_id
            self._room = None
            self._set_state(SessionState.AUTHENTICATED)
            state = self._state
        try_record_event("room.left", details={"room_id": room_id})
        self._notify(state)

    def logout(self) -> None:
        with self._lock:
            self._credential = None
            self._room = None
            self._pending = None
            self.store.clear()
            self._set_state(SessionState.UNAUTHENTICATED)
            state = self._state
        try_record_event("session.logged_out", details={})
        self._notify(state)

    def require_credential(self) -> Credential:
        with self._lock:
            if self._credential is None:
                raise SessionError("Not signed in.")
            return self._credential


__all__ = [
    "PendingOperation",
    "RoomAction",
    "SessionError",
    "SessionState",
    "SessionStateMachine",
]
