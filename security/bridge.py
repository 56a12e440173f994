"""The narrow channel between the host and the embedded content surface.

Three crossings are guarded here:

* host -> content: session values injected into the page's global scope,
  each through its own character filter right before the script is built;
* content -> host: a default-deny table of capabilities per surface;
* navigation: every target is checked against the single trusted origin
  (plus loopback during development) before the surface may load it.
"""
from __future__ import annotations

import inspect
import logging
import re
from enum import Enum
from typing import Callable, Dict, Optional
from urllib.parse import urlencode, urlsplit

from audit.logger import try_record_event
from rooms.models import RoomSession
from security.policy import RoomPolicy, policy as default_policy
from security.session import SessionState, SessionStateMachine
from security.surface import ContentSurface
from security.validation import ValidationError, is_valid_room_id, is_valid_username

_logger = logging.getLogger(__name__)

_LOOPBACK_HOSTS = frozenset({"localhost", "127.0.0.1"})
_DEFAULT_PORTS = {"http": 80, "https": 443}

# Injection-site allow-lists, independent of security.validation.
_NOT_ROOM_CHAR = re.compile(r"[^A-Z]")
_NOT_USERNAME_CHAR = re.compile(r"[^A-Za-z0-9_-]")
_NOT_TOKEN_CHAR = re.compile(r"[^A-Za-z0-9]")


class BridgeViolation(RuntimeError):
    """A navigation, injection or capability call failed bridge policy."""

    def __init__(self, message: str, *, target: str = "") -> None:
        super().__init__(message)
        self.target = target


class SurfaceKind(str, Enum):
    ENTRY = "entry"
    ROOM = "room"


class NavigationDecision(str, Enum):
    ALLOW = "allow"
    BLOCK = "block"
    AUTH_COMPLETE = "auth_complete"


def filter_room_id(value: str) -> str:
    return _NOT_ROOM_CHAR.sub("", value)


def filter_username(value: str) -> str:
    return _NOT_USERNAME_CHAR.sub("", value)


def filter_token(value: str) -> str:
    return _NOT_TOKEN_CHAR.sub("", value)


def injection_script(session: RoomSession) -> str:
    room_id = filter_room_id(session.room_id)
    username = filter_username(session.username)
    token = filter_token(session.token)
    is_host = "true" if session.is_host is True else "false"
    return (
        f"window.ROOM_ID='{room_id}'; window.USERNAME='{username}'; "
        f"window.IS_HOST={is_host}; window.TOKEN='{token}';"
    )


NoticeCallback = Callable[[str], None]
EventCallback = Callable[[str, str], None]
RouteCallback = Callable[[], None]
Scheduler = Callable[[Callable[[], None]], None]


class ContentBridge:
    def __init__(
        self,
        machine: SessionStateMachine,
        *,
        policy: RoomPolicy | None = None,
        notice_cb: NoticeCallback | None = None,
        event_cb: EventCallback | None = None,
        on_authenticated: RouteCallback | None = None,
        on_left_room: RouteCallback | None = None,
        scheduler: Scheduler | None = None,
    ) -> None:
        self.machine = machine
        self.policy = policy or default_policy
        self.notice_cb = notice_cb
        self.event_cb = event_cb
        self.on_authenticated = on_authenticated
        self.on_left_room = on_left_room
        self.scheduler = scheduler or (lambda fn: fn())
        trusted = urlsplit(self.policy.trusted_origin)
        self._trusted_scheme = trusted.scheme
        self._trusted_host = trusted.hostname
        self._trusted_port = trusted.port or _DEFAULT_PORTS.get(trusted.scheme)
        self._capabilities: Dict[SurfaceKind, Dict[str, Callable[..., None]]] = {
            SurfaceKind.ENTRY: {"onAuthSuccess": self._on_auth_success},
            SurfaceKind.ROOM: {
                "onGameEvent": self._on_game_event,
                "leaveRoom": self._on_leave_room,
            },
        }

    # URLs -------------------------------------------------------------------------
    def entry_url(self) -> str:
        return self.policy.auth_page_url

    def room_url(self, session: RoomSession) -> str:
        if not is_valid_room_id(session.room_id) or not is_valid_username(session.username):
            raise BridgeViolation("Room session values failed validation", target="room_url")
        query = urlencode(
            {
                "room": session.room_id,
                "username": session.username,
                "host": "true" if session.is_host else "false",
            }
        )
        return f"{self.policy.room_page_url}?{query}"

    # Navigation -------------------------------------------------------------------
    def _is_trusted(self, url: str) -> bool:
        try:
            parts = urlsplit(url)
            port = parts.port
        except ValueError:
            return False
        if parts.username is not None or parts.password is not None:
            return False
        host = parts.hostname
        if (
            parts.scheme == self._trusted_scheme
            and host == self._trusted_host
            and (port or _DEFAULT_PORTS.get(parts.scheme)) == self._trusted_port
        ):
            return True
        if self.policy.allow_loopback and parts.scheme == "http" and host in _LOOPBACK_HOSTS:
            return port is not None
        return False

    def _is_auth_complete(self, url: str) -> bool:
        parts = urlsplit(url)
        return (
            parts.scheme == self._trusted_scheme
            and parts.hostname == self._trusted_host
            and parts.path == self.policy.auth_complete_path
        )

    def check_navigation(self, url: str) -> None:
        """Raise :class:`BridgeViolation` unless *url* may be loaded."""

        if not self._is_trusted(url):
            raise BridgeViolation("External navigation blocked", target=url)

    def intercept_navigation(self, url: str, surface: SurfaceKind) -> NavigationDecision:
        """Decide what the surface may do with a navigation attempt.

        The decision is returned at once. For an auth-complete URL the
        sign-in follow-up is handed to ``scheduler``.
        """

        try:
            self.check_navigation(url)
        except BridgeViolation as exc:
            _logger.warning("Blocked navigation on %s surface", surface.value)
            try_record_event(
                "bridge.navigation_blocked",
                details={"surface": surface.value, "target": _host_of(url)},
            )
            self._notice(str(exc))
            return NavigationDecision.BLOCK

        if surface is SurfaceKind.ENTRY and self._is_auth_complete(url):
            self.scheduler(self._complete_sign_in)
            return NavigationDecision.AUTH_COMPLETE
        return NavigationDecision.ALLOW

    def _complete_sign_in(self) -> None:
        state = self.machine.restore()
        try_record_event("bridge.auth_complete", details={"state": state.value})
        if state is SessionState.UNAUTHENTICATED:
            self._notice("Sign-in has not finished yet.")
            return
        if self.on_authenticated:
            self.on_authenticated()

    # Injection --------------------------------------------------------------------
    def on_page_finished(self, url: str, surface: ContentSurface) -> Optional[str]:
        """Inject the room context into a freshly loaded room page."""

        session = self.machine.room_session
        if session is None or self.machine.state is not SessionState.IN_ROOM:
            return None
        if not self._is_trusted(url):
            try_record_event("bridge.injection_refused", details={"target": _host_of(url)})
            raise BridgeViolation("Refusing to inject room context into an untrusted page", target=url)
        script = injection_script(session)
        surface.evaluate_script(script)
        try_record_event("bridge.injected", details={"room_id": session.room_id})
        return script

    # Capabilities -----------------------------------------------------------------
    def dispatch(self, surface: SurfaceKind, capability: str, *args: str) -> None:
        """Invoke a content -> host capability; anything not listed is denied."""

        handler = self._capabilities.get(surface, {}).get(capability)
        if handler is None:
            try_record_event(
                "bridge.capability_denied",
                details={"surface": surface.value, "capability": str(capability)[:64]},
            )
            raise BridgeViolation(f"Capability {capability!r} is not exposed", target=str(capability))
        try:
            inspect.signature(handler).bind(*args)
        except TypeError as exc:
            raise BridgeViolation(f"Bad arguments for {capability!r}", target=capability) from exc
        if not all(isinstance(arg, str) for arg in args):
            raise BridgeViolation(f"Arguments for {capability!r} must be strings", target=capability)
        handler(*args)

    def _on_auth_success(self, username: str, token: str) -> None:
        if self.machine.state is SessionState.UNAUTHENTICATED:
            try:
                self.machine.authenticate(username, token)
            except ValidationError as exc:
                self._notice(str(exc))
                return
        if self.on_authenticated:
            self.on_authenticated()

    def _on_game_event(self, event: str, data: str) -> None:
        _logger.debug("Game event %r (%d bytes)", event[:64], len(data))
        if self.event_cb:
            self.event_cb(event, data)

    def _on_leave_room(self) -> None:
        self.machine.leave_room()
        if self.on_left_room:
            self.on_left_room()

    def _notice(self, message: str) -> None:
        if self.notice_cb:
            self.notice_cb(message)


def _host_of(url: str) -> str:
    try:
        return urlsplit(url).hostname or ""
    except ValueError:
        return ""


__all__ = [
    "BridgeViolation",
    "ContentBridge",
    "NavigationDecision",
    "SurfaceKind",
    "filter_room_id",
    "filter_token",
    "filter_username",
    "injection_script",
]
