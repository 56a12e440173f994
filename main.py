from __future__ import annotations

import logging
from datetime import datetime
from typing import List, Optional

from kivy.clock import Clock
from kivy.core.window import Window
from kivy.lang import Builder
from kivy.properties import BooleanProperty, StringProperty
from kivy.uix.screenmanager import Screen, ScreenManager
from kivy.utils import platform

from kivymd.app import MDApp
from kivymd.uix.button import MDFlatButton
from kivymd.uix.dialog import MDDialog

from audit.logger import try_record_event
from rooms.api import RoomApiClient
from rooms.credentials import CredentialStore
from security.bridge import BridgeViolation, ContentBridge, NavigationDecision, SurfaceKind
from security.controller import RoomController, RoomOutcome
from security.policy import policy
from security.session import SessionError, SessionState, SessionStateMachine
from security.surface import AndroidWebSurface, ContentSurface

_logger = logging.getLogger("connectme")


# ---------------------------------------------------------------------------
# KV LAYOUT
# ---------------------------------------------------------------------------

KV = """
ScreenManager:
    AuthScreen:
    RoomsScreen:
    GameScreen:

<AuthScreen>:
    name: "auth"
    MDFloatLayout:
        MDCard:
            size_hint: 0.6, 0.7
            pos_hint: {"center_x": 0.5, "center_y": 0.55}
            orientation: "vertical"
            padding: dp(24)
            spacing: dp(18)
            MDLabel:
                text: "ConnectMe"
                halign: "center"
                font_style: "H4"
            MDLabel:
                text: "Sign in to create or join a room"
                halign: "center"
                theme_text_color: "Secondary"
            MDRaisedButton:
                text: "Sign in"
                pos_hint: {"center_x": 0.5}
                on_release: root.open_sign_in()
            MDTextField:
                id: dev_username
                hint_text: "Username (desktop build)"
                opacity: 0 if root.embedded else 1
                disabled: root.embedded
            MDTextField:
                id: dev_token
                hint_text: "Token (desktop build)"
                password: True
                opacity: 0 if root.embedded else 1
                disabled: root.embedded
        MDLabel:
            text: root.notice
            halign: "center"
            theme_text_color: "Error"
            pos_hint: {"center_x": 0.5, "center_y": 0.1}

<RoomsScreen>:
    name: "rooms"
    MDBoxLayout:
        orientation: "vertical"
        padding: dp(24)
        spacing: dp(18)
        MDLabel:
            text: root.welcome
            font_style: "H5"
            size_hint_y: None
            height: self.texture_size[1] + dp(8)
        MDTextField:
            id: room_code
            hint_text: "Room code (leave empty to create a random one)"
            max_text_length: 4
            disabled: root.busy
        MDBoxLayout:
            size_hint_y: None
            height: dp(48)
            spacing: dp(12)
            MDRaisedButton:
                text: "Create room"
                on_release: root.create_room()
                disabled: root.busy
            MDRaisedButton:
                text: "Join room"
                on_release: root.join_room()
                disabled: root.busy
            MDFlatButton:
                text: "Log out"
                on_release: root.logout()
                disabled: root.busy
        MDLabel:
            text: root.status
            theme_text_color: "Secondary"

<GameScreen>:
    name: "game"
    MDBoxLayout:
        orientation: "vertical"
        padding: dp(16)
        spacing: dp(12)
        MDLabel:
            text: root.room_info
            font_style: "H6"
            size_hint_y: None
            height: self.texture_size[1] + dp(8)
        MDLabel:
            text: root.events
            theme_text_color: "Secondary"
        MDRaisedButton:
            text: "Leave room"
            on_release: root.confirm_leave()
"""


def _show_dialog(title: str, text: str) -> None:
    button = MDFlatButton(text="OK")
    dialog = MDDialog(title=title, text=text, buttons=[button])
    button.bind(on_release=lambda *_: dialog.dismiss())
    dialog.open()


# ---------------------------------------------------------------------------
# SCREENS
# ---------------------------------------------------------------------------

class AuthScreen(Screen):
    embedded = BooleanProperty(platform == "android")
    notice = StringProperty("")

    def open_sign_in(self) -> None:
        app = MDApp.get_running_app()
        if self.embedded:
            app.open_surface(SurfaceKind.ENTRY, app.bridge.entry_url())
            return
        # Desktop builds have no embedded renderer; the fields stand in for
        # the auth page's callback and go through the same capability.
        app.bridge.dispatch(
            SurfaceKind.ENTRY,
            "onAuthSuccess",
            self.ids.dev_username.text,
            self.ids.dev_token.text,
        )


class RoomsScreen(Screen):
    busy = BooleanProperty(False)
    welcome = StringProperty("")
    status = StringProperty("")

    def on_pre_enter(self, *args) -> None:
        credential = MDApp.get_running_app().machine.credential
        self.welcome = f"Welcome, {credential.username}" if credential else ""

    def create_room(self) -> None:
        self._start("Creating room...", MDApp.get_running_app().controller.create_room)

    def join_room(self) -> None:
        self._start("Joining room...", MDApp.get_running_app().controller.join_room)

    def _start(self, label: str, start) -> None:
        if self.busy:
            return
        self.busy = True
        self.status = label
        start(self.ids.room_code.text, completion_cb=self._on_complete)

    def _on_complete(self, outcome: RoomOutcome) -> None:
        self.busy = False
        if outcome.ok:
            self.status = ""
            self.ids.room_code.text = ""
            return
        self.status = ""
        _show_dialog("Room", outcome.error or "Room request failed.")

    def logout(self) -> None:
        MDApp.get_running_app().machine.logout()


class GameScreen(Screen):
    room_info = StringProperty("")
    events = StringProperty("")

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        self._events: List[str] = []

    def on_pre_enter(self, *args) -> None:
        session = MDApp.get_running_app().machine.room_session
        self.room_info = session.describe() if session else ""
        self._events = []
        self.events = ""

    def add_event(self, message: str) -> None:
        stamp = datetime.now().strftime("%H:%M:%S")
        self._events.append(f"[{stamp}] {message}")
        self._events = self._events[-8:]
        self.events = "\n".join(self._events)

    def confirm_leave(self) -> None:
        app = MDApp.get_running_app()
        session = app.machine.room_session
        if session is None:
            return
        yes = MDFlatButton(text="Yes")
        no = MDFlatButton(text="No")
        dialog = MDDialog(
            title="Leave Room",
            text=f"Are you sure you want to leave room {session.room_id}?",
            buttons=[no, yes],
        )
        no.bind(on_release=lambda *_: dialog.dismiss())

        def _leave(*_args) -> None:
            dialog.dismiss()
            app.bridge.dispatch(SurfaceKind.ROOM, "leaveRoom")

        yes.bind(on_release=_leave)
        dialog.open()


# ---------------------------------------------------------------------------
# ANDROID SURFACE GLUE
# ---------------------------------------------------------------------------

def _build_android_surface(app: "ConnectMeApp", kind: SurfaceKind) -> ContentSurface:  # pragma: no cover
    """Wire a WebView to the bridge through the APK's Java shim classes."""

    from jnius import PythonJavaClass, autoclass, java_method

    class _HostCallbacks(PythonJavaClass):
        __javainterfaces__ = ["com/connectmeifucan/bridge/HostCallbacks"]
        __javacontext__ = "app"

        @java_method("(Ljava/lang/String;)Z")
        def onNavigate(self, url):  # noqa: N802
            decision = app.bridge.intercept_navigation(url, kind)
            return decision is not NavigationDecision.ALLOW

        @java_method("(Ljava/lang/String;)V")
        def onPageFinished(self, url):  # noqa: N802
            Clock.schedule_once(lambda *_: app.inject_room_context(url))

        @java_method("(Ljava/lang/String;[Ljava/lang/String;)V")
        def onCapability(self, name, args):  # noqa: N802
            values = list(args or [])
            Clock.schedule_once(lambda *_: app.dispatch_capability(kind, name, values))

    callbacks = _HostCallbacks()
    app._java_refs.append(callbacks)
    client = autoclass("com.connectmeifucan.bridge.PolicyWebViewClient")(callbacks)
    interface = autoclass("com.connectmeifucan.bridge.CapabilityInterface")(callbacks)
    name = "AndroidApp" if kind is SurfaceKind.ENTRY else "AndroidGame"
    surface = AndroidWebSurface(webview_client=client, javascript_interfaces={name: interface})
    surface.open()
    return surface


# ---------------------------------------------------------------------------
# APPLICATION
# ---------------------------------------------------------------------------

class ConnectMeApp(MDApp):
    machine: SessionStateMachine
    controller: RoomController
    bridge: ContentBridge

    def build(self):
        self.title = "ConnectMe"
        if platform != "android":
            Window.size = (960, 600)

        self._surface: Optional[ContentSurface] = None
        self._java_refs: List[object] = []
        self.machine = SessionStateMachine(CredentialStore())
        api = RoomApiClient(self.machine.current_token)
        on_ui = lambda fn: Clock.schedule_once(lambda *_: fn())  # noqa: E731
        self.controller = RoomController(self.machine, api, scheduler=on_ui)
        self.bridge = ContentBridge(
            self.machine,
            notice_cb=lambda message: on_ui(lambda: self.notify(message)),
            event_cb=self._on_game_event,
            scheduler=on_ui,
        )
        self.machine.subscribe(
            lambda state: Clock.schedule_once(lambda *_: self._route(state))
        )

        self.sm: ScreenManager = Builder.load_string(KV)
        self._route(self.machine.restore())
        return self.sm

    # --- routing ---

    def _route(self, state: SessionState) -> None:
        if state is SessionState.ROOM_PENDING:
            return
        if state is SessionState.IN_ROOM:
            self.sm.current = "game"
            session = self.machine.room_session
            if session is not None and platform == "android":
                self.open_surface(SurfaceKind.ROOM, self.bridge.room_url(session))
            return
        self.close_surface()
        self.sm.current = "rooms" if state is SessionState.AUTHENTICATED else "auth"

    def open_surface(self, kind: SurfaceKind, url: str) -> None:
        self.close_surface()
        try:
            self.bridge.check_navigation(url)
        except BridgeViolation as exc:
            self.notify(str(exc))
            return
        self._surface = _build_android_surface(self, kind)
        self._surface.load_url(url)

    def close_surface(self) -> None:
        if self._surface is not None:
            self._surface.close()
            self._surface = None
        self._java_refs.clear()

    # --- bridge glue ---

    def inject_room_context(self, url: str) -> None:
        if self._surface is None:
            return
        try:
            self.bridge.on_page_finished(url, self._surface)
        except BridgeViolation as exc:
            self.notify(str(exc))

    def dispatch_capability(self, kind: SurfaceKind, name: str, args: List[str]) -> None:
        try:
            self.bridge.dispatch(kind, name, *args)
        except (BridgeViolation, SessionError) as exc:
            _logger.warning("Capability %r refused: %s", name, exc)

    def _on_game_event(self, event: str, data: str) -> None:
        game: GameScreen = self.sm.get_screen("game")
        game.add_event(f"Game event: {event}")

    def notify(self, message: str) -> None:
        screen = self.sm.current_screen
        if isinstance(screen, AuthScreen):
            screen.notice = message
        elif isinstance(screen, GameScreen):
            screen.add_event(message)
        else:
            _show_dialog("Notice", message)

    def on_stop(self) -> None:
        self.close_surface()
        self.machine.cancel_room_request()
        try_record_event("app.stopped", details={"state": self.machine.state.value})


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    if policy.allow_loopback:
        _logger.info("Loopback development origins are allowed")
    ConnectMeApp().run()
