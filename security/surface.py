"""Embedded content surface: interface plus Android WebView hardening."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Mapping, Optional

_logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SurfaceSettings:
    """WebView switches applied before any page is loaded."""

    javascript: bool = True
    dom_storage: bool = True
    file_access: bool = False
    file_access_from_file_urls: bool = False
    universal_access_from_file_urls: bool = False
    content_access: bool = False
    geolocation: bool = False
    database: bool = False
    safe_browsing: bool = True


class ContentSurface:
    """What the host needs from a renderer able to run remote pages."""

    def load_url(self, url: str) -> None:
        raise NotImplementedError

    def evaluate_script(self, script: str) -> None:
        raise NotImplementedError

    def close(self) -> None:
        """Release the renderer. Optional for implementations."""


def apply_surface_settings(webview: Optional[object], settings: SurfaceSettings | None = None) -> bool:
    """Apply *settings* to an Android ``WebView``.

    Returns ``False`` when there is nothing to configure or when pyjnius is
    unavailable (desktop runs), in which case the caller must not load
    remote content into that view.
    """

    if webview is None:
        return False
    settings = settings or SurfaceSettings()
    try:
        from jnius import autoclass

        web_settings = webview.getSettings()
        web_settings.setJavaScriptEnabled(settings.javascript)
        web_settings.setDomStorageEnabled(settings.dom_storage)
        web_settings.setAllowFileAccess(settings.file_access)
        web_settings.setAllowFileAccessFromFileURLs(settings.file_access_from_file_urls)
        web_settings.setAllowUniversalAccessFromFileURLs(settings.universal_access_from_file_urls)
        web_settings.setAllowContentAccess(settings.content_access)
        web_settings.setGeolocationEnabled(settings.geolocation)
        web_settings.setDatabaseEnabled(settings.database)
        build_version = autoclass("android.os.Build$VERSION")
        if build_version.SDK_INT >= 26:
            web_settings.setSafeBrowsingEnabled(settings.safe_browsing)
        _logger.info("Applied content surface hardening")
        return True
    except Exception as exc:  # pragma: no cover - environment dependent
        _logger.debug("Could not harden content surface: %s", exc)
        return False


def _on_ui_thread(fn: Callable[[], None]) -> Callable[[], None]:
    try:
        from android.runnable import run_on_ui_thread
    except ImportError:
        return fn
    return run_on_ui_thread(fn)


class AndroidWebSurface(ContentSurface):  # pragma: no cover - requires Android runtime
    """Full-screen Android ``WebView`` driven through pyjnius.

    Navigation interception and the ``@JavascriptInterface`` objects are Java
    classes shipped with the APK; they forward to :class:`ContentBridge` and
    are handed in here already constructed.
    """

    def __init__(
        self,
        *,
        settings: SurfaceSettings | None = None,
        webview_client: Optional[object] = None,
        javascript_interfaces: Mapping[str, object] | None = None,
    ) -> None:
        self.settings = settings or SurfaceSettings()
        self._webview_client = webview_client
        self._interfaces = dict(javascript_interfaces or {})
        self._webview: Optional[object] = None

    def open(self) -> None:
        from jnius import autoclass

        def _create() -> None:
            activity = autoclass("org.kivy.android.PythonActivity").mActivity
            webview = autoclass("android.webkit.WebView")(activity)
            if not apply_surface_settings(webview, self.settings):
                raise RuntimeError("Content surface could not be hardened")
            if self._webview_client is not None:
                webview.setWebViewClient(self._webview_client)
            for name, interface in self._interfaces.items():
                webview.addJavascriptInterface(interface, name)
            activity.setContentView(webview)
            self._webview = webview

        _on_ui_thread(_create)()

    def load_url(self, url: str) -> None:
        _on_ui_thread(lambda: self._webview.loadUrl(url))()

    def evaluate_script(self, script: str) -> None:
        _on_ui_thread(lambda: self._webview.evaluateJavascript(script, None))()

    def close(self) -> None:
        def _destroy() -> None:
            if self._webview is not None:
                self._webview.destroy()
                self._webview = None

        _on_ui_thread(_destroy)()


__all__ = [
    "AndroidWebSurface",
    "ContentSurface",
    "SurfaceSettings",
    "apply_surface_settings",
]
