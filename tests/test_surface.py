import sys
from types import SimpleNamespace

import pytest

from security.surface import ContentSurface, SurfaceSettings, apply_surface_settings


class RecordingSettings:
    def __init__(self):
        self.calls = {}

    def __getattr__(self, name):
        def _record(value):
            self.calls[name] = value

        return _record


class FakeWebView:
    def __init__(self):
        self.settings = RecordingSettings()

    def getSettings(self):  # noqa: N802
        return self.settings


def fake_jnius(sdk_int):
    return SimpleNamespace(autoclass=lambda name: SimpleNamespace(SDK_INT=sdk_int))


def test_hardening_switches(monkeypatch):
    monkeypatch.setitem(sys.modules, "jnius", fake_jnius(30))
    webview = FakeWebView()

    assert apply_surface_settings(webview)

    calls = webview.settings.calls
    assert calls["setJavaScriptEnabled"] is True
    assert calls["setDomStorageEnabled"] is True
    assert calls["setAllowFileAccess"] is False
    assert calls["setAllowFileAccessFromFileURLs"] is False
    assert calls["setAllowUniversalAccessFromFileURLs"] is False
    assert calls["setAllowContentAccess"] is False
    assert calls["setGeolocationEnabled"] is False
    assert calls["setDatabaseEnabled"] is False
    assert calls["setSafeBrowsingEnabled"] is True


def test_safe_browsing_skipped_on_old_devices(monkeypatch):
    monkeypatch.setitem(sys.modules, "jnius", fake_jnius(24))
    webview = FakeWebView()

    assert apply_surface_settings(webview, SurfaceSettings())
    assert "setSafeBrowsingEnabled" not in webview.settings.calls


def test_desktop_runs_report_unhardened(monkeypatch):
    monkeypatch.setitem(sys.modules, "jnius", None)
    assert apply_surface_settings(FakeWebView()) is False
    assert apply_surface_settings(None) is False


def test_base_surface_is_abstract():
    surface = ContentSurface()
    with pytest.raises(NotImplementedError):
        surface.load_url("https://connectmeifucan.com/")
    with pytest.raises(NotImplementedError):
        surface.evaluate_script("1")
    surface.close()
