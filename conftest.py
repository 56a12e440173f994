# SPDX-FileCopyrightText: 2025 ConnectMe contributors
# SPDX-License-Identifier: MIT
#
# conftest.py: test environment
#   • repo root on sys.path (flat namespace packages)
#   • audit journal and credential store redirected into tmp_path

from __future__ import annotations

import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


@pytest.fixture(autouse=True)
def _isolated_state(tmp_path, monkeypatch):
    """Keep audit entries and credentials out of the user's home directory."""

    import audit.logger as audit_logger

    monkeypatch.setenv("CMUC_AUDIT_DIR", str(tmp_path / "audit"))
    monkeypatch.setenv("CMUC_STATE_DIR", str(tmp_path / "state"))
    monkeypatch.setattr(audit_logger, "_journal", audit_logger.AuditJournal(tmp_path / "audit"))
    yield
