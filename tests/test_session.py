import random

import pytest

from audit.logger import get_journal
from rooms.api import ApiResponse, ProtocolError, RoomRejected
from rooms.codes import RoomCodeGenerator
from rooms.credentials import CredentialStore
from rooms.models import Credential, RoomSession
from security.session import (
    RoomAction,
    SessionError,
    SessionState,
    SessionStateMachine,
)
from security.validation import ValidationError


def make_machine(tmp_path, *, seed=7):
    store = CredentialStore(tmp_path / "credentials.json")
    return SessionStateMachine(store, code_generator=RoomCodeGenerator(random.Random(seed)))


def signed_in(tmp_path, username="alice", token="tok123"):
    machine = make_machine(tmp_path)
    machine.authenticate(username, token)
    return machine


def test_starts_unauthenticated_without_credentials(tmp_path):
    machine = make_machine(tmp_path)
    assert machine.restore() is SessionState.UNAUTHENTICATED
    assert machine.credential is None


def test_restore_uses_persisted_credentials(tmp_path):
    signed_in(tmp_path)

    machine = make_machine(tmp_path)
    assert machine.restore() is SessionState.AUTHENTICATED
    assert machine.credential == Credential("alice", "tok123")
    assert machine.current_token() == "tok123"
    assert "session.restored" in get_journal().events()


def test_authenticate_validates_callback_values(tmp_path):
    machine = make_machine(tmp_path)

    with pytest.raises(ValidationError) as exc:
        machine.authenticate("ab!!", "tok123")
    assert [issue.field for issue in exc.value.issues] == ["username"]

    for token in ("", "has space", "x" * 513, "tok';alert(1)//"):
        with pytest.raises(ValidationError):
            machine.authenticate("alice", token)

    assert machine.state is SessionState.UNAUTHENTICATED
    assert machine.store.load() is None


def test_authenticate_sanitizes_username_and_persists(tmp_path):
    machine = make_machine(tmp_path)
    credential = machine.authenticate("  alice ", "eyJhbGci.eyJzdWIi.c2ln-_~+/==")
    assert credential.username == "alice"
    assert machine.state is SessionState.AUTHENTICATED
    assert machine.store.load() == credential

    with pytest.raises(SessionError):
        machine.authenticate("bob", "tok")


def test_create_with_empty_code_generates_one(tmp_path):
    machine = signed_in(tmp_path)
    states = []
    machine.subscribe(states.append)

    operation = machine.begin_room_request(RoomAction.CREATE, "")
    assert machine.state is SessionState.ROOM_PENDING
    assert len(operation.room_id) == 4 and operation.room_id.isupper()
    assert operation.username == "alice"

    session = machine.complete_room_request(operation, ApiResponse(success=True, room_id=operation.room_id))

    assert session == RoomSession(room_id=operation.room_id, username="alice", token="tok123", is_host=True)
    assert machine.state is SessionState.IN_ROOM
    assert machine.room_session is session
    assert states == [SessionState.ROOM_PENDING, SessionState.IN_ROOM]


def test_server_room_code_is_authoritative(tmp_path):
    machine = signed_in(tmp_path)
    operation = machine.begin_room_request(RoomAction.CREATE, "abcd")
    session = machine.complete_room_request(operation, ApiResponse(success=True, room_id="WXYZ"))
    assert session.room_id == "WXYZ"


def test_join_falls_back_to_requested_code(tmp_path):
    machine = signed_in(tmp_path)
    operation = machine.begin_room_request(RoomAction.JOIN, " abcd ")
    assert operation.room_id == "ABCD"
    session = machine.complete_room_request(operation, ApiResponse(success=True))
    assert session.room_id == "ABCD"
    assert session.is_host is False


def test_invalid_confirmed_code_reverts(tmp_path):
    machine = signed_in(tmp_path)
    operation = machine.begin_room_request(RoomAction.CREATE, "ABCD")
    with pytest.raises(ProtocolError):
        machine.complete_room_request(operation, ApiResponse(success=True, room_id="ab"))
    assert machine.state is SessionState.AUTHENTICATED
    assert machine.room_session is None


def test_rejected_join_reverts_to_authenticated(tmp_path):
    machine = signed_in(tmp_path)
    operation = machine.begin_room_request(RoomAction.JOIN, "ZZZZ")

    assert machine.fail_room_request(operation, RoomRejected("Room not found", status_code=404))

    assert machine.state is SessionState.AUTHENTICATED
    assert machine.room_session is None
    assert machine.pending is None


def test_bad_room_code_leaves_state_untouched(tmp_path):
    machine = signed_in(tmp_path)
    with pytest.raises(ValidationError):
        machine.begin_room_request(RoomAction.CREATE, "ab!!")
    with pytest.raises(ValidationError):
        machine.begin_room_request(RoomAction.JOIN, "")
    assert machine.state is SessionState.AUTHENTICATED
    assert machine.pending is None


def test_room_requests_require_sign_in(tmp_path):
    machine = make_machine(tmp_path)
    with pytest.raises(SessionError):
        machine.begin_room_request(RoomAction.JOIN, "ABCD")


def test_single_request_in_flight(tmp_path):
    machine = signed_in(tmp_path)
    first = machine.begin_room_request(RoomAction.JOIN, "ABCD")
    with pytest.raises(SessionError):
        machine.begin_room_request(RoomAction.CREATE, "WXYZ")
    assert machine.pending == first


def test_cancelled_request_ignores_late_reply(tmp_path):
    machine = signed_in(tmp_path)
    operation = machine.begin_room_request(RoomAction.JOIN, "ABCD")

    assert machine.cancel_room_request()
    assert not machine.cancel_room_request()
    assert machine.complete_room_request(operation, ApiResponse(success=True, room_id="ABCD")) is None
    assert not machine.fail_room_request(operation, RoomRejected("late"))
    assert machine.state is SessionState.AUTHENTICATED

    newer = machine.begin_room_request(RoomAction.JOIN, "ABCD")
    assert newer.op_id != operation.op_id
    assert machine.complete_room_request(operation, ApiResponse(success=True, room_id="ABCD")) is None
    assert machine.state is SessionState.ROOM_PENDING
    assert "room.stale_reply" in get_journal().events()


def test_leave_room_returns_to_authenticated(tmp_path):
    machine = signed_in(tmp_path)
    with pytest.raises(SessionError):
        machine.leave_room()

    operation = machine.begin_room_request(RoomAction.JOIN, "ABCD")
    machine.complete_room_request(operation, ApiResponse(success=True))
    machine.leave_room()

    assert machine.state is SessionState.AUTHENTICATED
    assert machine.room_session is None
    assert machine.credential is not None


def test_logout_clears_everything(tmp_path):
    machine = signed_in(tmp_path)
    operation = machine.begin_room_request(RoomAction.JOIN, "ABCD")
    machine.complete_room_request(operation, ApiResponse(success=True))

    machine.logout()

    assert machine.state is SessionState.UNAUTHENTICATED
    assert machine.credential is None
    assert machine.room_session is None
    assert machine.store.load() is None
    with pytest.raises(SessionError):
        machine.require_credential()
    assert make_machine(tmp_path).restore() is SessionState.UNAUTHENTICATED


def test_journal_never_holds_the_token(tmp_path):
    machine = signed_in(tmp_path, token="supersecrettoken")
    operation = machine.begin_room_request(RoomAction.CREATE, None)
    machine.complete_room_request(operation, ApiResponse(success=True, room_id=operation.room_id))
    journal_text = get_journal().journal_path.read_text()
    assert "supersecrettoken" not in journal_text


def test_transitions_survive_audit_write_failures(tmp_path, monkeypatch):
    machine = signed_in(tmp_path)
    states = []
    machine.subscribe(states.append)

    def full_disk(event, details=None):
        raise OSError(28, "No space left on device")

    monkeypatch.setattr(get_journal(), "record", full_disk)

    operation = machine.begin_room_request(RoomAction.JOIN, "ABCD")
    session = machine.complete_room_request(operation, ApiResponse(success=True))
    machine.leave_room()

    assert session.room_id == "ABCD"
    assert states == [SessionState.ROOM_PENDING, SessionState.IN_ROOM, SessionState.AUTHENTICATED]
