"""Run room create/join requests off the UI thread."""
from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Callable, Optional

from rooms.api import ApiResponse, RoomApiClient, RoomApiError
from rooms.models import RoomSession
from security.session import (
    PendingOperation,
    RoomAction,
    SessionError,
    SessionStateMachine,
)
from security.validation import ValidationError

_logger = logging.getLogger(__name__)


@dataclass
class RoomOutcome:
    session: Optional[RoomSession] = None
    error: Optional[str] = None
    error_kind: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.session is not None


CompletionCallback = Callable[[RoomOutcome], None]
Scheduler = Callable[[Callable[[], None]], None]


class RoomController:
    """Start one room request at a time and hand results back via *scheduler*.

    The worker thread only performs the network call. Applying the result to
    the state machine and invoking ``completion_cb`` both happen inside the
    function given to ``scheduler``, which on device posts to the Kivy clock
    so state changes land on the UI thread.
    """

    def __init__(
        self,
        machine: SessionStateMachine,
        api: RoomApiClient,
        *,
        scheduler: Scheduler | None = None,
    ) -> None:
        self.machine = machine
        self.api = api
        self.scheduler = scheduler or (lambda fn: fn())
        self._thread: Optional[threading.Thread] = None

    def create_room(
        self, raw_room_id: Optional[str] = None, *, completion_cb: CompletionCallback | None = None
    ) -> Optional[PendingOperation]:
        return self._start(RoomAction.CREATE, raw_room_id, completion_cb)

    def join_room(
        self, raw_room_id: Optional[str], *, completion_cb: CompletionCallback | None = None
    ) -> Optional[PendingOperation]:
        return self._start(RoomAction.JOIN, raw_room_id, completion_cb)

    def cancel(self) -> bool:
        return self.machine.cancel_room_request()

    def wait(self, timeout: float | None = None) -> None:
        thread = self._thread
        if thread is not None:
            thread.join(timeout)

    def _call(self, operation: PendingOperation) -> ApiResponse:
        if operation.action is RoomAction.CREATE:
            return self.api.create_room(operation.room_id, operation.username)
        return self.api.join_room(operation.room_id, operation.username)

    def _start(
        self,
        action: RoomAction,
        raw_room_id: Optional[str],
        completion_cb: CompletionCallback | None,
    ) -> Optional[PendingOperation]:
        try:
            operation = self.machine.begin_room_request(action, raw_room_id)
        except (ValidationError, SessionError) as exc:
            if completion_cb:
                completion_cb(RoomOutcome(error=str(exc), error_kind=type(exc).__name__))
            return None

        def _worker() -> None:
            try:
                response = self._call(operation)
            except (RoomApiError, ValidationError) as exc:
                self.scheduler(lambda error=exc: self._deliver_failure(operation, error, completion_cb))
                return
            except Exception as exc:  # pragma: no cover - worker thread
                _logger.exception("Unexpected failure during room %s", operation.action.value)
                self.scheduler(lambda error=exc: self._deliver_failure(operation, error, completion_cb))
                return
            self.scheduler(lambda: self._deliver_success(operation, response, completion_cb))

        thread = threading.Thread(
            target=_worker,
            name=f"room-{operation.action.value}-{operation.op_id}",
            daemon=True,
        )
        self._thread = thread
        thread.start()
        return operation

    def _deliver_success(
        self,
        operation: PendingOperation,
        response: ApiResponse,
        completion_cb: CompletionCallback | None,
    ) -> None:
        try:
            session = self.machine.complete_room_request(operation, response)
        except RoomApiError as exc:
            if completion_cb:
                completion_cb(RoomOutcome(error=str(exc), error_kind=type(exc).__name__))
            return
        if session is None:
            _logger.debug("Discarded stale reply for operation %s", operation.op_id)
            return
        if completion_cb:
            completion_cb(RoomOutcome(session=session))

    def _deliver_failure(
        self,
        operation: PendingOperation,
        error: BaseException,
        completion_cb: CompletionCallback | None,
    ) -> None:
        if not self.machine.fail_room_request(operation, error):
            _logger.debug("Discarded stale failure for operation %s", operation.op_id)
            return
        if completion_cb:
            completion_cb(RoomOutcome(error=str(error), error_kind=type(error).__name__))


__all__ = ["RoomController", "RoomOutcome"]
