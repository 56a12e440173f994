# SPDX-FileCopyrightText: 2025 ConnectMe contributors
# SPDX-License-Identifier: MIT

"""Headless command line front-end driving the same room state machine."""

from __future__ import annotations

import logging
import sys

import click

from rooms.api import RoomApiClient, RoomApiError
from rooms.credentials import CredentialStore
from security.bridge import ContentBridge
from security.controller import RoomController, RoomOutcome
from security.policy import load_policy
from security.session import SessionError, SessionState, SessionStateMachine
from security.validation import ValidationError, is_valid_room_id, normalize_room_id


class _Context:
    def __init__(self) -> None:
        self.policy = load_policy()
        self.machine = SessionStateMachine(CredentialStore(self.policy.state_dir / "credentials.json"))
        self.machine.restore()
        self.api = RoomApiClient(self.machine.current_token, policy=self.policy)


def _require_signed_in(ctx: _Context) -> None:
    if ctx.machine.state is SessionState.UNAUTHENTICATED:
        raise click.ClickException("Not signed in. Run 'connectme login' first.")


def _run_room_request(ctx: _Context, action: str, room: str | None) -> None:
    _require_signed_in(ctx)
    controller = RoomController(ctx.machine, ctx.api)
    outcomes: list[RoomOutcome] = []
    start = controller.create_room if action == "create" else controller.join_room
    start(room, completion_cb=outcomes.append)
    controller.wait(ctx.policy.request_timeout + 2)
    if not outcomes:
        ctx.machine.cancel_room_request()
        raise click.ClickException("Room service did not answer in time.")
    outcome = outcomes[0]
    if not outcome.ok:
        raise click.ClickException(outcome.error or "Room request failed.")
    session = outcome.session
    bridge = ContentBridge(ctx.machine, policy=ctx.policy)
    click.echo(session.describe())
    click.echo(bridge.room_url(session))


@click.group()
@click.option("-v", "--verbose", is_flag=True, help="Log transitions to stderr.")
@click.pass_context
def main(click_ctx: click.Context, verbose: bool) -> None:
    """Create or join ConnectMe rooms without the TV app."""

    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        stream=sys.stderr,
        format="%(levelname)s %(name)s: %(message)s",
    )
    click_ctx.obj = _Context()


@main.command()
@click.argument("username")
@click.option("--token", prompt=True, hide_input=True, help="Bearer token issued by the sign-in page.")
@click.pass_obj
def login(ctx: _Context, username: str, token: str) -> None:
    """Store credentials for USERNAME."""

    if ctx.machine.state is not SessionState.UNAUTHENTICATED:
        raise click.ClickException("Already signed in. Run 'connectme logout' first.")
    try:
        credential = ctx.machine.authenticate(username, token)
    except ValidationError as exc:
        raise click.ClickException(str(exc)) from exc
    click.echo(f"Signed in as {credential.username}")


@main.command()
@click.pass_obj
def logout(ctx: _Context) -> None:
    """Forget stored credentials."""

    ctx.machine.logout()
    click.echo("Signed out")


@main.command()
@click.pass_obj
def whoami(ctx: _Context) -> None:
    """Show the signed-in user."""

    _require_signed_in(ctx)
    click.echo(ctx.machine.require_credential().username)


@main.command()
@click.argument("room", required=False, default="")
@click.pass_obj
def create(ctx: _Context, room: str) -> None:
    """Create ROOM, or a random room when omitted."""

    _run_room_request(ctx, "create", room)


@main.command()
@click.argument("room")
@click.pass_obj
def join(ctx: _Context, room: str) -> None:
    """Join an existing ROOM."""

    _run_room_request(ctx, "join", room)


def _checked_room(room: str) -> str:
    room_id = normalize_room_id(room)
    if not is_valid_room_id(room_id):
        raise click.BadParameter("Room code must be exactly 4 letters (A-Z).", param_hint="ROOM")
    return room_id


@main.command()
@click.argument("room")
@click.pass_obj
def status(ctx: _Context, room: str) -> None:
    """Show who is in ROOM."""

    _require_signed_in(ctx)
    try:
        info = ctx.api.room_status(_checked_room(room))
    except (RoomApiError, ValidationError) as exc:
        raise click.ClickException(str(exc)) from exc
    click.echo(f"Room {info.room_id} ({info.status})")
    click.echo(f"Host: {info.host or '-'}")
    click.echo(f"Players: {', '.join(info.players) if info.players else '-'}")


@main.command()
@click.argument("room")
@click.pass_obj
def close(ctx: _Context, room: str) -> None:
    """Close ROOM (host only)."""

    _require_signed_in(ctx)
    try:
        credential = ctx.machine.require_credential()
        reply = ctx.api.close_room(_checked_room(room), credential.username)
    except (RoomApiError, ValidationError, SessionError) as exc:
        raise click.ClickException(str(exc)) from exc
    click.echo(reply.message or "Room closed")


if __name__ == "__main__":
    main()
