"""Command-line client for rtchat.

Commands:
  rtchat login u1
  rtchat create general
  rtchat say general "hello"
  rtchat listen
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.markup import escape
from rich.prompt import Confirm
from rich.table import Table

from rtchat import __logo__, __version__
from rtchat.bus.events import ChannelCreated, ChannelDeleted, MembersChanged, MessageAppended, SyncEvent
from rtchat.bus.queue import SyncBus
from rtchat.bus.transport import UdpTransport
from rtchat.chat.models import Channel
from rtchat.chat.session import ChatSession
from rtchat.config.loader import load_config
from rtchat.config.schema import Config
from rtchat.directory.provider import initials, load_directory

app = typer.Typer(
    name="rtchat",
    help=f"{__logo__} rtchat - channels and messages shared by every open client on this host.",
    no_args_is_help=True,
)

console = Console()

_config_path: Path | None = None


@app.callback()
def main(
    config: Optional[Path] = typer.Option(None, "--config", "-c", help="Path to config.json"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log at DEBUG level"),
) -> None:
    """Global options."""
    global _config_path
    _config_path = config
    level = "DEBUG" if verbose else load_config(config).log_level
    logging.basicConfig(level=level.upper(), format="%(levelname)s %(name)s: %(message)s")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _config() -> Config:
    return load_config(_config_path)


def _bus(config: Config) -> SyncBus:
    return SyncBus(UdpTransport(config.bus.topic, config.bus.group, config.bus.port))


def _session(*, with_directory: bool = True, with_bus: bool = False) -> ChatSession:
    """Build a session from config; the directory fetch is the only network call."""
    config = _config()
    directory = None
    if with_directory:
        directory = asyncio.run(load_directory(config.directory.url, config.directory.timeout))
    bus = _bus(config) if with_bus else None
    session = ChatSession.from_config(config, bus=bus, directory=directory)
    session.restore_login()
    return session


def _require_user(session: ChatSession) -> str:
    if not session.active_user:
        console.print("[red]Not logged in.[/red] Run [cyan]rtchat login USER[/cyan] first.")
        raise typer.Exit(1)
    return session.active_user


def _resolve(session: ChatSession, ref: str) -> Channel:
    """Find a channel by id, or by name when exactly one channel has it."""
    ch = session.get_channel(ref)
    if ch is not None:
        return ch
    matches = [c for c in session.list_channels() if c.name == ref]
    if len(matches) == 1:
        return matches[0]
    if matches:
        console.print(f"[yellow]Several channels are named '{escape(ref)}'; use the id.[/yellow]")
    else:
        console.print(f"[red]No channel '{escape(ref)}'.[/red]")
    raise typer.Exit(1)


def _refused(session: ChatSession, what: str) -> None:
    reason = session.last_refusal.value if session.last_refusal else "refused"
    console.print(f"[red]{what}: {reason.replace('_', ' ')}.[/red]")
    raise typer.Exit(1)


def _close(session: ChatSession) -> None:
    if session.bus is not None:
        session.bus.close()


def _fmt_ts(ts: int) -> str:
    return datetime.fromtimestamp(ts / 1000).strftime("%H:%M:%S")


def _describe(session: ChatSession, event: SyncEvent) -> str:
    if isinstance(event, ChannelCreated):
        return f"[green]+[/green] channel [cyan]{escape(event.channel.name)}[/cyan] by {escape(session.display_name(event.channel.owner))}"
    if isinstance(event, ChannelDeleted):
        return f"[red]-[/red] channel {escape(event.channel_id)} deleted"
    if isinstance(event, MembersChanged):
        names = escape(", ".join(session.display_name(m) for m in event.members))
        return f"[yellow]~[/yellow] {escape(event.channel_id)} members: {names}"
    if isinstance(event, MessageAppended):
        ch = session.get_channel(event.channel_id)
        where = ch.name if ch else event.channel_id
        return f"[dim]{_fmt_ts(event.message.timestamp)}[/dim] [cyan]#{escape(where)}[/cyan] [bold]{escape(session.display_name(event.message.author))}[/bold]: {escape(event.message.text)}"
    return repr(event)


# ---------------------------------------------------------------------------
# Identity
# ---------------------------------------------------------------------------


@app.command()
def version() -> None:
    """Show version."""
    console.print(f"{__logo__} rtchat v{__version__}")


@app.command()
def users() -> None:
    """List the user directory."""
    session = _session()
    table = Table(title="Users")
    table.add_column("ID", style="cyan")
    table.add_column("")
    table.add_column("Name")
    for u in session.directory:
        mark = "[green]*[/green]" if u.id == session.active_user else ""
        table.add_row(escape(u.id), escape(initials(u.name)), f"{escape(u.name)} {mark}")
    console.print(table)


@app.command()
def login(user: str = typer.Argument(help="User id from `rtchat users`")) -> None:
    """Act as USER in this and later commands until `rtchat logout`.

    The login is saved in session.path and shared by every rtchat process
    using the same config.
    """
    session = _session()
    if not session.login(user):
        console.print(f"[red]Unknown user '{escape(user)}'.[/red]")
        raise typer.Exit(1)
    console.print(f"Logged in as [cyan]{escape(session.display_name(user))}[/cyan].")


@app.command()
def logout() -> None:
    """Forget the active user."""
    session = _session(with_directory=False)
    session.logout()
    console.print("Logged out.")


@app.command()
def whoami() -> None:
    """Show the active user."""
    session = _session()
    user = _require_user(session)
    console.print(f"{escape(session.display_name(user))} ([cyan]{escape(user)}[/cyan])")


# ---------------------------------------------------------------------------
# Channels
# ---------------------------------------------------------------------------


@app.command()
def channels() -> None:
    """List every channel, member or not."""
    session = _session()
    listing = session.list_channels()
    if not listing:
        console.print("[dim]No channels.[/dim]")
        return

    table = Table(title="Channels")
    table.add_column("ID", style="cyan")
    table.add_column("Name")
    table.add_column("Kind")
    table.add_column("Members", justify="right")
    table.add_column("Owner")
    for ch in listing:
        kind = "public" if ch.is_public else "[magenta]private[/magenta]"
        name = f"[bold]{escape(ch.name)}[/bold]" if ch.has_member(session.active_user) else escape(ch.name)
        table.add_row(escape(ch.id), name, kind, str(len(ch.members)), escape(session.display_name(ch.owner)))
    console.print(table)


@app.command()
def create(
    name: str = typer.Argument(help="Channel name"),
    private: bool = typer.Option(False, "--private", help="Only the owner can add members"),
) -> None:
    """Create a channel owned by the active user."""
    session = _session(with_bus=True)
    try:
        _require_user(session)
        ch = session.create_channel(name, is_public=not private)
        if ch is None:
            _refused(session, "Cannot create channel")
        console.print(f"Created [cyan]{escape(ch.name)}[/cyan] ({escape(ch.id)}).")
    finally:
        _close(session)


@app.command()
def delete(
    channel: str = typer.Argument(help="Channel id or name"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation"),
) -> None:
    """Delete a channel you own, with all its messages."""
    session = _session(with_bus=True)
    try:
        user = _require_user(session)
        ch = _resolve(session, channel)
        if ch.owner != user:
            console.print("[red]Only the owner can delete a channel.[/red]")
            raise typer.Exit(1)
        if not yes and not Confirm.ask(f"Delete channel '{escape(ch.name)}'?"):
            raise typer.Exit()
        if not session.delete_channel(ch.id):
            _refused(session, "Cannot delete channel")
        console.print(f"Deleted [cyan]{escape(ch.name)}[/cyan].")
    finally:
        _close(session)


@app.command()
def join(
    channel: str = typer.Argument(help="Channel id or name"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation"),
) -> None:
    """Join a public channel."""
    session = _session(with_bus=True)
    try:
        user = _require_user(session)
        ch = _resolve(session, channel)
        if ch.has_member(user):
            console.print(f"Already a member of [cyan]{escape(ch.name)}[/cyan].")
            return
        if not ch.is_public:
            console.print("[red]You are not a member of this channel.[/red] Ask the owner to invite you.")
            raise typer.Exit(1)
        if not yes and not Confirm.ask(f"Join public channel '{escape(ch.name)}'?"):
            raise typer.Exit()
        if not session.join_channel(ch.id):
            _refused(session, "Cannot join")
        console.print(f"Joined [cyan]{escape(ch.name)}[/cyan].")
    finally:
        _close(session)


@app.command()
def invite(
    channel: str = typer.Argument(help="Channel id or name"),
    user: str = typer.Argument(help="User id to add"),
) -> None:
    """Add USER to a channel."""
    session = _session(with_bus=True)
    try:
        _require_user(session)
        ch = _resolve(session, channel)
        if not session.add_member(ch.id, None, user):
            _refused(session, f"Cannot add {escape(user)}")
        console.print(f"Added {escape(session.display_name(user))} to [cyan]{escape(ch.name)}[/cyan].")
    finally:
        _close(session)


@app.command()
def kick(
    channel: str = typer.Argument(help="Channel id or name"),
    user: str = typer.Argument(help="User id to remove"),
) -> None:
    """Remove USER from a private channel you own."""
    session = _session(with_bus=True)
    try:
        _require_user(session)
        ch = _resolve(session, channel)
        if not session.remove_member(ch.id, None, user):
            _refused(session, f"Cannot remove {escape(user)}")
        console.print(f"Removed {escape(session.display_name(user))} from [cyan]{escape(ch.name)}[/cyan].")
    finally:
        _close(session)


@app.command()
def search(
    channel: str = typer.Argument(help="Channel id or name"),
    query: str = typer.Argument(help="Part of a user's name"),
) -> None:
    """Find users to invite into a channel."""
    session = _session()
    ch = _resolve(session, channel)
    found = session.invite_candidates(ch.id, query)
    if not found:
        console.print("[dim]Nobody matches.[/dim]")
        return
    for u in found:
        console.print(f"  [cyan]{escape(u.id)}[/cyan]  {escape(u.name)}")


# ---------------------------------------------------------------------------
# Messages
# ---------------------------------------------------------------------------


@app.command()
def say(
    channel: str = typer.Argument(help="Channel id or name"),
    text: str = typer.Argument(help="Message text"),
) -> None:
    """Post a message to a channel you belong to."""
    session = _session(with_bus=True)
    try:
        _require_user(session)
        ch = _resolve(session, channel)
        if session.post_message(ch.id, None, text) is None:
            _refused(session, "Cannot post")
    finally:
        _close(session)


@app.command()
def show(channel: str = typer.Argument(help="Channel id or name")) -> None:
    """Show a channel's members and messages."""
    session = _session()
    user = _require_user(session)
    ch = _resolve(session, channel)
    if not session.open_channel(ch.id):
        console.print("[red]You are not a member of this channel.[/red]")
        raise typer.Exit(1)

    kind = "public" if ch.is_public else "private"
    console.print(f"[bold cyan]#{escape(ch.name)}[/bold cyan] [dim]({kind}, {len(ch.members)} members)[/dim]")
    for m in ch.members:
        tag = " [dim](owner)[/dim]" if m == ch.owner else ""
        name = session.display_name(m)
        console.print(f"  {escape(f'[{initials(name)}]')} {escape(name)}{tag}")
    console.print()
    if not ch.messages:
        console.print("[dim]No messages.[/dim]")
    for msg in ch.messages:
        style = "bold green" if msg.author == user else "bold"
        console.print(f"[dim]{_fmt_ts(msg.timestamp)}[/dim] [{style}]{escape(session.display_name(msg.author))}[/{style}]: {escape(msg.text)}")


@app.command()
def listen() -> None:
    """Follow live changes from every other client until Ctrl+C."""
    session = _session(with_bus=True)
    bus = session.bus
    bus.on_event(lambda e: console.print(_describe(session, e)))

    console.print(f"{__logo__} Listening on [cyan]{escape(bus.topic)}[/cyan] (Ctrl+C to stop)")
    try:
        asyncio.run(bus.run())
    except KeyboardInterrupt:
        pass
    finally:
        _close(session)
        if bus.missed:
            console.print(f"[yellow]{bus.missed} event(s) were missed; restart clients to resync.[/yellow]")


if __name__ == "__main__":
    app()
