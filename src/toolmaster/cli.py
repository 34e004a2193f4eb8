"""CLI entry point for the toolmaster session workspaces."""

import asyncio
from datetime import datetime
from pathlib import Path
from typing import Optional

import click

from toolmaster.config import settings
from toolmaster.schemas.session import SessionBase
from toolmaster.storage import API_KEY_STORAGE_KEY, JsonFileStorage
from toolmaster.store import chat_store, plugin_store
from toolmaster.utils.logging_setup import setup_logging
from toolmaster.workspace import (
    ChatWorkspace,
    PluginWorkspace,
    SessionWorkspace,
    chat_workspace,
    plugin_workspace,
)

COMMON_HELP = """Commands:
  /new          start a new session
  /list         list sessions
  /switch N     switch to session N
  /delete N     delete session N
  /quit         leave"""

PLUGIN_HELP = """  /name TEXT    set the plugin name
  /desc TEXT    set the plugin description
  /code FILE    load code from a file
  /show         print the current code
  /clear        clear the chat (keeps code)
  /export [DIR] write <slug>.php"""


def _storage() -> JsonFileStorage:
    return JsonFileStorage(settings.storage_path)


class StreamPrinter:
    """Echo assistant text for one send as the workspace reports changes."""

    def __init__(self):
        self.session_id: Optional[str] = None
        self.baseline = 0
        self.printed = ""

    def begin(self, session: SessionBase) -> None:
        self.session_id = session.id
        self.baseline = len(session.messages)
        self.printed = ""

    def end(self) -> None:
        if self.printed:
            click.echo("\n")
        self.session_id = None

    def __call__(self, session: SessionBase) -> None:
        if session.id != self.session_id:
            return
        replies = [m for m in session.messages[self.baseline:] if m.role == "assistant"]
        if not replies:
            return
        text = replies[-1].text
        if text.startswith(self.printed):
            click.echo(text[len(self.printed):], nl=False)
        else:
            click.echo(f"\n{text}", nl=False)
        self.printed = text


def _list_sessions(workspace: SessionWorkspace) -> None:
    for i, session in enumerate(workspace.sessions, 1):
        marker = "*" if session.id == workspace.active_id else " "
        click.echo(f" {marker} {i}. {session.label}  ({len(session.messages)} messages)")


def _session_at(workspace: SessionWorkspace, arg: str) -> Optional[str]:
    try:
        index = int(arg) - 1
    except ValueError:
        click.echo("Expected a session number (see /list).")
        return None
    if not 0 <= index < len(workspace.sessions):
        click.echo(f"No session {arg}.")
        return None
    return workspace.sessions[index].id


def _show_notice(workspace: SessionWorkspace) -> None:
    if workspace.notice:
        click.secho(f"! {workspace.notice}", fg="yellow")


def _show_transcript(workspace: SessionWorkspace) -> None:
    session = workspace.active
    click.echo(f"\n== {session.label} ==")
    for message in session.messages:
        speaker = "You" if message.role == "user" else "Assistant"
        click.echo(f"[{message.timestamp}] {speaker}: {message.text}")
    _show_notice(workspace)


def _common_command(workspace: SessionWorkspace, command: str, arg: str) -> Optional[bool]:
    """
    Handle the slash commands both REPLs share.

    Returns:
        False to leave the REPL, True if handled, None if unknown.
    """
    if command in ("/quit", "/exit"):
        return False
    if command == "/help":
        click.echo(COMMON_HELP)
        if isinstance(workspace, PluginWorkspace):
            click.echo(PLUGIN_HELP)
        return True
    if command == "/new":
        workspace.create_session()
        _show_transcript(workspace)
        return True
    if command == "/list":
        _list_sessions(workspace)
        return True
    if command == "/switch":
        session_id = _session_at(workspace, arg)
        if session_id:
            workspace.switch_to(session_id)
            _show_transcript(workspace)
        return True
    if command == "/delete":
        session_id = _session_at(workspace, arg)
        if session_id and workspace.delete_session(
            session_id, lambda prompt: click.confirm(prompt, default=False)
        ):
            _show_transcript(workspace)
        return True
    return None


def _plugin_command(workspace: PluginWorkspace, command: str, arg: str) -> bool:
    if command == "/name":
        workspace.set_name(arg)
        click.echo(f"Plugin name: {workspace.active.display_name}")
    elif command == "/desc":
        workspace.set_description(arg)
        click.echo("Description updated.")
    elif command == "/code":
        if not arg:
            click.echo("Usage: /code FILE")
            return True
        try:
            code = Path(arg).read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            click.echo(f"Could not read {arg}: {e}")
            return True
        workspace.set_code(code)
        click.echo(f"Loaded {len(workspace.active.code)} characters of code.")
    elif command == "/show":
        click.echo(workspace.active.code or "// No code yet")
    elif command == "/clear":
        if workspace.clear_chat(lambda prompt: click.confirm(prompt, default=False)):
            _show_transcript(workspace)
    elif command == "/export":
        if not workspace.active.code:
            click.echo("Nothing to export yet.")
        else:
            try:
                path = workspace.export_code(Path(arg) if arg else Path("."))
            except OSError as e:
                click.echo(f"Could not export: {e}")
            else:
                click.echo(f"Saved to {path}")
    else:
        return False
    return True


async def _repl(workspace: SessionWorkspace, printer: StreamPrinter) -> None:
    workspace.mount()
    _show_transcript(workspace)
    click.echo("Type /help for commands.\n")

    try:
        while True:
            try:
                line = await asyncio.to_thread(click.prompt, "You", type=str)
            except (click.Abort, EOFError):
                click.echo("\nSession ended.")
                break

            line = line.strip()
            if not line:
                continue

            if line.startswith("/"):
                command, _, arg = line.partition(" ")
                handled = _common_command(workspace, command.lower(), arg.strip())
                if handled is False:
                    break
                if handled is None and not (
                    isinstance(workspace, PluginWorkspace)
                    and _plugin_command(workspace, command.lower(), arg.strip())
                ):
                    click.echo(f"Unknown command {command}. Type /help.")
                continue

            click.echo("\nAssistant: ", nl=False)
            printer.begin(workspace.active)
            await workspace.send(line)
            printer.end()
            _show_notice(workspace)
    finally:
        workspace.close()


@click.group()
@click.option("-v", "--verbose", is_flag=True, help="Enable verbose logging")
def main(verbose: bool):
    """ToolMaster - AI chat and plugin-builder workspaces."""
    if verbose:
        settings.log_level = "DEBUG"
    setup_logging()


@main.command()
def chat():
    """Chat with the assistant (streamed replies, saved sessions)."""
    printer = StreamPrinter()
    workspace: ChatWorkspace = chat_workspace(_storage(), on_change=printer)
    asyncio.run(_repl(workspace, printer))


@main.command()
def plugin():
    """Build a WordPress plugin with the assistant."""
    printer = StreamPrinter()
    workspace: PluginWorkspace = plugin_workspace(_storage(), on_change=printer)
    asyncio.run(_repl(workspace, printer))


@main.command()
@click.option(
    "--variant",
    type=click.Choice(["chat", "plugin"]),
    default="chat",
    show_default=True,
    help="Which workspace's sessions to list",
)
def sessions(variant: str):
    """List saved sessions, most recent first."""
    storage = _storage()
    store = chat_store(storage) if variant == "chat" else plugin_store(storage)
    saved = store.load()
    if not saved:
        click.echo("No saved sessions.")
        return

    for i, session in enumerate(saved, 1):
        modified = datetime.fromtimestamp(session.last_modified / 1000).strftime("%Y-%m-%d %H:%M")
        click.echo(f"  {i}. {session.label}  ({len(session.messages)} messages, {modified})")


@main.command("set-key")
@click.argument("api_key")
def set_key(api_key: str):
    """Save a personal API key (takes priority over GEMINI_API_KEY)."""
    _storage().set(API_KEY_STORAGE_KEY, api_key.strip())
    click.echo(f"API key saved to {settings.storage_path}")


@main.command("clear-key")
def clear_key():
    """Remove the saved personal API key."""
    _storage().remove(API_KEY_STORAGE_KEY)
    click.echo("API key removed.")


if __name__ == "__main__":
    main()
