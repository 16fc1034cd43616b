"""CLI interface for chatpipe."""

import logging
import sys
from pathlib import Path
from typing import Optional

import click

from . import __version__
from .config import BASE_URL, LOG_LEVEL, PREFERENCES_PATH, SQLITE_PATH
from .errors import ChatpipeError
from .models import USER_ROLE, ConversationView, Status


def _build_assistant(ctx: click.Context):
    from . import Assistant, api, cues, llm, store

    opts = ctx.obj
    if opts.get("assistant") is not None:
        return opts["assistant"]

    if opts["local"]:
        generator = llm.OpenAI() if opts["llm"] == "openai" else llm.Echo()
        transport = api.Local(store=store.SQLite(str(SQLITE_PATH)), llm=generator)
    else:
        transport = api.Http(base_url=opts["base_url"])

    opts["assistant"] = Assistant(api=transport, cues=cues.Bell())
    return opts["assistant"]


def _fail(message: str) -> None:
    click.echo(click.style(f"Error: {message}", fg="red"), err=True)
    sys.exit(1)


class _StreamPrinter:
    """Prints only the newly arrived part of the streaming reply."""

    def __init__(self):
        self.printed = 0

    def __call__(self, view: ConversationView) -> None:
        if view.partial is None:
            if self.printed:
                click.echo()
            self.printed = 0
            return
        if view.status is Status.STREAMING and len(view.partial) > self.printed:
            if self.printed == 0:
                click.echo(click.style("AI: ", fg="cyan"), nl=False)
            click.echo(view.partial[self.printed :], nl=False)
            self.printed = len(view.partial)


def _print_view(view: ConversationView) -> None:
    click.echo(
        click.style(
            f"--- page {view.page}/{max(view.total_pages, 1)} "
            f"({view.total} messages) ---",
            dim=True,
        )
    )
    for entry in view.entries:
        label = "You" if entry.role == USER_ROLE else "AI"
        suffix = " (pending)" if entry.pending else ""
        click.echo(f"{click.style(label + ':', bold=True)} {entry.content}{suffix}")


@click.group()
@click.version_option(version=__version__, prog_name="chatpipe")
@click.option("--base-url", default=BASE_URL, show_default=True, help="Chat service URL")
@click.option(
    "--local", is_flag=True, help="Run the chat service in-process on a SQLite store"
)
@click.option(
    "--llm",
    "llm_name",
    type=click.Choice(["echo", "openai"]),
    default="echo",
    show_default=True,
    help="Generator for --local mode",
)
@click.pass_context
def cli(ctx, base_url: str, local: bool, llm_name: str):
    """chatpipe: streaming assistant chat with optimistic history."""
    logging.basicConfig(
        level=getattr(logging, LOG_LEVEL, logging.WARNING),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        stream=sys.stderr,
    )
    ctx.ensure_object(dict)
    ctx.obj.update(base_url=base_url, local=local, llm=llm_name)


@cli.command()
@click.pass_context
def chat(ctx):
    """Chat interactively.

    Commands: /page N, /refresh, /clear, /archive, /export [PATH], /quit
    """
    assistant = _build_assistant(ctx)
    controller = assistant.controller
    controller.subscribe(_StreamPrinter())

    try:
        _print_view(controller.load())
    except ChatpipeError as e:
        _fail(str(e))

    while True:
        try:
            text = click.prompt("You", prompt_suffix="> ", default="", show_default=False)
        except (EOFError, click.Abort):
            click.echo()
            return

        command, _, arg = text.strip().partition(" ")
        try:
            if command in ("/quit", "/exit"):
                return
            elif command == "/page":
                _print_view(controller.go_to_page(int(arg or 1)))
            elif command == "/refresh":
                controller.refresh()
                _print_view(controller.go_to_page(1))
            elif command == "/clear":
                if click.confirm("Delete the whole chat history?"):
                    controller.clear_history()
                    click.echo("History cleared.")
            elif command == "/archive":
                count = controller.archive_history()
                click.echo(f"Archived {count} messages.")
            elif command == "/export":
                _write_export(assistant, arg or None)
            else:
                if controller.current_page != 1:
                    controller.go_to_page(1)
                try:
                    assistant.send(text)
                except KeyboardInterrupt:
                    click.echo(click.style("\n[cancelled]", dim=True))
                    continue
                error = controller.view().error
                if error:
                    click.echo(click.style(f"Error: {error}", fg="red"), err=True)
        except ValueError:
            click.echo(f"Invalid argument: {arg!r}", err=True)
        except ChatpipeError as e:
            click.echo(click.style(f"Error: {e}", fg="red"), err=True)


def _write_export(assistant, output: Optional[str]) -> Path:
    from .history import export_filename

    path = Path(output) if output else Path(export_filename())
    transcript = assistant.export_transcript()
    path.write_text(transcript, encoding="utf-8")
    click.echo(f"Exported history to {path}")
    return path


@cli.command("export")
@click.argument("output", required=False, type=click.Path(dir_okay=False))
@click.pass_context
def export_cmd(ctx, output: Optional[str]):
    """Export the whole chat history as a text transcript."""
    assistant = _build_assistant(ctx)
    try:
        _write_export(assistant, output)
    except ChatpipeError as e:
        _fail(str(e))


@cli.command()
@click.option("--yes", is_flag=True, help="Do not ask for confirmation")
@click.pass_context
def clear(ctx, yes: bool):
    """Delete the whole chat history."""
    if not yes and not click.confirm("Delete the whole chat history?"):
        return
    try:
        _build_assistant(ctx).controller.clear_history()
    except ChatpipeError as e:
        _fail(str(e))
    click.echo("History cleared.")


@cli.command()
@click.pass_context
def archives(ctx):
    """List archived chat sessions."""
    try:
        sessions = _build_assistant(ctx).controller.list_archives()
    except ChatpipeError as e:
        _fail(str(e))
    if not sessions:
        click.echo("No archived sessions.")
        return
    for s in sessions:
        click.echo(f"{s.archived_at}  {s.message_count:>4} messages  {s.preview}")


@cli.command()
@click.argument("archived_at")
@click.pass_context
def restore(ctx, archived_at: str):
    """Restore an archived session into the active history."""
    try:
        count = _build_assistant(ctx).controller.restore_archive(archived_at)
    except ChatpipeError as e:
        _fail(str(e))
    click.echo(f"Restored {count} messages.")


@cli.command()
@click.argument("text", required=False)
@click.pass_context
def notes(ctx, text: Optional[str]):
    """Show the notes scratchpad, or replace it with TEXT."""
    channel = _build_assistant(ctx).notes
    try:
        if text is None:
            click.echo(channel.load())
            return
        channel.edit(text)
        if not channel.flush():
            _fail("Could not save notes")
    except ChatpipeError as e:
        _fail(str(e))
    click.echo("Notes saved.")


@cli.command()
@click.argument("state", type=click.Choice(["on", "off"]), required=False)
@click.pass_context
def sound(ctx, state: Optional[str]):
    """Show or set whether audio cues are played."""
    from .cues import Preferences

    prefs = Preferences.load()
    if state is None:
        click.echo("on" if prefs.sound_enabled else "off")
        return
    prefs.sound_enabled = state == "on"
    prefs.save()
    click.echo(f"Sound {state} ({PREFERENCES_PATH})")


def main():
    cli(obj={})


if __name__ == "__main__":
    main()
