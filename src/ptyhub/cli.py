"""CLI entry point for ptyhub."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field

import aiofiles
import typer
from rich.console import Console
from rich.table import Table

from ptyhub.config import PtyHubConfig
from ptyhub.errors import PTYError, TransportError
from ptyhub.events.wire import PtyEvent
from ptyhub.pty.manager import PTYManager

app = typer.Typer(
    name="ptyhub",
    help="Run programs on pseudo-terminals and watch their output.",
    no_args_is_help=True,
)

console = Console()


def setup_logging(verbose: bool = False) -> None:
    level = logging.DEBUG if verbose else logging.WARNING
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )


def format_event(event: PtyEvent) -> str:
    """Symbolic tuple form, e.g. ``(pty-output "3f2a...")``."""
    return f'({event.type.value} "{event.session_id}")'


@dataclass
class RunResult:
    session_id: str
    output: str
    matched: bool
    events: list[PtyEvent] = field(default_factory=list)
    sessions: list[dict] = field(default_factory=list)


@app.command()
def run(
    command: str = typer.Argument(help="Program to run on a new PTY."),
    args: list[str] | None = typer.Argument(None, help="Arguments for the program."),
    inputs: list[str] | None = typer.Option(
        None,
        "--input",
        "-i",
        help="Line to send to the program (repeatable, newline appended).",
    ),
    expect: str | None = typer.Option(
        None,
        "--expect",
        "-e",
        help="Regex to wait for. Without it, wait until output goes quiet.",
    ),
    timeout: float = typer.Option(
        5.0, "--timeout", "-t", help="Seconds to wait for output."
    ),
    events: bool = typer.Option(
        False, "--events", help="Print the notification events received."
    ),
    output_file: str | None = typer.Option(
        None, "--output", "-o", help="Also save the captured output to a file."
    ),
    verbose: bool = typer.Option(
        False, "--verbose", "-v", help="Enable debug logging."
    ),
    config_file: str | None = typer.Option(
        None, "--config", "-c", help="Config file path."
    ),
) -> None:
    """Spawn a program, feed it input, and print what it wrote."""
    setup_logging(verbose)
    config = PtyHubConfig.load(config_file)

    try:
        result = asyncio.run(
            _run_session(command, args or [], inputs or [], expect, timeout, config)
        )
    except TransportError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1)

    typer.echo(result.output, nl=not result.output.endswith("\n"))

    if events:
        typer.echo("---")
        for event in result.events:
            typer.echo(format_event(event))

    if verbose:
        _print_sessions(result.sessions)

    if output_file:
        asyncio.run(_save_output(output_file, result.output))

    if expect and not result.matched:
        typer.echo(f"Error: {expect!r} not seen within {timeout}s", err=True)
        raise typer.Exit(1)


@app.command("config")
def show_config(
    config_file: str | None = typer.Option(
        None, "--config", "-c", help="Config file path."
    ),
) -> None:
    """Print the effective configuration as JSON."""
    config = PtyHubConfig.load(config_file)
    typer.echo(config.model_dump_json(indent=2))


async def _run_session(
    command: str,
    args: list[str],
    inputs: list[str],
    expect: str | None,
    timeout: float,
    config: PtyHubConfig,
) -> RunResult:
    """Drive one session through the manager, draining events meanwhile."""
    manager = PTYManager(config=config)
    received: list[PtyEvent] = []

    async def _consume_wire() -> None:
        while True:
            event = await manager.await_event()
            if event is None:
                break
            received.append(event)

    consumer = asyncio.create_task(_consume_wire())
    try:
        session_id = await manager.spawn(command, args)
        for line in inputs:
            manager.write(session_id, line if line.endswith("\n") else line + "\n")

        if expect:
            matched = await manager.wait_for(session_id, expect, timeout=timeout)
        else:
            await _wait_for_quiet(manager, session_id, timeout)
            matched = True

        return RunResult(
            session_id=session_id,
            output=manager.read(session_id),
            matched=matched,
            events=received,
            sessions=manager.list_sessions(),
        )
    finally:
        await manager.shutdown()
        await consumer


async def _wait_for_quiet(
    manager: PTYManager, session_id: str, timeout: float, settle_time: float = 0.3
) -> None:
    """Wait until the session stops producing output (or closes, or times out)."""
    session = manager.get(session_id)
    if session is None:
        raise PTYError(f"Session vanished: {session_id}")

    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while session.alive:
        remaining = deadline - loop.time()
        if remaining <= 0:
            break
        got_data = await session.buffer.wait_for_data(
            timeout=min(remaining, settle_time)
        )
        if not got_data and len(session.buffer) > 0:
            break


async def _save_output(path: str, text: str) -> None:
    async with aiofiles.open(path, "w", encoding="utf-8") as f:
        await f.write(text)


def _print_sessions(sessions: list[dict]) -> None:
    table = Table(title="PTY sessions")
    for column in ("id", "command", "pid", "status", "exit code", "chars"):
        table.add_column(column)
    for s in sessions:
        table.add_row(
            s["id"],
            s["command"],
            str(s["pid"]),
            s["status"],
            "" if s["exit_code"] is None else str(s["exit_code"]),
            str(s["chars"]),
        )
    console.print(table)


def main() -> None:
    app()


if __name__ == "__main__":
    main()
