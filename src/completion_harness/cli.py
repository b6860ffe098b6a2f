"""Command-line entry point: run one completion session in the terminal."""

from __future__ import annotations

import asyncio
import logging
import signal
import sys
import uuid
from typing import Any

import click
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from completion_harness.config import load_config
from completion_harness.core.cancellation import PauseToken
from completion_harness.core.session import CompletionSession
from completion_harness.errors import HarnessError
from completion_harness.llm.client import AsyncLLMClient
from completion_harness.tools.registry import ToolRegistry
from completion_harness.types import (
    ConversationMessage,
    InvocationStatus,
    Model,
    ProgressEvent,
    SessionOutcome,
    SessionResult,
)

console = Console()


class StreamingDisplay:
    """Renders progress events to the terminal as they arrive."""

    def __init__(self, con: Console):
        self.con = con
        self._streaming = False
        self._thinking = False
        self._shown: dict[str, InvocationStatus] = {}

    def handle(self, event: ProgressEvent):
        if event.reasoning_content:
            if not self._thinking:
                self._flush()
                self._thinking = True
            self.con.print(event.reasoning_content, end="", style="dim italic", highlight=False)

        if event.text:
            if self._thinking:
                self._thinking = False
                self.con.print()
            if not self._streaming:
                self._streaming = True
                self.con.print()
            self.con.print(event.text, end="", highlight=False)

        for record in event.tool_invocations:
            if self._shown.get(record.id) is record.status:
                continue
            self._shown[record.id] = record.status
            self._flush()
            if record.status is InvocationStatus.INVOKING:
                args = str(record.arguments)
                if len(args) > 120:
                    args = args[:120] + "..."
                self.con.print(f"[yellow]> {record.tool}[/yellow] [dim]{args}[/dim]")
                continue
            ok = record.status is InvocationStatus.DONE
            icon = "[green]OK[/green]" if ok else "[red]FAIL[/red]"
            out = record.result.to_message() if record.result else ""
            if len(out) > 600:
                out = out[:600] + "\n..."
            if out.strip():
                self.con.print(Panel(out, title=f"{icon} {record.tool}",
                                     border_style="dim", expand=False))

    def finish(self, result: SessionResult):
        self._flush()
        if result.outcome is SessionOutcome.PAUSED:
            self.con.print("[yellow]Paused.[/yellow]")
        elif result.outcome is SessionOutcome.ROUND_LIMIT_EXCEEDED:
            self.con.print(f"[red]Stopped after {result.rounds} rounds (round limit).[/red]")

        table = Table(show_header=False, box=None, pad_edge=False)
        metrics = result.metrics
        table.add_row("[dim]rounds[/dim]", f"[dim]{result.rounds}[/dim]")
        table.add_row("[dim]tokens[/dim]", f"[dim]{metrics.get('completion_tokens') or '-'}[/dim]")
        table.add_row(
            "[dim]first token[/dim]",
            f"[dim]{metrics.get('time_first_token_millsec', 0):.0f} ms[/dim]",
        )
        table.add_row(
            "[dim]total[/dim]",
            f"[dim]{metrics.get('time_completion_millsec', 0):.0f} ms[/dim]",
        )
        self.con.print(table)

    def _flush(self):
        if self._streaming or self._thinking:
            self.con.print()
            self._streaming = False
            self._thinking = False


def _install_pause_handler(pause: PauseToken) -> Any:
    """First Ctrl-C pauses the round; a second one interrupts."""

    def _handler(signum, frame):
        if pause.is_paused:
            raise KeyboardInterrupt
        pause.pause()

    return signal.signal(signal.SIGINT, _handler)


async def _run(
    config_path: str | None,
    model_id: str | None,
    no_stream: bool,
    max_rounds: int | None,
    prompt: str,
) -> SessionResult:
    config = load_config(config_path)
    if max_rounds is not None:
        config.max_rounds = max_rounds
    if no_stream:
        config.assistant.stream_output = False

    profile = config.active_profile
    model = Model(id=model_id, provider=profile.provider) if model_id else config.default_model
    assistant = config.assistant.build(model)

    registry = ToolRegistry()
    registry.discover()

    client = AsyncLLMClient(profile, timeout=config.request_timeout)
    session = CompletionSession(client, config, runner=registry)
    display = StreamingDisplay(console)
    pause = PauseToken()
    previous = _install_pause_handler(pause)

    message = ConversationMessage(role="user", content=prompt, id=uuid.uuid4().hex)
    try:
        result = await session.run(
            [message],
            assistant,
            on_progress=display.handle,
            pause=pause,
        )
    finally:
        signal.signal(signal.SIGINT, previous)
        await client.close()
    display.finish(result)
    return result


@click.command()
@click.option("--config", "-c", "config_path", default=None,
              help="Path to completion_harness.yaml (auto-detected from CWD or ~/.config/completion-harness/)")
@click.option("--model", "-m", "model_id", default=None, help="Model id (overrides default_model)")
@click.option("--no-stream", is_flag=True, help="Request a single non-streamed response")
@click.option("--max-rounds", type=int, default=None, help="Tool-call round limit (0 = unbounded)")
@click.option("--verbose", "-v", is_flag=True, help="Verbose logging")
@click.argument("prompt")
def main(config_path: str | None, model_id: str | None, no_stream: bool,
         max_rounds: int | None, verbose: bool, prompt: str):
    """Completion Harness - stream one chat completion with tool calls."""
    if verbose:
        logging.basicConfig(level=logging.DEBUG)
    else:
        logging.basicConfig(level=logging.WARNING)

    try:
        asyncio.run(_run(config_path, model_id, no_stream, max_rounds, prompt))
    except HarnessError as e:
        console.print(f"[red]Error: {e}[/red]")
        sys.exit(1)
    except KeyboardInterrupt:
        console.print("\n[yellow]Interrupted.[/yellow]")
        sys.exit(130)


if __name__ == "__main__":
    main()
