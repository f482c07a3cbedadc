"""
Field Nodes terminal: interactive console application.

Renders the terminal with rich.live, reads input in a worker thread so the
event loop keeps animating, and completes commands with Tab.
"""

import asyncio
import sys
from typing import List

from rich.console import Console
from rich.live import Live
from rich.text import Text

from .config import settings
from .core.terminal import TerminalStateMachine
from .core.typewriter import TypewriterScheduler
from .storage.engine import LocalNodeStore, NodeStoreBase
from .storage.kv import JsonFileStore, PersistentStore
from .storage.remote import RemoteNodeStore
from .utils.events import log_debug

QUIT_COMMANDS = ("/quit", "/q")

PALETTE = {
    "accent": "#D65CA9",
    "prompt": "#B27CB6",
    "frame": "#A05C8D",
    "muted": "#9AA0A6",
    "ink": "#F5EDEE",
}


def build_node_store(store: PersistentStore) -> NodeStoreBase:
    """Backend-as-a-service when configured, otherwise the local store."""
    if settings.remote_enabled:
        log_debug(f"[STORE] remote backend at {settings.SUPABASE_URL}")
        return RemoteNodeStore()
    return LocalNodeStore(store)


def style_for(line: str) -> str:
    if line.startswith(">"):
        return PALETTE["accent"]
    if line.startswith(("┌", "└")):
        return PALETTE["frame"]
    if line.startswith(("available:", "type ", "format:", "press ")):
        return PALETTE["muted"]
    return PALETTE["ink"]


class ConsoleRenderer:
    """Callable handed to the state machine; draws one frame into the live view."""

    def __init__(self, console: Console):
        self.console = console
        self.live = Live(console=console, auto_refresh=False, vertical_overflow="visible")

    def __call__(self, lines: List[str]) -> None:
        text = Text()
        for i, line in enumerate(lines):
            if i:
                text.append("\n")
            text.append(line, style=style_for(line))
        self.live.update(text, refresh=True)


def install_completion(machine: TerminalStateMachine) -> None:
    try:
        import readline
    except ImportError:
        # no line editing on this platform
        return

    def complete(text, state):
        hint = machine.suggestion(readline.get_line_buffer())
        return hint if state == 0 and hint else None

    readline.set_completer_delims("")
    readline.set_completer(complete)
    readline.parse_and_bind("tab: complete")


async def run(console: Console = None) -> None:
    console = console or Console()
    store = JsonFileStore(settings.STORE_PATH, settings.LOCK_FILE)
    nodes = build_node_store(store)
    renderer = ConsoleRenderer(console)
    machine = TerminalStateMachine(store, nodes, TypewriterScheduler(store), renderer)
    install_completion(machine)

    loop = asyncio.get_running_loop()
    with renderer.live:
        await machine.boot()
        while True:
            await machine.wait_idle()
            try:
                raw = await loop.run_in_executor(None, console.input, "> ")
            except (EOFError, KeyboardInterrupt):
                break
            if raw.strip().lower() in QUIT_COMMANDS:
                break
            await machine.submit(raw)


def cli() -> None:
    try:
        asyncio.run(run())
    except KeyboardInterrupt:
        sys.exit(130)


if __name__ == "__main__":
    cli()
