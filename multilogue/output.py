"""Rich console output and file save for dialogues."""

import logging
from pathlib import Path

from rich.console import Console
from rich.markdown import Markdown
from rich.markup import escape
from rich.panel import Panel
from rich.rule import Rule
from rich.text import Text

from multilogue.models import Dialogue, Turn

logger = logging.getLogger(__name__)

console = Console(legacy_windows=False)

_ROLE_STYLES = {
    "system": "yellow",
    "user": "cyan",
    "assistant": "green",
}


def _turn_panel(turn: Turn) -> Panel:
    return Panel(
        Markdown(turn.content) if turn.content else Text("(empty)", style="dim"),
        title=f"[bold]{turn.speaker}[/bold]",
        subtitle=turn.role,
        border_style=_ROLE_STYLES.get(turn.role, "dim"),
    )


def print_dialogue(dialogue: Dialogue) -> None:
    """Print every turn of the dialogue as a panel."""
    console.print(Rule(f"[bold cyan]Multilogue[/bold cyan] ({len(dialogue.turns)} turns)"))
    for turn in dialogue.turns:
        console.print(_turn_panel(turn))


def print_picker_hint() -> None:
    console.print(
        "[dim]No dialogue yet.[/dim] Load one with [bold]multilogue load FILE[/bold] "
        "or write one with [bold]multilogue edit[/bold]."
    )


def print_thoughts(thoughts: str) -> None:
    console.print(Rule("[bold magenta]Thoughts[/bold magenta]"))
    console.print(Text(thoughts, style="italic"))


def print_notice(message: str) -> None:
    """Show a user-facing notice for a failed or skipped turn."""
    console.print(f"[bold red]Notice:[/bold red] {escape(message)}")


def save_to_file(text: str, path: Path) -> Path:
    """Write Plato text to ``path``, creating parent directories.

    Raises:
        ValueError: If the text is empty; an empty dialogue is never saved.
    """
    if not text.strip():
        raise ValueError("Dialogue is empty. Nothing to save.")
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")
    logger.info("Dialogue saved to: %s", path)
    return path
