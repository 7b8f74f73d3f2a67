"""Click CLI: loads config and the persisted dialogue, runs machine turns, shows results."""

import asyncio
import logging
import sys
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import click
from dotenv import load_dotenv
from rich.console import Console
from rich.logging import RichHandler

from config.config_loader import AppConfig, load_config
from multilogue import plato
from multilogue.controller import TurnController
from multilogue.errors import MultilogueError
from multilogue.machines.anthropic import AnthropicMachine
from multilogue.machines.base import Machine, MachineError
from multilogue.machines.gemini import GeminiMachine
from multilogue.machines.openai_machine import OpenAIMachine
from multilogue.models import MachineConfig
from multilogue.output import print_dialogue, print_notice, print_picker_hint, print_thoughts, save_to_file
from multilogue.presentation import ViewMode, derive_view_mode, display, extract, initialize_from_html, redisplay
from multilogue.roles import RoleTable
from multilogue.settings import parse_query
from multilogue.store import MULTILOGUE_KEY, THOUGHTS_KEY, FileStore
from multilogue.worker import Worker, WorkerExecutor, WorkerFactory

logger = logging.getLogger(__name__)

console = Console(legacy_windows=False)

MACHINE_CLASSES: dict[str, type[Machine]] = {
    "openai": OpenAIMachine,
    "anthropic": AnthropicMachine,
    "gemini": GeminiMachine,
}


@dataclass
class _Session:
    config: AppConfig
    store: FileStore


def _setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(message)s",
        handlers=[RichHandler(rich_tracebacks=True, show_path=False)],
    )


def _dialogue_roles(config: AppConfig) -> RoleTable:
    """Role table in which every configured machine speaks as the assistant."""
    roles = config.roles
    for spec in config.machines.values():
        roles = roles.with_assistant(spec.name)
    return roles


def _build_machine(config: AppConfig, key: str) -> Machine:
    spec = config.machines[key]
    if spec.sdk not in MACHINE_CLASSES:
        raise MachineError(key, f"Unknown sdk '{spec.sdk}'")
    return MACHINE_CLASSES[spec.sdk](spec)


def _worker_factory(config: AppConfig) -> WorkerFactory:
    """A fresh worker per request, built from the request's machine config."""

    def factory(machine_config: Mapping[str, Any]) -> Worker:
        return Worker(_build_machine(config, machine_config["work"]))

    return factory


def _machine_config(config: AppConfig, key: str) -> MachineConfig:
    spec = config.machines[key]
    return MachineConfig(name=spec.name, work=spec.key)


@click.group()
@click.option("--store-dir", default=None, help="Directory holding the persisted dialogue (default: from config)")
@click.option("--verbose", is_flag=True, help="Enable DEBUG-level logging")
@click.pass_context
def main(ctx: click.Context, store_dir: str | None, verbose: bool) -> None:
    """Multilogue -- a persisted multi-party dialogue with a language model.

    \b
    Examples:
      multilogue load dialogue.plato
      multilogue run --machine deepseek --query "temperature=0.7"
      multilogue show
      multilogue save out.plato
    """
    # Reconfigure stdout/stderr to UTF-8 on Windows so dialogue text containing
    # Unicode chars doesn't crash the ANSI render path.
    if sys.platform == "win32":
        if hasattr(sys.stdout, "reconfigure"):
            sys.stdout.reconfigure(encoding="utf-8", errors="replace")
        if hasattr(sys.stderr, "reconfigure"):
            sys.stderr.reconfigure(encoding="utf-8", errors="replace")

    load_dotenv()
    _setup_logging(verbose)

    try:
        config = load_config()
    except (FileNotFoundError, ValueError) as exc:
        console.print(f"[bold red]Config error:[/bold red] {exc}")
        sys.exit(1)

    effective_store_dir = Path(store_dir) if store_dir else config.defaults.store_dir
    ctx.obj = _Session(config=config, store=FileStore(effective_store_dir))


@main.command()
@click.option("--machine", "machine_key", default=None, help="Machine to ask (default: from config)")
@click.option("--query", default=None, help="Settings query string, e.g. 'temperature=0.7&top_p=0.9'")
@click.pass_obj
def run(session: _Session, machine_key: str | None, query: str | None) -> None:
    """Ask the machine for its next turn in the dialogue."""
    config = session.config
    key = machine_key or config.defaults.machine
    if key not in config.machines:
        console.print(f"[bold red]Error:[/bold red] Unknown machine '{key}'. Known: {', '.join(sorted(config.machines))}")
        sys.exit(1)
    if key not in config.available_machines:
        logger.warning("Machine %s has no API key configured; the turn will likely fail", key)

    settings = parse_query(query if query is not None else config.defaults.query)
    machine_config = _machine_config(config, key)
    roles = _dialogue_roles(config)
    controller = TurnController(
        store=session.store,
        executor=WorkerExecutor(_worker_factory(config)),
        machine_config=machine_config,
        settings=settings,
        roles=roles,
        notify=print_notice,
    )

    def on_change(changed_key: str, value: str) -> None:
        if changed_key == MULTILOGUE_KEY:
            print_dialogue(plato.parse(value, roles))
        elif changed_key == THOUGHTS_KEY:
            print_thoughts(value)

    unsubscribe = session.store.subscribe(on_change)
    try:
        result = asyncio.run(controller.run_cycle())
    finally:
        unsubscribe()

    if result.error is not None:
        sys.exit(1)
    if result.passed:
        console.print(f"[dim]{machine_config.name} passed; the dialogue is unchanged.[/dim]")


@main.command()
@click.pass_obj
def show(session: _Session) -> None:
    """Display the persisted dialogue."""
    text = session.store.get(MULTILOGUE_KEY)
    if derive_view_mode(text) is ViewMode.PICKER:
        print_picker_hint()
        return
    print_dialogue(plato.parse(text, _dialogue_roles(session.config)))


@main.command()
@click.option("--output", "output_path", type=click.Path(dir_okay=False), default=None, help="Write the fragment to a file")
@click.option("--source", "source_path", type=click.Path(exists=True, dir_okay=False), default=None,
              help="Re-render a previously rendered fragment instead of the stored dialogue")
@click.pass_obj
def html(session: _Session, output_path: str | None, source_path: str | None) -> None:
    """Render the dialogue as an HTML fragment."""
    if source_path:
        fragment = redisplay(Path(source_path).read_text(encoding="utf-8"))
    else:
        fragment = display(session.store.get(MULTILOGUE_KEY), _dialogue_roles(session.config))
    if output_path:
        Path(output_path).write_text(fragment, encoding="utf-8")
        console.print(f"[dim]Saved to: {output_path}[/dim]")
    else:
        click.echo(fragment)


@main.command()
@click.argument("file", type=click.Path(exists=True, dir_okay=False))
@click.option("--html", "is_html", is_flag=True, help="FILE is a rendered HTML fragment, not Plato text")
@click.pass_obj
def load(session: _Session, file: str, is_html: bool) -> None:
    """Replace the persisted dialogue with the contents of FILE."""
    content = Path(file).read_text(encoding="utf-8")
    if is_html:
        try:
            content = plato.serialize(extract(content))
        except MultilogueError as exc:
            print_notice(f"Could not read dialogue markup from {file}: {exc}")
            sys.exit(1)
    session.store.set(MULTILOGUE_KEY, content)
    turns = plato.parse(content, _dialogue_roles(session.config)).turns
    console.print(f"Loaded {len(turns)} turns from {file}")


@main.command()
@click.argument("file", type=click.Path(exists=True, dir_okay=False))
@click.pass_obj
def init(session: _Session, file: str) -> None:
    """Seed the dialogue from a static HTML FILE if nothing is stored yet."""
    text = initialize_from_html(session.store, Path(file).read_text(encoding="utf-8"))
    turns = plato.parse(text, _dialogue_roles(session.config)).turns
    console.print(f"Dialogue has {len(turns)} turns")


@main.command()
@click.argument("file", type=click.Path(dir_okay=False))
@click.pass_obj
def save(session: _Session, file: str) -> None:
    """Save the persisted dialogue to FILE as Plato text."""
    try:
        saved = save_to_file(session.store.get(MULTILOGUE_KEY) or "", Path(file))
    except ValueError as exc:
        print_notice(str(exc))
        sys.exit(1)
    console.print(f"[dim]Saved to: {saved}[/dim]")


@main.command()
@click.pass_obj
def edit(session: _Session) -> None:
    """Edit the dialogue's Plato text in $EDITOR."""
    current = session.store.get(MULTILOGUE_KEY) or ""
    edited = click.edit(current, extension=".plato")
    if edited is None:
        console.print("[dim]No changes.[/dim]")
        return
    session.store.set(MULTILOGUE_KEY, edited)
    if derive_view_mode(edited) is ViewMode.PICKER:
        print_picker_hint()
    else:
        print_dialogue(plato.parse(edited, _dialogue_roles(session.config)))


@main.command()
@click.pass_obj
def thoughts(session: _Session) -> None:
    """Print the machine's latest thoughts."""
    text = session.store.get(THOUGHTS_KEY)
    if not text:
        console.print("[dim]No thoughts yet.[/dim]")
        return
    print_thoughts(text)


if __name__ == "__main__":
    main()
