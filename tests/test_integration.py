"""Integration tests: real API calls, no mocks. Requires .env with an API key."""

import os
from pathlib import Path

import pytest
from dotenv import load_dotenv

load_dotenv()

_AVAILABLE_KEYS = [
    k for k in ["ANTHROPIC_API_KEY", "OPENAI_API_KEY", "GEMINI_API_KEY", "XAI_API_KEY", "DEEPSEEK_API_KEY"]
    if os.environ.get(k, "").strip()
]
pytestmark = pytest.mark.integration

if not _AVAILABLE_KEYS:
    pytestmark = pytest.mark.skip(reason="Need at least one API key, found none")


async def test_machine_turn_pipeline(tmp_path: Path):
    """Ask the first available machine for one real turn and persist it."""
    from config.config_loader import load_config
    from multilogue import plato
    from multilogue.cli import _dialogue_roles, _machine_config, _worker_factory
    from multilogue.controller import State, TurnController
    from multilogue.settings import parse_query
    from multilogue.store import MULTILOGUE_KEY, FileStore
    from multilogue.worker import WorkerExecutor

    config = load_config()
    assert config.available_machines, "No machine has an API key"
    key = config.defaults.machine if config.defaults.machine in config.available_machines \
        else sorted(config.available_machines)[0]

    store = FileStore(tmp_path / "store")
    store.set(
        MULTILOGUE_KEY,
        "system:\nAnswer in one short sentence.\n\n"
        "Meno:\nCan you tell me, Socrates, whether virtue can be taught?",
    )

    controller = TurnController(
        store=store,
        executor=WorkerExecutor(_worker_factory(config)),
        machine_config=_machine_config(config, key),
        settings=parse_query("max_completion_tokens=1024"),
        roles=_dialogue_roles(config),
    )
    result = await controller.run_cycle()

    assert result.error is None, f"Turn failed: {result.error}"
    assert result.outcome is State.COMPLETED
    dialogue = plato.parse(store.get(MULTILOGUE_KEY), _dialogue_roles(config))
    if result.appended:
        assert len(dialogue.turns) == 3
        assert dialogue.turns[-1].speaker == config.machines[key].name
        assert dialogue.turns[-1].role == "assistant"
        assert dialogue.turns[-1].content
