"""Shared pytest fixtures."""

from collections.abc import Mapping
from pathlib import Path
from typing import Any
from unittest.mock import AsyncMock

import pytest

from config.config_loader import AppConfig, DefaultsConfig, MachineSpec
from multilogue import plato
from multilogue.machines.base import Machine
from multilogue.models import Dialogue, MachineConfig, Turn
from multilogue.roles import RoleTable
from multilogue.store import MULTILOGUE_KEY, MemoryStore
from multilogue.worker import Worker


@pytest.fixture
def roles() -> RoleTable:
    return RoleTable().with_assistant("Claude")


@pytest.fixture
def sample_dialogue() -> Dialogue:
    return Dialogue([
        Turn(speaker="user", role="user", content="Hi"),
        Turn(speaker="assistant", role="assistant", content="Hello"),
    ])


@pytest.fixture
def machine_config() -> MachineConfig:
    return MachineConfig(name="Claude", work="claude")


@pytest.fixture
def sample_store(sample_dialogue: Dialogue) -> MemoryStore:
    return MemoryStore({MULTILOGUE_KEY: plato.serialize(sample_dialogue)})


@pytest.fixture
def sample_machine_spec() -> MachineSpec:
    return MachineSpec(
        key="test_machine",
        name="Tester",
        sdk="test",
        model="test-model-1",
        api_key_env="TEST_API_KEY",
        max_tokens=1024,
        base_url=None,
    )


@pytest.fixture
def sample_defaults_config(tmp_path: Path) -> DefaultsConfig:
    return DefaultsConfig(
        machine="claude",
        store_dir=tmp_path / "store",
    )


@pytest.fixture
def sample_app_config(sample_defaults_config: DefaultsConfig) -> AppConfig:
    spec = MachineSpec(
        key="claude",
        name="Claude",
        sdk="anthropic",
        model="claude-sonnet-4-20250514",
        api_key_env="ANTHROPIC_API_KEY",
        max_tokens=4096,
    )
    return AppConfig(
        defaults=sample_defaults_config,
        machines={"claude": spec},
        available_machines={"claude"},
    )


def success_reply(content: Any = "Great, let's continue.", reasoning: Any = "", role: str = "assistant") -> dict:
    return {"type": "success", "data": {"role": role, "content": content, "reasoning_content": reasoning}}


class MockMachine(Machine):
    """Test double Machine."""

    def __init__(self, machine_name: str = "mock", reply_data: Mapping[str, Any] | None = None) -> None:
        self._name = machine_name
        self._reply_data = dict(reply_data or success_reply()["data"])
        # Shadow the class methods with AsyncMocks at the instance level.
        # ABC check passes because complete is defined in the class body below.
        self.complete = AsyncMock(return_value=self._reply_data)  # type: ignore[assignment]
        self.close = AsyncMock(return_value=None)  # type: ignore[assignment]

    def name(self) -> str:
        return self._name

    def model_string(self) -> str:
        return "mock-model"

    async def complete(self, messages, settings):  # type: ignore[override]
        """Default implementation; replaced by AsyncMock in __init__."""
        return self._reply_data


class RecordingFactory:
    """Worker factory that remembers every worker and machine it built."""

    def __init__(self, machine: MockMachine | None = None, error: Exception | None = None) -> None:
        self.machine = machine or MockMachine()
        self.error = error
        self.configs: list[Mapping[str, Any]] = []
        self.workers: list[Worker] = []

    def __call__(self, machine_config: Mapping[str, Any]) -> Worker:
        self.configs.append(machine_config)
        if self.error is not None:
            raise self.error
        worker = Worker(self.machine)
        self.workers.append(worker)
        return worker


@pytest.fixture
def mock_machine() -> MockMachine:
    return MockMachine()


@pytest.fixture
def recording_factory(mock_machine: MockMachine) -> RecordingFactory:
    return RecordingFactory(mock_machine)
