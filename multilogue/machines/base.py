"""Abstract base for all model backends run inside a worker."""

import logging
from abc import ABC, abstractmethod
from collections.abc import Mapping
from typing import Any

logger = logging.getLogger(__name__)

SAMPLING_KEYS = ("max_completion_tokens", "temperature", "top_p")


class MachineError(Exception):
    """Raised when a machine call fails."""

    def __init__(self, machine_name: str, message: str) -> None:
        self.machine_name = machine_name
        super().__init__(f"[{machine_name}] {message}")


class Machine(ABC):
    """Abstract base for all model backends."""

    @abstractmethod
    def name(self) -> str:
        """Return the machine key (e.g. 'claude', 'deepseek')."""
        ...

    @abstractmethod
    def model_string(self) -> str:
        """Return the actual model identifier string."""
        ...

    @abstractmethod
    async def complete(
        self,
        messages: list[dict[str, str]],
        settings: Mapping[str, Any],
    ) -> dict[str, Any]:
        """Answer the dialogue given as CMJ records.

        Args:
            messages: ``{role, name, content}`` records, oldest first.
            settings: Resolved machine settings (temperature, top_p, ...).

        Returns:
            ``{"role": ..., "content": ..., "reasoning_content": ...}`` where
            content and reasoning may be strings or segment lists.

        Raises:
            MachineError: On API failure or an unusable response.
        """
        ...

    async def close(self) -> None:
        """Release the SDK client. Default: nothing to release."""


def sampling_settings(machine_name: str, settings: Mapping[str, Any]) -> dict[str, Any]:
    """Pick the numeric sampling settings a backend understands.

    Numeric keys whose value stayed a string are dropped with a warning.
    Returns a dict with any of ``temperature``, ``top_p``,
    ``max_completion_tokens``.
    """
    picked: dict[str, Any] = {}
    for key in SAMPLING_KEYS:
        if key not in settings:
            continue
        value = settings[key]
        if isinstance(value, str):
            logger.warning("Machine %s: ignoring non-numeric %s=%r", machine_name, key, value)
            continue
        picked[key] = value
    return picked


def fold_speakers(messages: list[dict[str, str]], own_name: str) -> tuple[str, list[dict[str, str]]]:
    """Reduce CMJ records to a system prompt and alternating user/assistant turns.

    For APIs without participant names. Only the machine's own turns stay
    ``assistant``; every other speaker is folded into user text as
    ``Name: ...``. The last turn is always ``user``, so the reply is a new
    turn rather than a continuation of the previous one.
    """
    system_parts: list[str] = []
    turns: list[dict[str, str]] = []
    for m in messages:
        if m["role"] == "system":
            system_parts.append(m["content"])
            continue
        if m["role"] == "assistant" and m["name"].casefold() == own_name.casefold():
            turns.append({"role": "assistant", "content": m["content"]})
        elif m["role"] == "user" and m["name"] == "user":
            turns.append({"role": "user", "content": m["content"]})
        else:
            turns.append({"role": "user", "content": f"{m['name']}: {m['content']}"})

    if turns and turns[-1]["role"] == "assistant":
        turns[-1] = {"role": "user", "content": f"{own_name}: {turns[-1]['content']}"}

    merged: list[dict[str, str]] = []
    for turn in turns:
        if merged and merged[-1]["role"] == turn["role"]:
            merged[-1]["content"] += "\n\n" + turn["content"]
        else:
            merged.append(dict(turn))
    return "\n\n".join(system_parts), merged


def thinking_budget(machine_name: str, settings: Mapping[str, Any]) -> int | None:
    """Token budget for extended thinking, or None when not requested."""
    value = settings.get("thinking_budget")
    if value is None:
        return None
    if isinstance(value, str) or value <= 0:
        logger.warning("Machine %s: ignoring thinking_budget=%r", machine_name, value)
        return None
    return value
