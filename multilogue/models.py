"""Pure dataclasses for the multilogue dialogue engine. No logic, no deps."""

from dataclasses import dataclass, field

ROLES = ("system", "user", "assistant")


@dataclass
class Turn:
    speaker: str           # participant name or role token
    role: str              # "system", "user", "assistant"
    content: str
    reasoning: str | None = None  # hidden deliberation, never serialized


@dataclass
class Dialogue:
    turns: list[Turn] = field(default_factory=list)


@dataclass
class MachineConfig:
    name: str              # assistant identity written as the speaker
    work: str              # machine key in settings.yaml
