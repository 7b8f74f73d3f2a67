"""CMJ bridge: dialogue <-> role-tagged message records for a model request."""

from collections.abc import Iterable, Mapping
from dataclasses import asdict
from typing import Any

from multilogue.desoup import desoup
from multilogue.models import ROLES, Dialogue, MachineConfig, Turn
from multilogue.roles import RoleTable


def to_request_records(dialogue: Dialogue) -> list[dict[str, str]]:
    """One ``{role, name, content}`` record per turn, in order. Reasoning stays out."""
    return [
        {"role": turn.role, "name": turn.speaker, "content": turn.content}
        for turn in dialogue.turns
    ]


def from_reply(data: Mapping[str, Any], assistant_name: str, roles: RoleTable | None = None) -> Turn:
    """Build the machine's new turn from the ``data`` of a success reply."""
    roles = roles or RoleTable()
    return Turn(
        speaker=assistant_name,
        role=roles.role_for_reply(data.get("role")),
        content=desoup(data.get("content")).replace("\r\n", "\n"),
    )


def from_records(records: Iterable[Mapping[str, Any]], roles: RoleTable | None = None) -> Dialogue:
    """Turn message records back into a Dialogue.

    The speaker is the record's ``name`` (or its role when unnamed); a record
    without a valid role gets the role its speaker maps to.
    """
    roles = roles or RoleTable()
    turns: list[Turn] = []
    for record in records:
        role = record.get("role")
        speaker = record.get("name") or role or roles.default_speaker
        if role not in ROLES:
            role = roles.role_for_speaker(speaker)
        turns.append(Turn(speaker=speaker, role=role, content=desoup(record.get("content"))))
    return Dialogue(turns)


def build_request(
    config: MachineConfig,
    settings: Mapping[str, Any],
    dialogue: Dialogue,
) -> dict[str, Any]:
    """The message posted to a worker: machine config, settings and CMJ records."""
    return {
        "config": asdict(config),
        "settings": dict(settings),
        "messages": to_request_records(dialogue),
    }
