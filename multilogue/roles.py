"""Configurable tables mapping speakers and reply roles onto dialogue roles."""

from dataclasses import dataclass, field, replace

from multilogue.models import ROLES

_DEFAULT_SPEAKERS = {role: role for role in ROLES}
_DEFAULT_REPLY_ROLES = {"model": "assistant", "developer": "system"}


def _check_role(role: str, where: str) -> str:
    if role not in ROLES:
        raise ValueError(f"Unknown role {role!r} in {where}; expected one of {', '.join(ROLES)}")
    return role


@dataclass(frozen=True)
class RoleTable:
    """Speaker -> role and reply role -> role lookups.

    Speaker lookups ignore case. Unknown speakers get ``default_role``;
    unknown or missing reply roles are treated as ``assistant``.
    """

    speakers: dict[str, str] = field(default_factory=lambda: dict(_DEFAULT_SPEAKERS))
    reply_roles: dict[str, str] = field(default_factory=lambda: dict(_DEFAULT_REPLY_ROLES))
    default_speaker: str = "user"
    default_role: str = "user"

    def __post_init__(self) -> None:
        _check_role(self.default_role, "default_role")
        folded = {}
        for speaker, role in self.speakers.items():
            folded[speaker.casefold()] = _check_role(role, f"speakers[{speaker!r}]")
        object.__setattr__(self, "speakers", folded)
        for reply_role, role in self.reply_roles.items():
            _check_role(role, f"reply_roles[{reply_role!r}]")

    def role_for_speaker(self, speaker: str) -> str:
        return self.speakers.get(speaker.casefold(), self.default_role)

    def role_for_reply(self, role: str | None) -> str:
        if not role:
            return "assistant"
        if role in ROLES:
            return role
        return self.reply_roles.get(role, "assistant")

    def with_assistant(self, name: str) -> "RoleTable":
        """Return a copy in which ``name`` speaks as the assistant."""
        speakers = dict(self.speakers)
        speakers[name.casefold()] = "assistant"
        return replace(self, speakers=speakers)
