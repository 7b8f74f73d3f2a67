"""Load settings.yaml into typed dataclasses. Checks API keys at startup."""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path

import yaml

from multilogue.plato import is_valid_speaker
from multilogue.roles import RoleTable

logger = logging.getLogger(__name__)

_SETTINGS_PATH = Path(__file__).parent / "settings.yaml"


@dataclass
class MachineSpec:
    key: str               # settings.yaml entry, sent as MachineConfig.work
    name: str              # assistant identity written into the dialogue
    sdk: str               # "openai", "anthropic", "gemini"
    model: str
    api_key_env: str
    max_tokens: int
    base_url: str | None = None


@dataclass
class DefaultsConfig:
    machine: str
    store_dir: Path
    query: str = ""


@dataclass
class AppConfig:
    defaults: DefaultsConfig
    machines: dict[str, MachineSpec]
    roles: RoleTable = field(default_factory=RoleTable)
    available_machines: set[str] = field(default_factory=set)


def _load_roles(raw: dict) -> RoleTable:
    table = RoleTable()
    return RoleTable(
        speakers={**table.speakers, **{str(k): str(v) for k, v in (raw.get("speakers") or {}).items()}},
        reply_roles={**table.reply_roles, **{str(k): str(v) for k, v in (raw.get("reply_roles") or {}).items()}},
        default_speaker=str(raw.get("default_speaker", table.default_speaker)),
        default_role=str(raw.get("default_role", table.default_role)),
    )


def load_config(settings_path: Path = _SETTINGS_PATH) -> AppConfig:
    """Load and validate configuration from settings.yaml.

    Raises FileNotFoundError if settings file missing, ValueError for a
    machine name or role that the dialogue format cannot carry.
    Logs missing API keys but does not raise; callers check
    available_machines.
    """
    if not settings_path.exists():
        raise FileNotFoundError(f"Settings file not found: {settings_path}")

    with settings_path.open("r", encoding="utf-8") as f:
        raw = yaml.safe_load(f)

    defaults_raw = raw["defaults"]
    defaults = DefaultsConfig(
        machine=str(defaults_raw["machine"]),
        store_dir=Path(defaults_raw["store_dir"]),
        query=str(defaults_raw.get("query") or ""),
    )

    roles = _load_roles(raw.get("roles") or {})
    if not is_valid_speaker(roles.default_speaker):
        raise ValueError(f"default_speaker {roles.default_speaker!r} is not a valid speaker name")

    machines: dict[str, MachineSpec] = {}
    available_machines: set[str] = set()

    for machine_key, machine_raw in raw["machines"].items():
        spec = MachineSpec(
            key=machine_key,
            name=str(machine_raw.get("name", machine_key)),
            sdk=machine_raw["sdk"],
            model=machine_raw["model"],
            api_key_env=machine_raw["api_key_env"],
            max_tokens=int(machine_raw["max_tokens"]),
            base_url=machine_raw.get("base_url"),
        )
        if not is_valid_speaker(spec.name):
            raise ValueError(f"Machine {machine_key!r} has a name that cannot be a speaker: {spec.name!r}")
        machines[machine_key] = spec

        api_key = os.environ.get(machine_raw["api_key_env"], "").strip()
        if api_key:
            available_machines.add(machine_key)
            logger.info("Machine available: %s", machine_key)
        else:
            logger.info(
                "Machine unavailable (no API key): %s; set %s in .env",
                machine_key,
                machine_raw["api_key_env"],
            )

    if defaults.machine not in machines:
        raise ValueError(f"Default machine {defaults.machine!r} is not defined under machines")

    return AppConfig(
        defaults=defaults,
        machines=machines,
        roles=roles,
        available_machines=available_machines,
    )
