"""Plato text: the compact plain-text form of a dialogue.

A turn opens with a marker line holding only the speaker name and a colon::

    Socrates:
    What is virtue?

    Meno:
    There is no difficulty in answering that.

The body runs until the next marker or the end of the text. Blank lines
around a body are dropped, blank lines inside it are kept. A content line that
would read as a marker is written with one leading backslash and read back
without it. Text without any marker is a single turn of the default speaker.
"""

import logging
import re

from multilogue.errors import PlatoError
from multilogue.models import Dialogue, Turn
from multilogue.roles import RoleTable

logger = logging.getLogger(__name__)

_SPEAKER = r"[^\W_](?:[\w .'-]{0,62}[\w.'-])?"
_SPEAKER_RE = re.compile(rf"{_SPEAKER}\Z")
_MARKER_RE = re.compile(rf"[ \t]*(?P<speaker>{_SPEAKER})[ \t]*:[ \t]*\Z")

_ESCAPE = "\\"


def is_valid_speaker(name: str) -> bool:
    """True when ``name`` can be written as a marker line."""
    return bool(_SPEAKER_RE.match(name))


def _needs_escape(line: str) -> bool:
    if _MARKER_RE.match(line):
        return True
    return line.startswith(_ESCAPE) and _needs_escape(line[1:])


def _escape(line: str) -> str:
    return _ESCAPE + line if _needs_escape(line) else line


def _unescape(line: str) -> str:
    if line.startswith(_ESCAPE) and _needs_escape(line[1:]):
        return line[1:]
    return line


def _trim_blank(lines: list[str]) -> list[str]:
    start, end = 0, len(lines)
    while start < end and not lines[start].strip():
        start += 1
    while end > start and not lines[end - 1].strip():
        end -= 1
    return lines[start:end]


def _body(lines: list[str]) -> str:
    return "\n".join(_unescape(line) for line in _trim_blank(lines))


def parse(text: str | None, roles: RoleTable | None = None) -> Dialogue:
    """Parse Plato text into a Dialogue. Never raises."""
    roles = roles or RoleTable()
    if not text or not text.strip():
        return Dialogue()

    lines = text.replace("\r\n", "\n").split("\n")
    turns: list[Turn] = []
    speaker: str | None = None
    pending: list[str] = []
    preamble: list[str] = []

    for line in lines:
        marker = _MARKER_RE.match(line)
        if marker is None:
            (pending if speaker is not None else preamble).append(line)
            continue
        if speaker is not None:
            turns.append(Turn(speaker, roles.role_for_speaker(speaker), _body(pending)))
        speaker = marker.group("speaker")
        pending = []

    if speaker is None:
        logger.debug("No turn markers found; reading text as one %s turn", roles.default_speaker)
        return Dialogue([Turn(roles.default_speaker, roles.role_for_speaker(roles.default_speaker), text)])

    turns.append(Turn(speaker, roles.role_for_speaker(speaker), _body(pending)))
    if any(line.strip() for line in preamble):
        opening = Turn(roles.default_speaker, roles.role_for_speaker(roles.default_speaker), _body(preamble))
        turns.insert(0, opening)
    return Dialogue(turns)


def serialize(dialogue: Dialogue) -> str:
    """Write a Dialogue as Plato text. Reasoning is never written."""
    blocks: list[str] = []
    for turn in dialogue.turns:
        if not is_valid_speaker(turn.speaker):
            raise PlatoError(f"Speaker {turn.speaker!r} cannot be written as a Plato marker")
        marker = f"{turn.speaker}:"
        if turn.content:
            # Stored text is LF only; parse folds \r\n the same way.
            lines = turn.content.replace("\r\n", "\n").split("\n")
            body = "\n".join(_escape(line) for line in lines)
            blocks.append(f"{marker}\n{body}")
        else:
            blocks.append(marker)
    return "\n\n".join(blocks)
