"""HTML presentation of a dialogue, and the way back for edit mode.

Rendered markup carries each turn's speaker and role as ``data-`` attributes
so extraction never has to guess them from the visible prose. Extraction only
accepts markup produced by :func:`render`.
"""

import html
import logging
import re
from enum import Enum

from bs4 import BeautifulSoup, NavigableString, Tag

from multilogue import plato
from multilogue.errors import MultilogueError, RenderExtractionError
from multilogue.models import ROLES, Dialogue, Turn
from multilogue.roles import RoleTable
from multilogue.store import MULTILOGUE_KEY, KeyValueStore

logger = logging.getLogger(__name__)

ERROR_PLACEHOLDER = (
    "<p class='dialogue-error'>Error loading content. "
    "Please try editing or loading a new file.</p>"
)

_PARAGRAPH_BREAK = re.compile(r"\n[ \t]*\n")


class ViewMode(str, Enum):
    CONTENT = "content"
    EDIT = "edit"
    PICKER = "picker"


def derive_view_mode(text: str | None, editing: bool = False) -> ViewMode:
    """Pick what a reader sees: the dialogue, the editor, or the file picker."""
    if editing:
        return ViewMode.EDIT
    if text and text.strip():
        return ViewMode.CONTENT
    return ViewMode.PICKER


def _paragraphs(content: str) -> list[str]:
    return [block for block in _PARAGRAPH_BREAK.split(content) if block.strip()]


def _render_turn(turn: Turn) -> str:
    speaker = html.escape(turn.speaker)
    role = html.escape(turn.role)
    paragraphs = "".join(
        "<p>" + html.escape(block, quote=False).replace("\n", "<br>") + "</p>"
        for block in _paragraphs(turn.content)
    )
    return (
        f'<div class="turn role-{role}" data-speaker="{speaker}" data-role="{role}">'
        f'<p class="speaker">{speaker}</p>'
        f'<div class="utterance">{paragraphs}</div>'
        "</div>"
    )


def render(dialogue: Dialogue) -> str:
    """Render a Dialogue as an HTML fragment."""
    turns = "\n".join(_render_turn(turn) for turn in dialogue.turns)
    return f'<div class="dialogue">\n{turns}\n</div>' if turns else '<div class="dialogue"></div>'


def _paragraph_text(paragraph: Tag) -> str:
    parts: list[str] = []
    for child in paragraph.children:
        if isinstance(child, NavigableString):
            parts.append(str(child))
        elif child.name == "br":
            parts.append("\n")
        else:
            parts.append(child.get_text())
    return "".join(parts)


def _extract_turn(div: Tag, index: int) -> Turn:
    speaker = div.get("data-speaker")
    role = div.get("data-role")
    if not isinstance(speaker, str) or not plato.is_valid_speaker(speaker):
        raise RenderExtractionError(f"Turn {index} has no usable data-speaker attribute")
    if role not in ROLES:
        raise RenderExtractionError(f"Turn {index} has unknown role {role!r}")
    utterance = div.find("div", class_="utterance", recursive=False)
    if utterance is None:
        raise RenderExtractionError(f"Turn {index} has no utterance block")
    content = "\n\n".join(
        _paragraph_text(p) for p in utterance.find_all("p", recursive=False)
    )
    return Turn(speaker=speaker, role=role, content=content)


def extract(fragment: str) -> Dialogue:
    """Read a Dialogue back from markup produced by :func:`render`.

    Raises:
        RenderExtractionError: If the fragment was not produced by render.
    """
    soup = BeautifulSoup(fragment or "", "html.parser")
    root = soup.find("div", class_="dialogue")
    if root is None:
        raise RenderExtractionError("Fragment has no dialogue block")
    turns = [
        _extract_turn(div, index)
        for index, div in enumerate(root.find_all("div", class_="turn", recursive=False))
    ]
    return Dialogue(turns)


def display(text: str | None, roles: RoleTable | None = None) -> str:
    """Render persisted Plato text, or the error placeholder."""
    try:
        return render(plato.parse(text, roles))
    except MultilogueError as exc:
        logger.error("Error rendering Plato text to HTML: %s", exc)
        return ERROR_PLACEHOLDER


def redisplay(fragment: str) -> str:
    """Re-render a displayed fragment; foreign markup gives the placeholder."""
    try:
        return render(extract(fragment))
    except RenderExtractionError as exc:
        logger.error("Could not read dialogue markup: %s", exc)
        return ERROR_PLACEHOLDER


def initialize_from_html(store: KeyValueStore, fragment: str) -> str:
    """Seed the persisted dialogue from static markup when nothing is stored yet.

    Returns the Plato text now stored.
    """
    current = store.get(MULTILOGUE_KEY)
    if current is not None:
        return current
    text = ""
    if fragment.strip():
        try:
            text = plato.serialize(extract(fragment))
        except MultilogueError as exc:
            logger.error("Error converting initial HTML to Plato text: %s", exc)
    store.set(MULTILOGUE_KEY, text)
    return text
