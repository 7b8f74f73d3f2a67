"""Turn controller: one machine turn from persisted dialogue back to storage.

    IDLE --DISPATCH--> DISPATCHED --SUCCEEDED--------> COMPLETED --SETTLE--> IDLE
                                  --MALFORMED/TRANSPORT_ERROR--> FAILED --SETTLE--> IDLE

:func:`transition` and :func:`interpret_reply` are pure; :class:`TurnController`
applies their results to the store and reports notices.
"""

import asyncio
import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from multilogue import plato
from multilogue.cmj import build_request, from_reply
from multilogue.desoup import desoup
from multilogue.errors import (
    EmptyDialogueError,
    InvalidTransitionError,
    MalformedReplyError,
    MultilogueError,
    TransportError,
    WorkerBusyError,
)
from multilogue.models import Dialogue, MachineConfig, Turn
from multilogue.roles import RoleTable
from multilogue.store import MULTILOGUE_KEY, THOUGHTS_KEY, KeyValueStore
from multilogue.worker import Reply, WorkerExecutor

logger = logging.getLogger(__name__)

PASS_UTTERANCES = frozenset({"...", "silence", "pass"})


class State(str, Enum):
    IDLE = "idle"
    DISPATCHED = "dispatched"
    COMPLETED = "completed"
    FAILED = "failed"


class Event(str, Enum):
    DISPATCH = "dispatch"
    SUCCEEDED = "succeeded"
    MALFORMED = "malformed"
    TRANSPORT_ERROR = "transport_error"
    SETTLE = "settle"


_TRANSITIONS: dict[tuple[State, Event], State] = {
    (State.IDLE, Event.DISPATCH): State.DISPATCHED,
    (State.DISPATCHED, Event.SUCCEEDED): State.COMPLETED,
    (State.DISPATCHED, Event.MALFORMED): State.FAILED,
    (State.DISPATCHED, Event.TRANSPORT_ERROR): State.FAILED,
    (State.COMPLETED, Event.SETTLE): State.IDLE,
    (State.FAILED, Event.SETTLE): State.IDLE,
}


def transition(state: State, event: Event) -> State:
    """Next state for ``event`` in ``state``.

    Raises:
        InvalidTransitionError: If the machine has no such edge.
    """
    try:
        return _TRANSITIONS[(state, event)]
    except KeyError:
        raise InvalidTransitionError(state, event) from None


def is_pass(text: str) -> bool:
    """True for an empty reply or one of the reserved pass utterances."""
    normalized = text.strip().casefold()
    return not normalized or normalized in PASS_UTTERANCES


@dataclass
class ReplyOutcome:
    event: Event
    dialogue: Dialogue                 # dialogue to persist; unchanged unless appended
    turn: Turn | None = None
    thoughts: str = ""
    passed: bool = False
    error: MultilogueError | None = None

    @property
    def appended(self) -> bool:
        return self.event is Event.SUCCEEDED and not self.passed


def interpret_reply(
    reply: Mapping[str, Any],
    dialogue: Dialogue,
    assistant_name: str,
    roles: RoleTable | None = None,
) -> ReplyOutcome:
    """Decide what a worker reply does to the dialogue. No side effects."""
    kind = reply.get("type")
    if kind == "error":
        return ReplyOutcome(
            Event.TRANSPORT_ERROR, dialogue,
            error=TransportError(f"Worker reported an error: {reply.get('error')}"),
        )
    if kind != "success":
        return ReplyOutcome(
            Event.MALFORMED, dialogue,
            error=MalformedReplyError(f"Unknown reply type: {kind!r}"),
        )

    data = reply.get("data")
    if not isinstance(data, Mapping) or data.get("content") is None:
        return ReplyOutcome(
            Event.MALFORMED, dialogue,
            error=MalformedReplyError("Machine response is missing essential content"),
        )

    turn = from_reply(data, assistant_name, roles)
    thoughts = desoup(data.get("reasoning_content"))
    if is_pass(turn.content):
        return ReplyOutcome(Event.SUCCEEDED, dialogue, turn=turn, thoughts=thoughts, passed=True)
    return ReplyOutcome(
        Event.SUCCEEDED,
        Dialogue([*dialogue.turns, turn]),
        turn=turn,
        thoughts=thoughts,
    )


@dataclass
class CycleResult:
    outcome: State | None              # COMPLETED / FAILED, None when nothing was dispatched
    dialogue: Dialogue
    appended: bool = False
    passed: bool = False
    thoughts: str = ""
    error: MultilogueError | None = None


def _log_notice(message: str) -> None:
    logger.warning("Notice: %s", message)


class TurnController:
    """Drives one machine turn per cycle against a persisted dialogue."""

    def __init__(
        self,
        store: KeyValueStore,
        executor: WorkerExecutor,
        machine_config: MachineConfig,
        settings: Mapping[str, Any],
        roles: RoleTable | None = None,
        notify: Callable[[str], None] | None = None,
    ) -> None:
        self._store = store
        self._executor = executor
        self._machine_config = machine_config
        self._settings = settings
        self._roles = (roles or RoleTable()).with_assistant(machine_config.name)
        self._notify = notify or _log_notice
        self._state = State.IDLE
        self.history: list[State] = [State.IDLE]

    @property
    def state(self) -> State:
        return self._state

    def _enter(self, event: Event) -> State:
        self._state = transition(self._state, event)
        self.history.append(self._state)
        return self._state

    def _fail(self, error: MultilogueError) -> None:
        logger.error("Turn failed: %s", error)
        self._notify(str(error))

    def trigger(self) -> asyncio.Task:
        """Schedule a cycle on the running loop and return without waiting."""
        return asyncio.ensure_future(self.run_cycle())

    async def run_cycle(self) -> CycleResult:
        """Read the dialogue, ask the machine for one turn, fold the answer back."""
        dialogue = plato.parse(self._store.get(MULTILOGUE_KEY), self._roles)

        # A finished exchange leaves the state COMPLETED/FAILED until the
        # owning cycle settles; the slot is taken until then.
        if self._state is not State.IDLE or self._executor.busy:
            error = WorkerBusyError("A machine turn is already in progress")
            self._fail(error)
            return CycleResult(None, dialogue, error=error)
        if not dialogue.turns:
            error = EmptyDialogueError()
            logger.info("Dialogue is empty, nothing to send")
            self._notify(str(error))
            return CycleResult(None, dialogue, error=error)

        request = build_request(self._machine_config, self._settings, dialogue)
        results: list[CycleResult] = []

        def on_reply(reply: Reply) -> None:
            results.append(self._handle_reply(reply, dialogue))

        logger.info(
            "Dispatching %d turns to machine %s (%s)",
            len(dialogue.turns), self._machine_config.work, self._machine_config.name,
        )
        self._enter(Event.DISPATCH)
        try:
            task = self._executor.submit(request, on_reply)
            await task
        finally:
            if self._state is State.DISPATCHED:
                self._enter(Event.TRANSPORT_ERROR)
            self._enter(Event.SETTLE)
        return results[0]

    def _handle_reply(self, reply: Reply, dialogue: Dialogue) -> CycleResult:
        logger.debug("Reply received: type=%s", reply.get("type"))
        try:
            outcome = interpret_reply(reply, dialogue, self._machine_config.name, self._roles)
            if outcome.error is not None:
                self._enter(outcome.event)
                self._fail(outcome.error)
                return CycleResult(self._state, dialogue, error=outcome.error)

            if outcome.thoughts.strip():
                self._store.set(THOUGHTS_KEY, outcome.thoughts)
            if outcome.passed:
                logger.info("Machine %s passed; dialogue left as is", self._machine_config.name)
            else:
                self._store.set(MULTILOGUE_KEY, plato.serialize(outcome.dialogue))
                logger.info("Appended turn from %s", self._machine_config.name)
            self._enter(outcome.event)
            return CycleResult(
                self._state,
                outcome.dialogue,
                appended=outcome.appended,
                passed=outcome.passed,
                thoughts=outcome.thoughts,
            )
        except Exception as exc:
            error = MalformedReplyError(f"An error occurred while processing the machine response: {exc}")
            if self._state is not State.DISPATCHED:
                # The outcome was already decided; only the report failed.
                logger.error("Turn %s, then failed while reporting: %s", self._state.value, error)
                return CycleResult(self._state, dialogue, error=error)
            self._enter(Event.MALFORMED)
            self._fail(error)
            return CycleResult(self._state, dialogue, error=error)
