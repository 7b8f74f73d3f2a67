"""Error taxonomy for the conversion engine and the turn protocol."""


class MultilogueError(Exception):
    """Base class for all multilogue failures."""


class EmptyDialogueError(MultilogueError):
    """Raised when a turn is requested on a dialogue with no turns."""

    def __init__(self) -> None:
        super().__init__("Dialogue is empty. Please add some content first.")


class MalformedReplyError(MultilogueError):
    """A success reply arrived without the content it must carry."""


class TransportError(MultilogueError):
    """The worker failed or reported an error instead of a reply."""


class WorkerBusyError(MultilogueError):
    """A second exchange was submitted while one is still outstanding."""


class RenderExtractionError(MultilogueError):
    """A markup fragment could not be read back into a dialogue."""


class PlatoError(MultilogueError):
    """A dialogue cannot be written as Plato text."""


class InvalidTransitionError(MultilogueError):
    """The turn state machine received an event it has no edge for."""

    def __init__(self, state: object, event: object) -> None:
        self.state = state
        self.event = event
        super().__init__(f"No transition from {state} on {event}")
