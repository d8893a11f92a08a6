"""Errors that end a chat turn."""


class TurnError(Exception):
    """A chat turn could not be completed."""


class IncompleteStreamError(TurnError):
    """The model stream ended without a terminal event."""


class ToolRoundLimitError(TurnError):
    """The model kept requesting tools past the allowed number of rounds."""

    def __init__(self, max_rounds: int) -> None:
        super().__init__(f"Model requested tools after {max_rounds} tool round(s); giving up")
        self.max_rounds = max_rounds
