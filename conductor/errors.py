"""Errors raised while a turn is being processed.

Stage handlers raise these and the turn coordinator converts them into a
single terminal error event on the client connection.
"""


class ConductorError(RuntimeError):
    """Base class for turn processing errors."""


class ClassificationError(ConductorError):
    """The classifier's output could not be read as a verdict. Nothing is persisted."""


class DecompositionError(ConductorError):
    """The decomposition output contained no recognisable subtasks."""


class ProviderError(ConductorError):
    """A model call failed. Retries belong to the provider adapter, not here."""


class AgentLoopError(ConductorError):
    """An iteration of the agent loop failed."""

    def __init__(self, iteration: int, cause: BaseException):
        super().__init__(f"Iteration {iteration} failed: {cause}")
        self.iteration = iteration
        self.cause = cause


class InvalidTransitionError(ConductorError):
    """A stage handler asked for a state the workflow graph does not allow."""


class TurnCancelled(Exception):
    """A newer turn or an explicit interrupt superseded this one.

    Not an error: the turn stops producing output and no terminal event is
    reported for it.
    """
