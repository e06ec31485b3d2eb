"""Exceptions raised by the sleeping listener and its transport engine."""

from enum import Enum


class FaultKind(Enum):
    """How a startup fault affects the listener."""
    TOLERABLE = "tolerable"     # Unused subsystem failed, keep listening
    FATAL = "fatal"             # Listener is unusable


class SleepingServerError(Exception):
    """Base class for sleeping listener errors."""


class ListenerError(SleepingServerError):
    """Raised when a listener is used in a state that does not allow it."""


class StartupError(SleepingServerError):
    """Raised when the listener could not start."""


class ShutdownError(SleepingServerError):
    """Raised when the listener could not be torn down cleanly."""


class EngineError(Exception):
    """Error raised by the transport engine, tagged with its fault kind."""

    kind = FaultKind.FATAL

    def __init__(self, message: str, kind: FaultKind = None):
        super().__init__(message)
        if kind is not None:
            self.kind = kind


class GeneratorError(EngineError):
    """A world could not be prepared because its generator is unavailable."""

    kind = FaultKind.TOLERABLE


class BindError(EngineError):
    """The engine could not bind its listening socket."""

    kind = FaultKind.FATAL
