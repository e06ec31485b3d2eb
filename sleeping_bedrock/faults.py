"""Classification of transport engine bootstrap faults."""

import logging

from .errors import EngineError, FaultKind


logger = logging.getLogger(__name__)

# Message fragments of world preparation failures raised by engines that do
# not tag their errors with a FaultKind.
TOLERABLE_KEYWORDS = ("generator", "overworld", "terrain")


def classify_bootstrap_error(error: BaseException) -> FaultKind:
    """
    Decide whether a bootstrap error still leaves the listener usable.

    Args:
        error: Exception raised by the engine's bootstrap

    Returns:
        FaultKind.TOLERABLE for world/terrain generation failures,
        FaultKind.FATAL for everything else
    """
    if isinstance(error, EngineError):
        return error.kind

    message = str(error).lower()
    if any(keyword in message for keyword in TOLERABLE_KEYWORDS):
        logger.debug(f"Untyped bootstrap error treated as world generation failure: {error}")
        return FaultKind.TOLERABLE

    return FaultKind.FATAL
