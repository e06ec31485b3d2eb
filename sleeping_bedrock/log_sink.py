"""Logging adapter handed to the transport engine and listener core."""

import logging
from typing import Optional


class EngineLogSink(logging.LoggerAdapter):
    """
    Logger adapter that tags every message with the listener name.

    The engine calls disable() when it tears itself down. This sink belongs
    to the owning process, so disabling it does nothing.
    """

    def __init__(self, logger: Optional[logging.Logger] = None, prefix: str = "[BedRock]"):
        super().__init__(logger or logging.getLogger("sleeping_bedrock"), {})
        self.prefix = prefix

    def process(self, msg, kwargs):
        return f"{self.prefix} {msg}", kwargs

    def disable(self) -> None:
        pass
