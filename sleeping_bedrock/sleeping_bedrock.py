"""Sleeping Bedrock listener lifecycle."""

import asyncio
from typing import Optional, Callable, Dict, Any

from .engine import BedrockEngine
from .errors import ListenerError, ShutdownError
from .interceptor import ConnectionInterceptor
from .log_sink import EngineLogSink
from .models import ListenerState, Settings, WakeCallback
from .startup import StartupSequencer


class SleepingBedrock:
    """
    Occupies the Bedrock port while the real server is down.

    Every client that connects is disconnected with the login message and
    reported through the wake callback. init() and close() are serialized;
    a listener that failed to start or was closed cannot be started again.
    """

    def __init__(self, settings: Settings, wake_callback: WakeCallback,
                 engine_factory: Callable[..., BedrockEngine] = BedrockEngine,
                 log_sink=None):
        self.settings = settings
        self.log = log_sink or EngineLogSink()
        self.interceptor = ConnectionInterceptor(settings, wake_callback, self.log)
        self.sequencer = StartupSequencer(settings, self.interceptor, engine_factory, self.log)

        self.engine: Optional[BedrockEngine] = None
        self.state = ListenerState.UNINITIALIZED
        self._lock = asyncio.Lock()

    @property
    def is_listening(self) -> bool:
        return self.state in (ListenerState.LISTENING, ListenerState.LISTENING_DEGRADED)

    @property
    def connections(self) -> int:
        return self.interceptor.connections

    async def init(self) -> None:
        """
        Start listening.

        Raises:
            StartupError: If the engine failed to start (the listener is FAILED)
            asyncio.CancelledError: If cancelled mid-start (the listener is FAILED)
            ListenerError: If the listener already failed or was closed
        """
        async with self._lock:
            if self.is_listening:
                self.log.warning("Already listening")
                return
            if self.state in (ListenerState.FAILED, ListenerState.CLOSED):
                raise ListenerError(f"Cannot start a {self.state.value} listener")

            self.state = ListenerState.STARTING
            try:
                self.engine, self.state = await self.sequencer.start()
            except BaseException:
                # Includes cancellation
                self.state = ListenerState.FAILED
                raise

    async def close(self) -> None:
        """
        Stop listening and release the port.

        Closing a listener that is not running logs and returns.

        Raises:
            ShutdownError: If the engine failed or did not stop in time
        """
        async with self._lock:
            if self.engine is None:
                self.log.info(f"Nothing to close ({self.state.value})")
                return

            self.log.info("Closing...")
            engine, self.engine = self.engine, None
            self.state = ListenerState.CLOSED

            try:
                await asyncio.wait_for(
                    engine.shutdown(stay_alive=True),
                    timeout=self.settings.shutdown_timeout
                )
            except asyncio.TimeoutError:
                self.log.error(f"Engine did not stop within {self.settings.shutdown_timeout} seconds")
                raise ShutdownError("Engine shutdown timed out") from None
            except Exception as e:
                self.log.error(f"Close error: {e}")
                raise ShutdownError(f"Engine shutdown failed: {e}") from e

            self.log.info("Closed")

    def get_status(self) -> Dict[str, Any]:
        """Get listener status."""
        return {
            "state": self.state.value,
            "port": self.settings.port,
            "listening": self.is_listening,
            "connections": self.connections
        }
