"""Headless engine startup with tolerable world generation faults."""

import asyncio
import logging
from typing import Callable, Tuple

from .engine import BedrockEngine, EngineConfig, CONNECTION_ATTEMPT, FALLBACK_GENERATOR, configure
from .errors import FaultKind, StartupError
from .faults import classify_bootstrap_error
from .interceptor import ConnectionInterceptor
from .models import ListenerState, Settings


logger = logging.getLogger(__name__)


class StartupSequencer:
    """Builds, wires and bootstraps the transport engine for a sleeping listener."""

    def __init__(self, settings: Settings, interceptor: ConnectionInterceptor,
                 engine_factory: Callable[..., BedrockEngine], log_sink):
        self.settings = settings
        self.interceptor = interceptor
        self.engine_factory = engine_factory
        self.log = log_sink

    def build_config(self) -> EngineConfig:
        """Engine configuration for a listener that never simulates a world."""
        config = configure(
            motd=self.settings.motd,
            sub_motd="Sleeping",
            headless=True,
            hide_addresses=self.settings.hide_ip_in_logs
        )

        try:
            for world in config.worlds:
                world.generator = FALLBACK_GENERATOR
        except Exception as e:
            logger.debug(f"Could not force fallback world generator: {e}")

        return config

    async def start(self) -> Tuple[BedrockEngine, ListenerState]:
        """
        Create the engine, install the connection interceptor and bootstrap.

        Returns:
            Tuple[BedrockEngine, ListenerState]: the running engine and either
            LISTENING or LISTENING_DEGRADED

        Raises:
            StartupError: If the engine could not start listening
        """
        port = self.settings.port
        self.log.info(f"Starting on {port}")

        try:
            engine = self.engine_factory(self.build_config(), self.log)
        except Exception as e:
            self.log.error(f"Init error: {e}")
            raise StartupError(f"Could not create engine: {e}") from e

        # Installed before bootstrap so it is active even if world loading fails
        engine.on(CONNECTION_ATTEMPT, self.interceptor)

        try:
            await engine.bootstrap(self.settings.bind_address, port)
        except asyncio.CancelledError:
            self.log.warning("Startup cancelled")
            await self._discard(engine)
            raise
        except Exception as e:
            if classify_bootstrap_error(e) is FaultKind.TOLERABLE:
                self.log.warning(f"World generation warning (expected for sleeping server): {e}")
                self.log.info("Connection listener still active, Bedrock players can connect to wake the server")
                return engine, ListenerState.LISTENING_DEGRADED

            self.log.error(f"Init error: {e}")
            await self._discard(engine)
            raise StartupError(f"Could not start on port {port}: {e}") from e

        self.log.info(f"Successfully started on port {port}")
        return engine, ListenerState.LISTENING

    async def _discard(self, engine: BedrockEngine) -> None:
        """Tear down an engine that failed to start so it delivers no events."""
        try:
            await engine.shutdown(stay_alive=True)
        except Exception as e:
            logger.debug(f"Error discarding failed engine: {e}")
