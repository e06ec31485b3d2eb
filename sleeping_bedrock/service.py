"""Service coordinating the sleeping listener and the wake actions."""

import asyncio
import logging
import signal
import time
from enum import Enum
from typing import Optional, Dict, Any, Callable

from .config_manager import ConfigManager
from .errors import SleepingServerError
from .models import PlayerSignal, Settings
from .sleeping_bedrock import SleepingBedrock
from .wol_sender import WoLSender


logger = logging.getLogger(__name__)


class ServiceState(Enum):
    """Service operational states."""
    SLEEPING = "sleeping"      # Listener active, real server down
    WAKING = "waking"          # Player seen, wake actions running
    AWAKE = "awake"            # Real server started, listener released
    STOPPING = "stopping"      # Shutting down gracefully


class SleepingService:
    """Runs the sleeping listener and wakes the real server when a player joins."""

    def __init__(self, config_path: str = "config.json",
                 listener_factory: Callable[..., SleepingBedrock] = SleepingBedrock):
        self.config_manager = ConfigManager(config_path)
        self.config: Dict[str, Any] = {}
        self.settings: Optional[Settings] = None
        self.listener_factory = listener_factory

        # Components
        self.listener: Optional[SleepingBedrock] = None
        self.wol_sender: Optional[WoLSender] = None
        self.server_process: Optional[asyncio.subprocess.Process] = None

        # State management
        self.current_state = ServiceState.SLEEPING
        self.state_change_time = time.time()
        self.wake_task: Optional[asyncio.Task] = None

        # Control
        self.is_running = False
        self.shutdown_event = asyncio.Event()

        self.stats = {
            "start_time": time.time(),
            "wake_signals": 0,
            "wake_attempts": 0,
            "failed_wol_sends": 0,
            "server_starts": 0,
            "state_transitions": 0,
            "last_wake_time": None,
            "total_uptime": 0.0
        }

    async def initialize(self) -> bool:
        """Load configuration and build the wake components."""
        try:
            logger.info("Initializing Sleeping Bedrock service...")

            self.config = self.config_manager.load_config()
            self.settings = self.config_manager.get_settings()

            if self.config["wake"]["wol_enabled"]:
                self.wol_sender = WoLSender(self.config)
                logger.debug("WoL sender initialized")

            if not self.config["wake"]["start_command"] and not self.wol_sender:
                logger.warning("No wake action configured, players will only be logged")

            logger.info("All components initialized successfully")
            return True

        except Exception as e:
            logger.error(f"Initialization failed: {e}")
            return False

    async def start(self) -> bool:
        """Start the service."""
        if self.is_running:
            logger.warning("Service is already running")
            return False

        if not self.config["bedrock"]["enabled"]:
            logger.error("Bedrock listener is disabled in configuration")
            return False

        logger.info("Starting Sleeping Bedrock service...")
        self._setup_signal_handlers()

        self.is_running = True
        if not await self._start_listener():
            self.is_running = False
            return False

        logger.info("Sleeping Bedrock service started successfully")
        return True

    async def _start_listener(self) -> bool:
        """Create a fresh listener; failed and closed listeners are never reused."""
        listener = self.listener_factory(self.settings, self._on_player_signal)
        try:
            await listener.init()
        except SleepingServerError as e:
            logger.error(f"Failed to start sleeping listener: {e}")
            return False

        self.listener = listener
        self._transition_to_state(ServiceState.SLEEPING)
        return True

    async def _stop_listener(self) -> None:
        if self.listener is None:
            return

        listener, self.listener = self.listener, None
        try:
            await listener.close()
        except SleepingServerError as e:
            logger.error(f"Error closing sleeping listener: {e}")

    def _on_player_signal(self, player: PlayerSignal) -> None:
        """Wake callback; may fire several times for one wake-up."""
        self.stats["wake_signals"] += 1

        if not self.is_running or self.current_state != ServiceState.SLEEPING:
            logger.debug(f"Ignoring {player.platform.value} player signal in state {self.current_state.value}")
            return

        self._transition_to_state(ServiceState.WAKING)
        self.wake_task = asyncio.create_task(self._wake_server(f"{player.platform.value} player connected"))

    async def _wake_server(self, reason: str) -> None:
        """Release the port, wake the real server, then go back to sleep once it stops."""
        logger.info(f"Waking server: {reason}")
        self.stats["wake_attempts"] += 1
        self.stats["last_wake_time"] = time.time()

        try:
            await self._stop_listener()

            if self.wol_sender and not await self.wol_sender.wake_server_with_retry():
                self.stats["failed_wol_sends"] += 1

            start_command = self.config["wake"]["start_command"]
            self._transition_to_state(ServiceState.AWAKE)

            if start_command:
                await self._run_server(start_command)
            else:
                cooldown = self.config["wake"]["cooldown_seconds"]
                logger.info(f"Listening again in {cooldown} seconds")
                await asyncio.sleep(cooldown)

            if self.is_running and not await self._start_listener():
                logger.error("Could not resume sleeping, stopping service")
                self.shutdown_event.set()

        except asyncio.CancelledError:
            logger.debug("Wake task cancelled")
            raise
        except Exception as e:
            logger.error(f"Error while waking server: {e}")
            self.shutdown_event.set()

    async def _run_server(self, command: str) -> None:
        """Run the real server and wait for it to exit."""
        logger.info(f"Starting server: {command}")
        self.stats["server_starts"] += 1

        self.server_process = await asyncio.create_subprocess_shell(command)
        try:
            return_code = await self.server_process.wait()
            logger.info(f"Server process exited with code {return_code}")
        finally:
            self.server_process = None

    def _transition_to_state(self, new_state: ServiceState) -> None:
        """Transition to a new service state."""
        if new_state == self.current_state:
            return

        logger.info(f"Service state transition: {self.current_state.value} -> {new_state.value}")
        self.current_state = new_state
        self.state_change_time = time.time()
        self.stats["state_transitions"] += 1

    async def run_forever(self) -> None:
        """Run the service until shutdown."""
        try:
            logger.info("Sleeping Bedrock service running...")
            await self.shutdown_event.wait()
        finally:
            await self.shutdown()

    async def shutdown(self) -> None:
        """Shutdown the service gracefully."""
        if not self.is_running:
            return

        logger.info("Shutting down Sleeping Bedrock service...")
        self._transition_to_state(ServiceState.STOPPING)
        self.is_running = False

        if self.server_process and self.server_process.returncode is None:
            logger.info(f"Leaving server process {self.server_process.pid} running")

        if self.wake_task and not self.wake_task.done():
            self.wake_task.cancel()
            try:
                await self.wake_task
            except asyncio.CancelledError:
                pass

        await self._stop_listener()

        self.stats["total_uptime"] = time.time() - self.stats["start_time"]
        logger.info("Sleeping Bedrock service shutdown complete")

    def _setup_signal_handlers(self) -> None:
        """Set up signal handlers for graceful shutdown."""
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, self.shutdown_event.set)
            except (NotImplementedError, RuntimeError):
                logger.debug(f"Signal handler for {sig.name} not supported here")

    def get_status(self) -> Dict[str, Any]:
        """Get current service status."""
        current_time = time.time()

        return {
            "service_state": self.current_state.value,
            "state_change_time": self.state_change_time,
            "time_in_current_state": current_time - self.state_change_time,
            "is_running": self.is_running,
            "listener": self.listener.get_status() if self.listener else None,
            "server_process_running": self.server_process is not None,
            "statistics": self.stats
        }

    def get_config_info(self) -> Dict[str, Any]:
        """Get configuration information."""
        wake = self.config["wake"]
        return {
            "bedrock_port": self.config["bedrock"]["port"],
            "hide_ip_in_logs": self.config["bedrock"]["hide_ip_in_logs"],
            "wol_enabled": wake["wol_enabled"],
            "mac_address": wake["mac_address"] if wake["wol_enabled"] else None,
            "start_command_configured": bool(wake["start_command"]),
            "cooldown_seconds": wake["cooldown_seconds"],
            "wol_packet": self.wol_sender.get_packet_info() if self.wol_sender else None
        }
