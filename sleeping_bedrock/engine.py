"""Minimal Bedrock transport engine: RakNet handshake over UDP."""

import asyncio
import logging
import random
import time
from dataclasses import dataclass, field
from typing import Optional, Dict, Any, Callable, List

from . import raknet
from .errors import EngineError, BindError, GeneratorError


logger = logging.getLogger(__name__)

CONNECTION_ATTEMPT = "connectionAttempt"

DEFAULT_GENERATOR = "overworld"
FALLBACK_GENERATOR = "flat"
AVAILABLE_GENERATORS = ("flat", "void")

BEDROCK_PROTOCOL_VERSION = 748
BEDROCK_GAME_VERSION = "1.21.40"


@dataclass
class WorldConfig:
    """A world the engine prepares during bootstrap."""
    name: str
    generator: str = DEFAULT_GENERATOR
    seed: int = 0


@dataclass
class EngineConfig:
    """Engine configuration built by configure()."""
    motd: str = "Bedrock Server"
    sub_motd: str = "Sleeping"
    max_players: int = 20
    protocol_version: int = BEDROCK_PROTOCOL_VERSION
    game_version: str = BEDROCK_GAME_VERSION
    server_guid: int = field(default_factory=lambda: random.getrandbits(63))
    headless: bool = False
    tick_rate: int = 20
    hide_addresses: bool = False
    session_timeout: float = 10.0
    worlds: List[WorldConfig] = field(default_factory=lambda: [WorldConfig("world")])


def configure(**options: Any) -> EngineConfig:
    """
    Build an engine configuration from keyword options.

    Raises:
        ValueError: If an option is not a known configuration field
    """
    known = EngineConfig.__dataclass_fields__
    unknown = [key for key in options if key not in known]
    if unknown:
        raise ValueError(f"Unknown engine options: {', '.join(sorted(unknown))}")

    config = EngineConfig(**options)
    if config.max_players < 0:
        raise ValueError(f"Invalid max players: {config.max_players}")
    if config.tick_rate <= 0:
        raise ValueError(f"Invalid tick rate: {config.tick_rate}")
    if config.session_timeout <= 0:
        raise ValueError(f"Invalid session timeout: {config.session_timeout}")
    return config


class RakNetSession:
    """
    A client that passed the offline RakNet handshake.

    The session stays half-open until the client sends NewIncomingConnection,
    which marks it connected.
    """

    def __init__(self, engine: "BedrockEngine", address: raknet.Address, mtu: int, client_guid: int):
        self.engine = engine
        self.address = address
        self.mtu = mtu
        self.client_guid = client_guid
        self.created_at = time.time()
        self.last_seen = self.created_at
        self.disconnect_message: Optional[str] = None
        self.accepted = False
        self.connected = False
        self.closed = False

        self._sequence_number = 0
        self._reliable_index = 0
        self._order_index = 0

    def get_address(self) -> str:
        return f"{self.address[0]}:{self.address[1]}"

    def send_reliable(self, payload: bytes) -> None:
        """Send one reliable ordered frame."""
        datagram = raknet.build_frame_set(
            self._sequence_number, payload, self._reliable_index, self._order_index
        )
        self._sequence_number += 1
        self._reliable_index += 1
        self._order_index += 1
        self.engine.send_datagram(datagram, self.address)

    def disconnect(self, message: str) -> None:
        """Show the client a disconnect message and drop the RakNet connection."""
        if self.closed:
            raise EngineError("Session is already closed")

        self.disconnect_message = message
        self.send_reliable(raknet.build_disconnect_game_packet(message))
        self.send_reliable(raknet.build_disconnection_notification())
        logger.debug(f"Sent disconnect: {message}")

    def close(self) -> None:
        """Forget the session. Safe to call more than once."""
        if self.closed:
            return
        self.closed = True
        self.engine.remove_session(self)


@dataclass
class ConnectionEvent:
    """Raised once per session, before any game packet is exchanged."""
    session: RakNetSession


class BedrockProtocol(asyncio.DatagramProtocol):
    """UDP protocol feeding datagrams into the engine."""

    def __init__(self, engine: "BedrockEngine"):
        self.engine = engine
        self.transport: Optional[asyncio.DatagramTransport] = None

    def connection_made(self, transport: asyncio.DatagramTransport) -> None:
        """Called when the UDP socket is ready."""
        self.transport = transport

    def datagram_received(self, data: bytes, addr) -> None:
        """Handle received UDP datagram."""
        self.engine.handle_datagram(data, addr)

    def error_received(self, exc: Exception) -> None:
        """Handle UDP errors."""
        self.engine.log.error(f"UDP error: {exc}")

    def connection_lost(self, exc: Optional[Exception]) -> None:
        """Handle connection loss."""
        if exc:
            self.engine.log.error(f"UDP socket lost: {exc}")


class BedrockEngine:
    """Bedrock transport engine that answers pings and surfaces connection attempts."""

    def __init__(self, config: EngineConfig, log_sink=None):
        self.config = config
        self.log = log_sink or logger

        self.transport: Optional[asyncio.DatagramTransport] = None
        self.sessions: Dict[raknet.Address, RakNetSession] = {}
        self.worlds: Dict[str, WorldConfig] = {}
        self.handlers: Dict[str, List[Callable]] = {}

        self.tick_task: Optional[asyncio.Task] = None
        self.current_tick = 0
        self.port: Optional[int] = None

        self.stats = {
            "pings_answered": 0,
            "handshakes_completed": 0,
            "datagrams_ignored": 0
        }

    def on(self, event: str, handler: Callable) -> None:
        """Register a handler for an engine event."""
        self.handlers.setdefault(event, []).append(handler)

    def _emit(self, event: str, *args) -> None:
        for handler in self.handlers.get(event, []):
            try:
                handler(*args)
            except Exception as e:
                self.log.error(f"Error in {event} handler: {e}")

    @property
    def is_running(self) -> bool:
        return self.transport is not None and not self.transport.is_closing()

    @property
    def local_address(self) -> Optional[raknet.Address]:
        if not self.transport:
            return None
        return self.transport.get_extra_info('sockname')[:2]

    async def bootstrap(self, address: str, port: int) -> None:
        """
        Bind the listening socket, then prepare the configured worlds.

        The socket is bound before worlds are prepared, so a GeneratorError
        leaves the engine accepting connections.

        Raises:
            BindError: If the socket could not be bound
            GeneratorError: If a world uses an unavailable generator
        """
        if self.transport is not None:
            raise EngineError("Engine is already bootstrapped")

        loop = asyncio.get_running_loop()
        try:
            self.transport, _ = await loop.create_datagram_endpoint(
                lambda: BedrockProtocol(self),
                local_addr=(address, port)
            )
        except OSError as e:
            raise BindError(f"Could not bind {address}:{port}: {e}") from e

        self.port = self.local_address[1]
        self.log.info(f"RakNet listening on {address}:{self.port}")

        self._load_worlds()

        if not self.config.headless:
            self.tick_task = asyncio.create_task(self._tick_loop())

    def _load_worlds(self) -> None:
        for world in self.config.worlds:
            if world.generator not in AVAILABLE_GENERATORS:
                raise GeneratorError(f"Invalid generator: {world.generator}")
            self.worlds[world.name] = world
            logger.debug(f"World {world.name} prepared with {world.generator} generator")

    async def _tick_loop(self) -> None:
        interval = 1.0 / self.config.tick_rate
        while True:
            await asyncio.sleep(interval)
            self.current_tick += 1

    def send_datagram(self, data: bytes, address: raknet.Address) -> None:
        if not self.is_running:
            raise EngineError("Engine is not running")
        self.transport.sendto(data, address)

    def remove_session(self, session: RakNetSession) -> None:
        if self.sessions.get(session.address) is session:
            del self.sessions[session.address]

    def _describe(self, address: raknet.Address) -> str:
        """Peer address as it may appear in logs."""
        if self.config.hide_addresses:
            return "client"
        return f"{address[0]}:{address[1]}"

    def _cleanup_stale_sessions(self, current_time: float) -> None:
        """Drop sessions whose client went quiet mid-handshake."""
        cutoff_time = current_time - self.config.session_timeout

        stale_sessions = [
            session for session in self.sessions.values()
            if session.last_seen < cutoff_time
        ]

        for session in stale_sessions:
            session.close()
            logger.debug(f"Cleaned up stale session: {self._describe(session.address)}")

    def handle_datagram(self, data: bytes, addr) -> None:
        """Dispatch one datagram by its RakNet message identifier."""
        if not data:
            return
        address = (addr[0], addr[1])
        packet_id = data[0]

        try:
            if packet_id in (raknet.UNCONNECTED_PING, raknet.UNCONNECTED_PING_OPEN_CONNECTIONS):
                self._handle_unconnected_ping(data, address)
            elif packet_id == raknet.OPEN_CONNECTION_REQUEST_1:
                self._handle_open_connection_request_1(data, address)
            elif packet_id == raknet.OPEN_CONNECTION_REQUEST_2:
                self._handle_open_connection_request_2(data, address)
            elif packet_id & raknet.VALID_DATAGRAM_FLAG and address in self.sessions:
                self._handle_connected_datagram(self.sessions[address], data)
            else:
                # Unknown messages, or datagrams from sessions we already dropped
                self.stats["datagrams_ignored"] += 1
                logger.debug(f"Ignored datagram 0x{packet_id:02x} from {self._describe(address)}")
        except ValueError as e:
            self.stats["datagrams_ignored"] += 1
            logger.debug(f"Malformed datagram 0x{packet_id:02x} from {self._describe(address)}: {e}")

    def _handle_connected_datagram(self, session: RakNetSession, data: bytes) -> None:
        session.last_seen = time.time()
        packet_id = data[0]

        if packet_id & (raknet.ACK_FLAG | raknet.NACK_FLAG):
            # Nothing is retransmitted, so acknowledgements need no bookkeeping
            return

        sequence_number, frames = raknet.parse_frame_set(data)
        self.send_datagram(raknet.build_ack([sequence_number]), session.address)

        for frame in frames:
            if session.closed:
                break
            if frame.split:
                # Handshake messages always fit in one datagram
                logger.debug(f"Dropped split frame from {self._describe(session.address)}")
                continue
            if frame.payload:
                self._handle_connected_message(session, frame.payload)

    def _handle_connected_message(self, session: RakNetSession, payload: bytes) -> None:
        message_id = payload[0]

        if message_id == raknet.CONNECTION_REQUEST:
            _, request_time = raknet.parse_connection_request(payload)
            session.send_reliable(raknet.build_connection_request_accepted(
                session.address, request_time, int(time.time() * 1000)
            ))
            session.accepted = True
        elif message_id == raknet.NEW_INCOMING_CONNECTION:
            if not session.accepted or session.connected:
                return
            session.connected = True
            self.stats["handshakes_completed"] += 1
            self._emit(CONNECTION_ATTEMPT, ConnectionEvent(session))
        elif message_id == raknet.CONNECTED_PING:
            ping_time = raknet.parse_connected_ping(payload)
            session.send_reliable(raknet.build_connected_pong(ping_time, int(time.time() * 1000)))
        elif message_id == raknet.DISCONNECTION_NOTIFICATION:
            session.close()
        else:
            logger.debug(f"Ignored message 0x{message_id:02x} from {self._describe(session.address)}")

    def _handle_unconnected_ping(self, data: bytes, address: raknet.Address) -> None:
        ping_time, _ = raknet.parse_unconnected_ping(data)
        advertisement = raknet.build_advertisement(
            motd=self.config.motd,
            sub_motd=self.config.sub_motd,
            server_guid=self.config.server_guid,
            port=self.port or 0,
            protocol=self.config.protocol_version,
            version=self.config.game_version,
            players=0,
            max_players=self.config.max_players
        )
        self.send_datagram(
            raknet.build_unconnected_pong(ping_time, self.config.server_guid, advertisement),
            address
        )
        self.stats["pings_answered"] += 1

    def _handle_open_connection_request_1(self, data: bytes, address: raknet.Address) -> None:
        protocol, mtu = raknet.parse_open_connection_request_1(data)
        if protocol != raknet.RAKNET_PROTOCOL_VERSION:
            logger.debug(f"Client {self._describe(address)} uses RakNet protocol {protocol}")
        self.send_datagram(raknet.build_open_connection_reply_1(self.config.server_guid, mtu), address)

    def _handle_open_connection_request_2(self, data: bytes, address: raknet.Address) -> None:
        _, mtu, client_guid = raknet.parse_open_connection_request_2(data)
        mtu = min(max(mtu, raknet.MIN_MTU), raknet.MAX_MTU)
        self.send_datagram(
            raknet.build_open_connection_reply_2(self.config.server_guid, address, mtu),
            address
        )

        current_time = time.time()
        self._cleanup_stale_sessions(current_time)
        if address in self.sessions:
            # Retransmitted request for a session that is still open
            return

        # Half-open until the connected handshake completes
        self.sessions[address] = RakNetSession(self, address, mtu, client_guid)
        logger.debug(f"Session opened for {self._describe(address)}")

    async def shutdown(self, stay_alive: bool = False) -> None:
        """
        Stop the engine and release its socket.

        Args:
            stay_alive: Keep the log sink usable for the owning process
        """
        self.log.info("Shutting down engine")

        for session in list(self.sessions.values()):
            session.close()

        if self.tick_task and not self.tick_task.done():
            self.tick_task.cancel()
            try:
                await self.tick_task
            except asyncio.CancelledError:
                pass
        self.tick_task = None

        if self.transport is not None:
            self.transport.close()
            self.transport = None

        if not stay_alive and hasattr(self.log, "disable"):
            self.log.disable()
