"""RakNet message codec used by Minecraft Bedrock clients."""

import ipaddress
import struct
from dataclasses import dataclass
from typing import List, Optional, Tuple


# Offline message identifiers
UNCONNECTED_PING = 0x01
UNCONNECTED_PING_OPEN_CONNECTIONS = 0x02
OPEN_CONNECTION_REQUEST_1 = 0x05
OPEN_CONNECTION_REPLY_1 = 0x06
OPEN_CONNECTION_REQUEST_2 = 0x07
OPEN_CONNECTION_REPLY_2 = 0x08
DISCONNECTION_NOTIFICATION = 0x15
UNCONNECTED_PONG = 0x1C

# Connected messages, carried inside frame sets
CONNECTED_PING = 0x00
CONNECTED_PONG = 0x03
CONNECTION_REQUEST = 0x09
CONNECTION_REQUEST_ACCEPTED = 0x10
NEW_INCOMING_CONNECTION = 0x13

# Connected datagrams
FRAME_SET = 0x84
VALID_DATAGRAM_FLAG = 0x80
ACK = 0xC0
NACK = 0xA0
ACK_FLAG = 0x40
NACK_FLAG = 0x20

# Bedrock game packets
GAME_PACKET = 0xFE
BEDROCK_DISCONNECT = 0x05

OFFLINE_MESSAGE_MAGIC = bytes.fromhex("00ffff00fefefefefdfdfdfd12345678")
RAKNET_PROTOCOL_VERSION = 11
UDP_HEADER_SIZE = 28
MIN_MTU = 576
MAX_MTU = 1492

RELIABLE_ORDERED = 3
SPLIT_FLAG = 0x10
SYSTEM_ADDRESS_COUNT = 20
UNSPECIFIED_ADDRESS = ("0.0.0.0", 0)

Address = Tuple[str, int]


class PacketBuffer:
    """Handles RakNet packet buffer operations."""

    def __init__(self, data: bytes = b''):
        self.data = data
        self.pos = 0

    def _take(self, size: int, what: str) -> bytes:
        if self.pos + size > len(self.data):
            raise ValueError(f"Not enough data for {what}")
        chunk = self.data[self.pos:self.pos + size]
        self.pos += size
        return chunk

    def read_bytes(self, size: int) -> bytes:
        return self._take(size, "bytes")

    def read_byte(self) -> int:
        """Read a single unsigned byte."""
        return self._take(1, "byte")[0]

    def write_byte(self, value: int) -> None:
        self.data += bytes([value & 0xFF])

    def read_bool(self) -> bool:
        return self.read_byte() != 0

    def write_bool(self, value: bool) -> None:
        self.write_byte(1 if value else 0)

    def read_ushort(self) -> int:
        """Read an unsigned short (2 bytes, big-endian)."""
        return struct.unpack('>H', self._take(2, "unsigned short"))[0]

    def write_ushort(self, value: int) -> None:
        """Write an unsigned short (2 bytes, big-endian)."""
        self.data += struct.pack('>H', value)

    def read_uint(self) -> int:
        """Read an unsigned int (4 bytes, big-endian)."""
        return struct.unpack('>I', self._take(4, "unsigned int"))[0]

    def write_uint(self, value: int) -> None:
        self.data += struct.pack('>I', value)

    def read_long(self) -> int:
        """Read a signed long (8 bytes, big-endian)."""
        return struct.unpack('>q', self._take(8, "long"))[0]

    def write_long(self, value: int) -> None:
        """Write a signed long (8 bytes, big-endian)."""
        self.data += struct.pack('>q', value)

    def read_triad(self) -> int:
        """Read a 3-byte little-endian unsigned integer."""
        chunk = self._take(3, "triad")
        return chunk[0] | (chunk[1] << 8) | (chunk[2] << 16)

    def write_triad(self, value: int) -> None:
        """Write a 3-byte little-endian unsigned integer."""
        self.data += bytes([value & 0xFF, (value >> 8) & 0xFF, (value >> 16) & 0xFF])

    def read_varint(self) -> int:
        """Read an unsigned VarInt from the buffer."""
        value = 0
        position = 0

        while True:
            byte = self._take(1, "VarInt")[0]
            value |= (byte & 0x7F) << position

            if (byte & 0x80) == 0:
                break

            position += 7
            if position >= 35:
                raise ValueError("VarInt too long")

        return value

    def write_varint(self, value: int) -> None:
        """Write an unsigned VarInt to the buffer."""
        if value < 0:
            raise ValueError("VarInt cannot be negative")

        data = b''
        while True:
            byte = value & 0x7F
            value >>= 7
            if value != 0:
                byte |= 0x80
            data += bytes([byte])
            if value == 0:
                break

        self.data += data

    def read_string(self) -> str:
        """Read a VarInt-prefixed UTF-8 string (Bedrock game packets)."""
        length = self.read_varint()
        return self._take(length, "string").decode('utf-8')

    def write_string(self, value: str) -> None:
        """Write a VarInt-prefixed UTF-8 string (Bedrock game packets)."""
        encoded = value.encode('utf-8')
        self.write_varint(len(encoded))
        self.data += encoded

    def read_short_string(self) -> str:
        """Read an unsigned-short-prefixed UTF-8 string (RakNet messages)."""
        length = self.read_ushort()
        return self._take(length, "string").decode('utf-8')

    def write_short_string(self, value: str) -> None:
        """Write an unsigned-short-prefixed UTF-8 string (RakNet messages)."""
        encoded = value.encode('utf-8')
        self.write_ushort(len(encoded))
        self.data += encoded

    def read_magic(self) -> None:
        """Consume the offline message magic, failing if it does not match."""
        if self._take(len(OFFLINE_MESSAGE_MAGIC), "magic") != OFFLINE_MESSAGE_MAGIC:
            raise ValueError("Offline message magic mismatch")

    def write_magic(self) -> None:
        self.data += OFFLINE_MESSAGE_MAGIC

    def read_address(self) -> Address:
        """Read a RakNet encoded IPv4 or IPv6 address."""
        version = self.read_byte()
        if version == 4:
            raw = self._take(4, "IPv4 address")
            host = '.'.join(str(~b & 0xFF) for b in raw)
            port = self.read_ushort()
            return host, port
        if version == 6:
            self._take(2, "address family")
            port = self.read_ushort()
            self._take(4, "flow info")
            host = str(ipaddress.IPv6Address(self._take(16, "IPv6 address")))
            self._take(4, "scope id")
            return host, port
        raise ValueError(f"Unknown address version {version}")

    def write_address(self, address: Address) -> None:
        """Write a RakNet encoded IPv4 or IPv6 address."""
        host, port = address[0], address[1]
        ip = ipaddress.ip_address(host)
        if ip.version == 4:
            self.write_byte(4)
            self.data += bytes(~b & 0xFF for b in ip.packed)
            self.write_ushort(port)
        else:
            self.write_byte(6)
            self.data += struct.pack('<H', 23)  # AF_INET6 as sent by Windows clients
            self.write_ushort(port)
            self.write_uint(0)
            self.data += ip.packed
            self.write_uint(0)

    def remaining(self) -> int:
        """Get number of remaining bytes in buffer."""
        return len(self.data) - self.pos

    def to_bytes(self) -> bytes:
        """Get the complete buffer as bytes."""
        return self.data


def build_advertisement(motd: str, sub_motd: str, server_guid: int, port: int,
                        protocol: int, version: str, players: int = 0,
                        max_players: int = 20, gamemode: str = "Survival") -> str:
    """Build the semicolon separated server list entry sent in unconnected pongs."""
    fields = [
        "MCPE", motd.replace(';', ''), str(protocol), version,
        str(players), str(max_players), str(server_guid),
        sub_motd.replace(';', ''), gamemode, "1", str(port), str(port)
    ]
    return ';'.join(fields) + ';'


def parse_unconnected_ping(data: bytes) -> Tuple[int, int]:
    """Parse an unconnected ping, returning (ping_time, client_guid)."""
    buffer = PacketBuffer(data)
    buffer.read_byte()
    ping_time = buffer.read_long()
    buffer.read_magic()
    client_guid = buffer.read_long() if buffer.remaining() >= 8 else 0
    return ping_time, client_guid


def build_unconnected_pong(ping_time: int, server_guid: int, advertisement: str) -> bytes:
    buffer = PacketBuffer()
    buffer.write_byte(UNCONNECTED_PONG)
    buffer.write_long(ping_time)
    buffer.write_long(server_guid)
    buffer.write_magic()
    buffer.write_short_string(advertisement)
    return buffer.to_bytes()


def parse_open_connection_request_1(data: bytes) -> Tuple[int, int]:
    """
    Parse an open connection request 1.

    The client pads this datagram to discover the path MTU, so the MTU is the
    datagram size plus the IP and UDP headers.

    Returns:
        Tuple[int, int]: (raknet_protocol_version, mtu)
    """
    buffer = PacketBuffer(data)
    buffer.read_byte()
    buffer.read_magic()
    protocol = buffer.read_byte()
    mtu = min(max(len(data) + UDP_HEADER_SIZE, MIN_MTU), MAX_MTU)
    return protocol, mtu


def build_open_connection_reply_1(server_guid: int, mtu: int) -> bytes:
    buffer = PacketBuffer()
    buffer.write_byte(OPEN_CONNECTION_REPLY_1)
    buffer.write_magic()
    buffer.write_long(server_guid)
    buffer.write_bool(False)  # No security
    buffer.write_ushort(mtu)
    return buffer.to_bytes()


def parse_open_connection_request_2(data: bytes) -> Tuple[Address, int, int]:
    """
    Parse an open connection request 2.

    Returns:
        Tuple[Address, int, int]: (server_address, mtu, client_guid)
    """
    buffer = PacketBuffer(data)
    buffer.read_byte()
    buffer.read_magic()
    server_address = buffer.read_address()
    mtu = buffer.read_ushort()
    client_guid = buffer.read_long()
    return server_address, mtu, client_guid


def build_open_connection_reply_2(server_guid: int, client_address: Address, mtu: int) -> bytes:
    buffer = PacketBuffer()
    buffer.write_byte(OPEN_CONNECTION_REPLY_2)
    buffer.write_magic()
    buffer.write_long(server_guid)
    buffer.write_address(client_address)
    buffer.write_ushort(mtu)
    buffer.write_bool(False)  # No encryption
    return buffer.to_bytes()


def build_frame_set(sequence_number: int, payload: bytes,
                    reliable_index: int, order_index: int, order_channel: int = 0) -> bytes:
    """Wrap a single reliable ordered frame in a frame set datagram."""
    buffer = PacketBuffer()
    buffer.write_byte(FRAME_SET)
    buffer.write_triad(sequence_number)
    buffer.write_byte(RELIABLE_ORDERED << 5)
    buffer.write_ushort(len(payload) * 8)  # Length in bits
    buffer.write_triad(reliable_index)
    buffer.write_triad(order_index)
    buffer.write_byte(order_channel)
    buffer.data += payload
    return buffer.to_bytes()


def build_disconnect_game_packet(message: str) -> bytes:
    """Build an uncompressed Bedrock disconnect packet inside a game packet batch."""
    packet = PacketBuffer()
    packet.write_varint(BEDROCK_DISCONNECT)
    packet.write_varint(0)          # Reason: unknown
    packet.write_bool(False)        # Show the disconnect screen
    packet.write_string(message)
    packet.write_string(message)    # Filtered message

    batch = PacketBuffer()
    batch.write_byte(GAME_PACKET)
    batch.write_varint(len(packet.data))
    batch.data += packet.data
    return batch.to_bytes()


def build_disconnection_notification() -> bytes:
    return bytes([DISCONNECTION_NOTIFICATION])


@dataclass
class Frame:
    """A single frame decoded from a frame set datagram."""
    reliability: int
    payload: bytes
    reliable_index: Optional[int] = None
    order_index: Optional[int] = None
    order_channel: int = 0
    split: bool = False


def _is_reliable(reliability: int) -> bool:
    return reliability in (2, 3, 4, 6, 7)


def _is_sequenced(reliability: int) -> bool:
    return reliability in (1, 4)


def _is_ordered(reliability: int) -> bool:
    return reliability in (1, 3, 4, 7)


def parse_frame_set(data: bytes) -> Tuple[int, List[Frame]]:
    """
    Decode a frame set datagram.

    Returns:
        Tuple[int, List[Frame]]: (sequence_number, frames)
    """
    buffer = PacketBuffer(data)
    buffer.read_byte()
    sequence_number = buffer.read_triad()
    frames = []

    while buffer.remaining() > 0:
        flags = buffer.read_byte()
        reliability = flags >> 5
        length = (buffer.read_ushort() + 7) // 8  # Length is sent in bits
        frame = Frame(reliability=reliability, payload=b'', split=bool(flags & SPLIT_FLAG))

        if _is_reliable(reliability):
            frame.reliable_index = buffer.read_triad()
        if _is_sequenced(reliability):
            buffer.read_triad()  # Sequence index
        if _is_ordered(reliability):
            frame.order_index = buffer.read_triad()
            frame.order_channel = buffer.read_byte()
        if frame.split:
            buffer.read_uint()    # Split count
            buffer.read_ushort()  # Split id
            buffer.read_uint()    # Split index

        frame.payload = buffer.read_bytes(length)
        frames.append(frame)

    return sequence_number, frames


def build_ack(sequence_numbers: List[int]) -> bytes:
    """Acknowledge datagrams, one single-number record each."""
    buffer = PacketBuffer()
    buffer.write_byte(ACK)
    buffer.write_ushort(len(sequence_numbers))
    for sequence_number in sequence_numbers:
        buffer.write_bool(True)  # Single sequence number, not a range
        buffer.write_triad(sequence_number)
    return buffer.to_bytes()


def parse_ack(data: bytes) -> List[int]:
    """Read the sequence numbers covered by an ACK or NACK."""
    buffer = PacketBuffer(data)
    buffer.read_byte()
    numbers = []
    for _ in range(buffer.read_ushort()):
        single = buffer.read_bool()
        start = buffer.read_triad()
        end = start if single else buffer.read_triad()
        numbers.extend(range(start, end + 1))
    return numbers


def parse_connection_request(payload: bytes) -> Tuple[int, int]:
    """
    Parse a connection request.

    Returns:
        Tuple[int, int]: (client_guid, request_time)
    """
    buffer = PacketBuffer(payload)
    buffer.read_byte()
    client_guid = buffer.read_long()
    request_time = buffer.read_long()
    return client_guid, request_time


def build_connection_request_accepted(client_address: Address, request_time: int,
                                      accepted_time: int) -> bytes:
    buffer = PacketBuffer()
    buffer.write_byte(CONNECTION_REQUEST_ACCEPTED)
    buffer.write_address(client_address)
    buffer.write_ushort(0)  # System index
    for _ in range(SYSTEM_ADDRESS_COUNT):
        buffer.write_address(UNSPECIFIED_ADDRESS)
    buffer.write_long(request_time)
    buffer.write_long(accepted_time)
    return buffer.to_bytes()


def build_connected_pong(ping_time: int, pong_time: int) -> bytes:
    buffer = PacketBuffer()
    buffer.write_byte(CONNECTED_PONG)
    buffer.write_long(ping_time)
    buffer.write_long(pong_time)
    return buffer.to_bytes()


def parse_connected_ping(payload: bytes) -> int:
    buffer = PacketBuffer(payload)
    buffer.read_byte()
    return buffer.read_long()
