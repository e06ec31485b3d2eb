"""Wake-on-LAN packet sender with retry logic and validation."""

import asyncio
import ipaddress
import logging
import re
import socket


logger = logging.getLogger(__name__)


class WoLSender:
    """Sends Wake-on-LAN magic packets to the sleeping server's host."""

    def __init__(self, config: dict):
        wake_config = config["wake"]
        self.target_ip = wake_config["target_ip"]
        self.mac_address = wake_config["mac_address"]
        self.network_mask = wake_config.get("network_mask", 24)
        self.retry_interval = wake_config["wol_retry_interval"]
        self.max_retries = wake_config.get("wol_max_retries", 3)

        # Parse and validate MAC address
        self.mac_bytes = self._parse_mac_address(self.mac_address)

        # Directed broadcast of the target's subnet
        self.broadcast_ip = self._get_broadcast_address(self.target_ip)

    def _parse_mac_address(self, mac: str) -> bytes:
        """Parse MAC address string into bytes."""
        # Accept colon, dash or no separators
        mac_clean = re.sub(r'[:-]', '', mac.upper())

        if len(mac_clean) != 12:
            raise ValueError(f"Invalid MAC address length: {mac}")

        try:
            return bytes.fromhex(mac_clean)
        except ValueError as e:
            raise ValueError(f"Invalid MAC address format: {mac}") from e

    def _get_broadcast_address(self, ip: str) -> str:
        """Calculate the directed broadcast address of the target's network."""
        try:
            # e.g. 192.168.1.100/24 -> 192.168.1.255
            interface = ipaddress.IPv4Interface(f"{ip}/{self.network_mask}")
            broadcast_addr = str(interface.network.broadcast_address)

            logger.debug(f"Calculated broadcast address: {broadcast_addr} for {ip}/{self.network_mask}")
            return broadcast_addr

        except ValueError as e:
            logger.warning(f"Could not calculate broadcast address for {ip}: {e}. "
                           "Falling back to global broadcast '255.255.255.255'.")
            # Global broadcast still reaches hosts on the local segment
            return '255.255.255.255'

    def _create_magic_packet(self) -> bytes:
        """Create the Wake-on-LAN magic packet."""
        # Magic packet format:
        # - 6 bytes of 0xFF
        # - MAC address repeated 16 times
        return b'\xff' * 6 + self.mac_bytes * 16

    async def send_wol_packet(self) -> bool:
        """Send one magic packet to every destination; True if any send worked."""
        magic_packet = self._create_magic_packet()
        sent_successfully = False

        # Keyed by IP so a target that equals a broadcast address is sent once
        destinations = {
            self.broadcast_ip: "Calculated Broadcast",
            self.target_ip: "Target IP",
            "255.255.255.255": "Global Broadcast"
        }

        try:
            with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as sock:
                sock.setsockopt(socket.SOL_SOCKET, socket.SO_BROADCAST, 1)

                for ip_addr, name in destinations.items():
                    for port in (9, 7):  # Discard port first, echo as fallback
                        try:
                            sock.sendto(magic_packet, (ip_addr, port))
                            logger.debug(f"Sent WoL packet via {name} to {ip_addr}:{port}")
                            sent_successfully = True
                        except OSError as e:
                            # e.g. "Network is unreachable" for one destination
                            logger.warning(f"Could not send WoL packet via {name} to {ip_addr}:{port}. Error: {e}")

        except OSError as e:
            logger.error(f"Failed to create socket for sending Wake-on-LAN packet: {e}")
            return False

        if sent_successfully:
            packet_info = self.get_packet_info()
            logger.info(f"Wake-on-LAN packet sent for MAC {self.mac_address} "
                        f"(broadcast: {self.broadcast_ip}, size: {packet_info['packet_size']} bytes)")
        else:
            logger.error(f"Failed to send Wake-on-LAN packet for MAC {self.mac_address} to any destination.")
        return sent_successfully

    async def wake_server_with_retry(self) -> bool:
        """Send WoL packets with retry logic."""
        for attempt in range(self.max_retries):
            logger.info(f"Sending Wake-on-LAN packet (attempt {attempt + 1}/{self.max_retries})")

            if await self.send_wol_packet():
                return True

            # No sleep after the last attempt
            if attempt < self.max_retries - 1:
                logger.warning(f"WoL send failed, retrying in {self.retry_interval} seconds")
                await asyncio.sleep(self.retry_interval)

        logger.error(f"Failed to send Wake-on-LAN packet after {self.max_retries} attempts")
        return False

    def get_packet_info(self) -> dict:
        """Get information about the WoL packet configuration."""
        return {
            "target_ip": self.target_ip,
            "broadcast_ip": self.broadcast_ip,
            "mac_address": self.mac_address,
            "mac_bytes_hex": self.mac_bytes.hex(':').upper(),
            "packet_size": len(self._create_magic_packet()),
            "retry_interval": self.retry_interval
        }
