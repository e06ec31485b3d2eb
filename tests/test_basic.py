#!/usr/bin/env python3
"""Basic tests for the Sleeping Bedrock Listener."""

import unittest
import sys
import os
import json
import tempfile

# Add project root to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from sleeping_bedrock.config_manager import ConfigManager
from sleeping_bedrock.errors import BindError, EngineError, FaultKind, GeneratorError
from sleeping_bedrock.faults import classify_bootstrap_error
from sleeping_bedrock.models import Settings, PlayerSignal, Platform
from sleeping_bedrock.raknet import (
    PacketBuffer, build_ack, build_advertisement, build_frame_set, parse_ack, parse_frame_set
)
from sleeping_bedrock.wol_sender import WoLSender


class TestConfigManager(unittest.TestCase):
    """Test configuration management."""

    def setUp(self):
        """Set up test fixtures."""
        self.temp_dir = tempfile.mkdtemp()
        self.config_path = os.path.join(self.temp_dir, 'test_config.json')

    def write_config(self, data):
        with open(self.config_path, 'w', encoding='utf-8') as f:
            json.dump(data, f)

    def test_default_config_load(self):
        """Test loading default configuration."""
        config_manager = ConfigManager('nonexistent.json')
        config = config_manager.load_config()

        self.assertIn('bedrock', config)
        self.assertIn('wake', config)
        self.assertIn('logging', config)
        self.assertIn('monitoring', config)
        self.assertEqual(config['bedrock']['port'], 19132)

    def test_default_config_validates(self):
        """Test configuration validation."""
        config_manager = ConfigManager()
        config_manager._config = config_manager._get_default_config()
        config_manager._validate_config()

    def test_partial_config_merged_with_defaults(self):
        self.write_config({"bedrock": {"port": 19133, "hide_ip_in_logs": True}})
        config_manager = ConfigManager(self.config_path)
        config = config_manager.load_config()

        self.assertEqual(config['bedrock']['port'], 19133)
        self.assertTrue(config['bedrock']['hide_ip_in_logs'])
        self.assertEqual(config['bedrock']['bind_address'], '0.0.0.0')
        self.assertEqual(config_manager.get('wake.cooldown_seconds'), 90)
        self.assertIsNone(config_manager.get('wake.missing'))

    def test_invalid_values_rejected(self):
        self.write_config({
            "bedrock": {"port": 70000, "hide_ip_in_logs": "yes"},
            "logging": {"level": "LOUD"}
        })
        with self.assertRaises(ValueError) as ctx:
            ConfigManager(self.config_path).load_config()

        message = str(ctx.exception)
        self.assertIn("Invalid Bedrock port: 70000", message)
        self.assertIn("hide_ip_in_logs", message)
        self.assertIn("Invalid log level", message)

    def test_wol_target_checked_only_when_enabled(self):
        self.write_config({"wake": {"mac_address": "invalid"}})
        ConfigManager(self.config_path).load_config()

        self.write_config({"wake": {"wol_enabled": True, "mac_address": "invalid"}})
        with self.assertRaises(ValueError):
            ConfigManager(self.config_path).load_config()

    def test_invalid_json(self):
        with open(self.config_path, 'w', encoding='utf-8') as f:
            f.write("{not json")
        with self.assertRaises(ValueError):
            ConfigManager(self.config_path).load_config()

    def test_get_settings(self):
        self.write_config({"bedrock": {"port": 19200, "login_message": "Back soon", "motd": "zzz"}})
        settings = ConfigManager(self.config_path).get_settings()

        self.assertEqual(settings, Settings(port=19200, login_message="Back soon", motd="zzz"))

    def test_reload_keeps_old_config_on_error(self):
        self.write_config({"bedrock": {"port": 19133}})
        config_manager = ConfigManager(self.config_path)
        config_manager.load_config()

        self.write_config({"bedrock": {"port": 0}})
        self.assertFalse(config_manager.reload_config())
        self.assertEqual(config_manager.get('bedrock.port'), 19133)

    def test_example_config_loads(self):
        example_path = os.path.join(self.temp_dir, 'config.json.example')
        ConfigManager().save_example_config(example_path)

        config = ConfigManager(example_path).load_config()
        self.assertEqual(config['bedrock']['port'], 19132)


class TestModels(unittest.TestCase):
    """Test shared value types."""

    def test_settings_validation(self):
        for port in (0, 65536, "19132", True):
            with self.assertRaises(ValueError):
                Settings(port=port)
        with self.assertRaises(ValueError):
            Settings(shutdown_timeout=0)

    def test_settings_immutable(self):
        settings = Settings()
        with self.assertRaises(AttributeError):
            settings.port = 1

    def test_player_signal(self):
        self.assertEqual(PlayerSignal.bedrock().platform, Platform.BEDROCK)
        self.assertEqual(PlayerSignal.bedrock(), PlayerSignal.bedrock())
        self.assertEqual(list(Platform), [Platform.BEDROCK])


class TestFaultClassification(unittest.TestCase):
    """Test tolerable vs fatal bootstrap faults."""

    def test_typed_errors(self):
        self.assertEqual(classify_bootstrap_error(GeneratorError("Invalid generator: x")), FaultKind.TOLERABLE)
        self.assertEqual(classify_bootstrap_error(BindError("generator port in use")), FaultKind.FATAL)
        self.assertEqual(classify_bootstrap_error(EngineError("terrain", FaultKind.TOLERABLE)), FaultKind.TOLERABLE)

    def test_untyped_errors(self):
        self.assertEqual(classify_bootstrap_error(RuntimeError("Invalid generator: overworld")), FaultKind.TOLERABLE)
        self.assertEqual(classify_bootstrap_error(RuntimeError("Failed to load Overworld")), FaultKind.TOLERABLE)
        self.assertEqual(classify_bootstrap_error(OSError("Address already in use")), FaultKind.FATAL)


class TestWoLSender(unittest.TestCase):
    """Test Wake-on-LAN functionality."""

    def make_config(self, mac='00:1B:44:11:3A:B7'):
        return {
            'wake': {
                'target_ip': '192.168.1.100',
                'mac_address': mac,
                'network_mask': 24,
                'wol_retry_interval': 1,
                'wol_max_retries': 3
            }
        }

    def test_mac_parsing(self):
        """Test MAC address parsing."""
        for mac_str in ('00:1B:44:11:3A:B7', '00-1B-44-11-3A-B7', '001B44113AB7'):
            wol = WoLSender(self.make_config(mac_str))
            self.assertEqual(wol.mac_bytes, b'\x00\x1b\x44\x11\x3a\xb7')

    def test_magic_packet_creation(self):
        """Test magic packet creation."""
        wol = WoLSender(self.make_config())
        packet = wol._create_magic_packet()

        self.assertEqual(len(packet), 102)
        self.assertEqual(packet[:6], b'\xff' * 6)
        self.assertEqual(packet[6:], wol.mac_bytes * 16)

    def test_broadcast_address(self):
        wol = WoLSender(self.make_config())
        self.assertEqual(wol.broadcast_ip, '192.168.1.255')

    def test_invalid_mac(self):
        with self.assertRaises(ValueError):
            WoLSender(self.make_config('invalid'))


class TestPacketBuffer(unittest.TestCase):
    """Test RakNet packet buffer operations."""

    def test_varint_operations(self):
        for value in (0, 127, 128, 16384, 2097151):
            write_buffer = PacketBuffer()
            write_buffer.write_varint(value)
            self.assertEqual(PacketBuffer(write_buffer.data).read_varint(), value)

    def test_triad_is_little_endian(self):
        buffer = PacketBuffer()
        buffer.write_triad(0x010203)
        self.assertEqual(buffer.data, b'\x03\x02\x01')
        self.assertEqual(PacketBuffer(buffer.data).read_triad(), 0x010203)

    def test_ipv4_address_bytes_inverted(self):
        buffer = PacketBuffer()
        buffer.write_address(("192.168.1.2", 19132))
        self.assertEqual(buffer.data[:5], bytes([4, 0x3f, 0x57, 0xfe, 0xfd]))
        self.assertEqual(PacketBuffer(buffer.data).read_address(), ("192.168.1.2", 19132))

    def test_ipv6_address(self):
        buffer = PacketBuffer()
        buffer.write_address(("::1", 19133))
        self.assertEqual(len(buffer.data), 29)
        self.assertEqual(PacketBuffer(buffer.data).read_address(), ("::1", 19133))

    def test_short_buffer(self):
        with self.assertRaises(ValueError):
            PacketBuffer(b'\x01').read_ushort()
        with self.assertRaises(ValueError):
            PacketBuffer(b'\x00' * 16).read_magic()

    def test_advertisement(self):
        advertisement = build_advertisement("My;Server", "Sleeping", 7, 19132, 748, "1.21.40")
        self.assertEqual(advertisement, "MCPE;MyServer;748;1.21.40;0;20;7;Sleeping;Survival;1;19132;19132;")

    def test_frame_set_layout(self):
        frame = build_frame_set(5, b'\x15', reliable_index=2, order_index=3)
        self.assertEqual(frame, bytes([0x84, 5, 0, 0, 0x60, 0x00, 0x08, 2, 0, 0, 3, 0, 0, 0, 0x15]))

    def test_parse_frame_set(self):
        sequence_number, frames = parse_frame_set(build_frame_set(9, b'\x09abc', reliable_index=4, order_index=6))

        self.assertEqual(sequence_number, 9)
        self.assertEqual(len(frames), 1)
        self.assertEqual(frames[0].reliability, 3)
        self.assertEqual(frames[0].reliable_index, 4)
        self.assertEqual(frames[0].order_index, 6)
        self.assertEqual(frames[0].payload, b'\x09abc')
        self.assertFalse(frames[0].split)

    def test_parse_unreliable_and_split_frames(self):
        data = bytes([0x84, 1, 0, 0])
        data += bytes([0x00, 0x00, 0x08]) + b'\x00'              # Unreliable
        data += bytes([0x70, 0x00, 0x10, 1, 0, 0, 2, 0, 0, 0])  # Reliable ordered, split
        data += bytes([0, 0, 0, 2, 0, 5, 0, 0, 0, 0]) + b'\xfe\x01'

        _, frames = parse_frame_set(data)
        self.assertEqual([f.payload for f in frames], [b'\x00', b'\xfe\x01'])
        self.assertIsNone(frames[0].reliable_index)
        self.assertTrue(frames[1].split)

    def test_truncated_frame_set(self):
        with self.assertRaises(ValueError):
            parse_frame_set(bytes([0x84, 0, 0, 0, 0x60, 0x00, 0x40, 0, 0, 0]))

    def test_ack_layout(self):
        self.assertEqual(build_ack([3]), bytes([0xc0, 0, 1, 1, 3, 0, 0]))
        self.assertEqual(parse_ack(bytes([0xc0, 0, 1, 0, 2, 0, 0, 4, 0, 0])), [2, 3, 4])


if __name__ == '__main__':
    unittest.main()
