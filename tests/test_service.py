#!/usr/bin/env python3
"""Tests for the service reacting to wake signals."""

import asyncio
import json
import os
import sys
import tempfile
import unittest
from unittest import mock

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from sleeping_bedrock.errors import StartupError
from sleeping_bedrock.models import PlayerSignal
from sleeping_bedrock.service import SleepingService, ServiceState


class FakeListener:
    """Listener double that records init and close calls."""

    fail_init = False

    def __init__(self, settings, wake_callback):
        self.settings = settings
        self.wake_callback = wake_callback
        self.init_calls = 0
        self.close_calls = 0

    async def init(self):
        self.init_calls += 1
        if self.fail_init:
            raise StartupError("Could not start on port 19132")

    async def close(self):
        self.close_calls += 1

    def get_status(self):
        return {"state": "listening", "port": self.settings.port, "listening": True, "connections": 0}


class TestSleepingService(unittest.IsolatedAsyncioTestCase):
    """Test wake handling and listener re-arming."""

    def setUp(self):
        self.temp_dir = tempfile.mkdtemp()
        self.config_path = os.path.join(self.temp_dir, 'config.json')
        self.listeners = []
        FakeListener.fail_init = False

    def write_config(self, wake=None):
        config = {
            "bedrock": {"port": 19140, "login_message": "Waking up"},
            "wake": {"start_command": "", "cooldown_seconds": 0, **(wake or {})},
            "monitoring": {"health_check_enabled": False}
        }
        with open(self.config_path, 'w', encoding='utf-8') as f:
            json.dump(config, f)

    def listener_factory(self, settings, wake_callback):
        listener = FakeListener(settings, wake_callback)
        self.listeners.append(listener)
        return listener

    async def start_service(self, wake=None):
        self.write_config(wake)
        service = SleepingService(self.config_path, listener_factory=self.listener_factory)
        self.assertTrue(await service.initialize())
        self.assertTrue(await service.start())
        self.addAsyncCleanup(service.shutdown)
        return service

    async def test_start_creates_listener_from_config(self):
        service = await self.start_service()

        self.assertEqual(len(self.listeners), 1)
        self.assertEqual(self.listeners[0].settings.port, 19140)
        self.assertEqual(self.listeners[0].settings.login_message, "Waking up")
        self.assertEqual(service.current_state, ServiceState.SLEEPING)
        self.assertEqual(service.get_status()["listener"]["port"], 19140)

    async def test_wake_signal_rearms_listener(self):
        service = await self.start_service()
        first = self.listeners[0]

        first.wake_callback(PlayerSignal.bedrock())
        first.wake_callback(PlayerSignal.bedrock())
        self.assertEqual(service.current_state, ServiceState.WAKING)

        await service.wake_task

        self.assertEqual(first.close_calls, 1)
        self.assertEqual(len(self.listeners), 2)
        self.assertIs(service.listener, self.listeners[1])
        self.assertEqual(service.current_state, ServiceState.SLEEPING)
        self.assertEqual(service.stats["wake_signals"], 2)
        self.assertEqual(service.stats["wake_attempts"], 1)

    async def test_start_command_runs_until_exit(self):
        service = await self.start_service({"start_command": "exit 0"})

        self.listeners[0].wake_callback(PlayerSignal.bedrock())
        await service.wake_task

        self.assertEqual(service.stats["server_starts"], 1)
        self.assertIsNone(service.server_process)
        self.assertEqual(len(self.listeners), 2)

    async def test_wake_on_lan_sent(self):
        service = await self.start_service({"wol_enabled": True, "mac_address": "00:1B:44:11:3A:B7"})
        self.assertIsNotNone(service.wol_sender)

        with mock.patch.object(service.wol_sender, "wake_server_with_retry",
                               mock.AsyncMock(return_value=False)) as wake:
            self.listeners[0].wake_callback(PlayerSignal.bedrock())
            await service.wake_task

        wake.assert_awaited_once()
        self.assertEqual(service.stats["failed_wol_sends"], 1)
        self.assertEqual(service.current_state, ServiceState.SLEEPING)

    async def test_config_info_describes_wol_packet(self):
        service = await self.start_service({"wol_enabled": True, "mac_address": "00:1B:44:11:3A:B7",
                                            "target_ip": "192.168.1.100", "network_mask": 24})

        info = service.get_config_info()["wol_packet"]
        self.assertEqual(info["broadcast_ip"], "192.168.1.255")
        self.assertEqual(info["mac_bytes_hex"], "00:1B:44:11:3A:B7")
        self.assertEqual(info["packet_size"], 102)

    async def test_config_info_without_wol(self):
        service = await self.start_service()
        self.assertIsNone(service.get_config_info()["wol_packet"])

    async def test_listener_failure_fails_start(self):
        FakeListener.fail_init = True
        self.write_config()
        service = SleepingService(self.config_path, listener_factory=self.listener_factory)
        self.assertTrue(await service.initialize())

        self.assertFalse(await service.start())
        self.assertFalse(service.is_running)

    async def test_shutdown_closes_listener(self):
        service = await self.start_service()
        await service.shutdown()

        self.assertEqual(self.listeners[0].close_calls, 1)
        self.assertIsNone(service.listener)
        self.assertEqual(service.current_state, ServiceState.STOPPING)

        # Signals after shutdown are ignored
        self.listeners[0].wake_callback(PlayerSignal.bedrock())
        self.assertIsNone(service.wake_task)

    async def test_shutdown_cancels_pending_wake(self):
        service = await self.start_service({"cooldown_seconds": 60})

        self.listeners[0].wake_callback(PlayerSignal.bedrock())
        await asyncio.sleep(0.01)
        await service.shutdown()

        self.assertTrue(service.wake_task.cancelled())
        self.assertEqual(len(self.listeners), 1)


if __name__ == '__main__':
    unittest.main()
