"""
Live backend integration tests for TelemetryConnector.
Requires AEROVISION_PULL_URL (and AEROVISION_PUSH_URL for the push test).
Skip with:  pytest -k "not Integration"
"""

from __future__ import annotations

import asyncio
import os
import unittest

from dotenv import load_dotenv

from aerovision import async_setup, async_unload, options_from_env


class TestConnectorIntegration(unittest.IsolatedAsyncioTestCase):
    """
    Integration tests that hit a running AeroVision backend.
    Skipped automatically when AEROVISION_PULL_URL is not set.
    """

    async def asyncSetUp(self):
        load_dotenv()
        if not os.getenv("AEROVISION_PULL_URL"):
            self.skipTest("AEROVISION_PULL_URL not set, skipping integration tests")
        self.connector = await async_setup(options_from_env())

    async def asyncTearDown(self):
        await async_unload(self.connector)

    async def test_backend_is_available(self):
        self.assertTrue(await self.connector.check_availability())

    async def test_refresh_returns_snapshot(self):
        snapshot = await self.connector.refresh()

        self.assertIsNotNone(snapshot, self.connector.get_last_error())
        self.assertEqual(snapshot.metadata.data_source, "pull")
        for intruder in snapshot.intruders:
            self.assertTrue(intruder.track_id.startswith("TRK-"))
            self.assertIn(intruder.threat_score, range(0, 101))
            self.assertIn(intruder.track_id, snapshot.threat_intelligence)

    async def test_subscribe_receives_live_data(self):
        if not os.getenv("AEROVISION_PUSH_URL"):
            self.skipTest("AEROVISION_PUSH_URL not set")

        received = []
        unsubscribe = self.connector.subscribe(received.append)
        await asyncio.sleep(3)  # allow connect plus a few updates
        unsubscribe()
        await asyncio.sleep(0.1)

        self.assertEqual(self.connector.connection_status, "disconnected")
        self.assertGreater(len(received), 1)
        self.assertEqual(received[-1].metadata.connection_status, "connected")
