"""
Tests for mapping discord.py and network errors onto soundboard errors.
"""

import asyncio
import unittest
from unittest import mock

import aiohttp
import discord

from utils.errors import MessageNotFound, SoundboardError, UpstreamTransient
from utils.indexer import SoundIndexBuilder
from utils.platform import _translate_errors


def http_error(cls, status):
    response = mock.Mock(status=status, reason="x")
    return cls(response, "boom")


class TestTranslateErrors(unittest.TestCase):
    def test_timeout_is_transient(self):
        with self.assertRaises(UpstreamTransient):
            with _translate_errors("Reading history"):
                raise asyncio.TimeoutError()

    def test_client_error_is_transient(self):
        with self.assertRaises(UpstreamTransient):
            with _translate_errors("Reading history"):
                raise aiohttp.ClientConnectionError("reset")

    def test_server_error_is_transient(self):
        with self.assertRaises(UpstreamTransient) as ctx:
            with _translate_errors("Reading history"):
                raise http_error(discord.HTTPException, 503)
        self.assertEqual(ctx.exception.status_code, 503)

    def test_not_found_message(self):
        with self.assertRaises(MessageNotFound):
            with _translate_errors("Fetching message", message_id=5):
                raise http_error(discord.NotFound, 404)

    def test_client_side_http_error_is_not_transient(self):
        with self.assertRaises(SoundboardError) as ctx:
            with _translate_errors("Editing message"):
                raise http_error(discord.HTTPException, 400)
        self.assertNotIsInstance(ctx.exception, UpstreamTransient)


class TimeoutThenPage:
    """Platform whose first history read times out at the network layer."""

    def __init__(self):
        self.calls = 0

    async def fetch_messages_page(self, channel_id, before_id, limit):
        self.calls += 1
        with _translate_errors(f"Reading history of channel {channel_id}"):
            if self.calls == 1:
                raise asyncio.TimeoutError()
            return []


class TestIndexerRetriesTimeouts(unittest.IsolatedAsyncioTestCase):
    async def test_timeout_is_retried(self):
        platform = TimeoutThenPage()
        builder = SoundIndexBuilder(platform, retry_base_delay=0)
        result = await builder.build(10)
        self.assertEqual(platform.calls, 2)
        self.assertEqual(result.catalog, {})

    def test_max_retries_must_be_positive(self):
        with self.assertRaises(ValueError):
            SoundIndexBuilder(TimeoutThenPage(), max_retries=0)


if __name__ == "__main__":
    unittest.main()
