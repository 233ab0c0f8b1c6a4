"""
Tests for the event stream client against a local aiohttp WebSocket server.
"""

import asyncio
import json
import os
import sys
import unittest

sys.path.insert(0, os.path.dirname(os.path.dirname(__file__)))

import aiohttp
from aiohttp import web
from aiohttp import test_utils

from bidstream.data.stream import (
    NEW_AUCTION,
    NEW_BID,
    EventStreamClient,
    StreamState,
    build_stream_url,
)
from bidstream.errors import StreamConnectionError


async def wait_for(predicate, timeout=3.0):
    """Poll until predicate() is true."""
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.01)


def test_stream_url_follows_origin_scheme():
    assert build_stream_url("https://bidcoin.example") == "wss://bidcoin.example/ws"
    assert build_stream_url("http://localhost:3000") == "ws://localhost:3000/ws"
    assert build_stream_url("localhost:3000") == "ws://localhost:3000/ws"


class TestDispatch(unittest.IsolatedAsyncioTestCase):
    """Message parsing and fan-out, no transport."""

    def setUp(self):
        self.stream = EventStreamClient(url="ws://127.0.0.1:9/ws")

    def push(self, msg_type, data=None):
        self.stream._handle_message(json.dumps({"type": msg_type, "data": data}))

    def test_handlers_called_in_registration_order(self):
        calls = []
        self.stream.subscribe(NEW_BID, lambda d: calls.append(("a", d)))
        self.stream.subscribe(NEW_BID, lambda d: calls.append(("b", d)))
        self.stream.subscribe(NEW_AUCTION, lambda d: calls.append(("other", d)))

        self.push(NEW_BID, {"auctionId": 1})
        self.push(NEW_BID, {"auctionId": 2})

        self.assertEqual(calls, [
            ("a", {"auctionId": 1}), ("b", {"auctionId": 1}),
            ("a", {"auctionId": 2}), ("b", {"auctionId": 2}),
        ])

    def test_failing_handler_is_isolated(self):
        calls = []

        def broken(data):
            raise RuntimeError("boom")

        self.stream.subscribe(NEW_BID, broken)
        self.stream.subscribe(NEW_BID, calls.append)

        self.push(NEW_BID, {"auctionId": 1})
        self.assertEqual(calls, [{"auctionId": 1}])

    def test_malformed_messages_dropped(self):
        calls = []
        self.stream.subscribe(NEW_BID, calls.append)

        self.stream._handle_message("not json {")
        self.stream._handle_message(json.dumps({"data": 1}))
        self.stream._handle_message(json.dumps([NEW_BID]))
        self.push(NEW_BID, 5)

        self.assertEqual(calls, [5])
        self.assertEqual(self.stream.messages_received, 1)

    def test_unsubscribe_removes_only_that_registration(self):
        calls = []
        first = self.stream.subscribe(NEW_BID, calls.append)
        self.stream.subscribe(NEW_BID, calls.append)

        first()
        first()
        self.push(NEW_BID, "x")

        self.assertEqual(calls, ["x"])
        self.assertEqual(self.stream.subscriber_count(NEW_BID), 1)

    def test_unsubscribe_during_dispatch(self):
        calls = []
        unsubscribes = []

        def first(data):
            calls.append("first")
            unsubscribes[1]()

        unsubscribes.append(self.stream.subscribe(NEW_BID, first))
        unsubscribes.append(self.stream.subscribe(NEW_BID, lambda d: calls.append("second")))

        self.push(NEW_BID)
        self.assertEqual(calls, ["first"])

    async def test_async_handler_scheduled(self):
        done = asyncio.Event()

        async def handler(data):
            done.set()

        self.stream.subscribe(NEW_AUCTION, handler)
        self.push(NEW_AUCTION, {"id": 3})
        await asyncio.wait_for(done.wait(), 1.0)

    async def test_send_when_not_open(self):
        self.assertFalse(await self.stream.send("ping", {}))


class TestStreamConnection(unittest.IsolatedAsyncioTestCase):
    """Lifecycle against a real WebSocket server."""

    async def asyncSetUp(self):
        self.sockets = []
        self.received = []

        async def ws_handler(request):
            ws = web.WebSocketResponse()
            await ws.prepare(request)
            self.sockets.append(ws)
            async for msg in ws:
                if msg.type == aiohttp.WSMsgType.TEXT:
                    self.received.append(json.loads(msg.data))
            return ws

        app = web.Application()
        app.router.add_get('/ws', ws_handler)
        self.server = test_utils.TestServer(app)
        await self.server.start_server()

        self.stream = self.make_stream('/ws')

    async def asyncTearDown(self):
        await self.stream.disconnect()
        await self.server.close()

    def make_stream(self, path):
        return EventStreamClient(
            url=str(self.server.make_url(path)),
            reconnect_delay=0.05,
            retry_delay=0.05,
            heartbeat=None,
        )

    async def open_stream(self):
        await self.stream.connect()
        self.assertTrue(await self.stream.wait_until_open(3.0))
        await wait_for(lambda: len(self.sockets) == self.stream.connect_count)

    async def test_receive_and_send(self):
        bids = []
        self.stream.subscribe(NEW_BID, bids.append)
        await self.open_stream()

        await self.sockets[0].send_str(json.dumps({"type": NEW_BID, "data": {"auctionId": 7}}))
        await wait_for(lambda: bids)
        self.assertEqual(bids, [{"auctionId": 7}])

        self.assertTrue(await self.stream.send("ping", {"n": 1}))
        await wait_for(lambda: self.received)
        self.assertEqual(self.received, [{"type": "ping", "data": {"n": 1}}])

    async def test_connect_twice_is_noop(self):
        await self.open_stream()
        await self.stream.connect()
        await asyncio.sleep(0.1)
        self.assertEqual(self.stream.connect_count, 1)
        self.assertEqual(len(self.sockets), 1)

    async def test_forced_reconnect_replaces_transport(self):
        bids = []
        self.stream.subscribe(NEW_BID, bids.append)
        await self.open_stream()

        self.assertTrue(await self.stream.reconnect())
        await wait_for(lambda: len(self.sockets) == 2)
        await wait_for(lambda: self.sockets[0].closed)

        self.assertEqual(self.stream.close_count, 1)
        self.assertEqual(self.stream.connect_count, 2)
        self.assertEqual(self.stream.reconnect_count, 1)
        self.assertFalse(self.stream.reconnect_pending)

        # The intentional close must not trigger a second, automatic reconnect
        await asyncio.sleep(0.2)
        self.assertEqual(self.stream.connect_count, 2)
        self.assertEqual(len(self.sockets), 2)

        await self.sockets[1].send_str(json.dumps({"type": NEW_BID, "data": 1}))
        await wait_for(lambda: bids)
        self.assertEqual(bids, [1])

    async def test_unexpected_close_reconnects(self):
        await self.open_stream()

        await self.sockets[0].close(code=aiohttp.WSCloseCode.GOING_AWAY)
        await wait_for(lambda: self.stream.connect_count == 2)

        self.assertTrue(self.stream.is_connected)
        self.assertEqual(self.stream.reconnect_count, 1)
        self.assertEqual(self.stream.close_count, 1)

    async def test_clean_close_is_terminal(self):
        await self.open_stream()

        await self.sockets[0].close(code=aiohttp.WSCloseCode.OK)
        await wait_for(lambda: self.stream.state == StreamState.DISCONNECTED)
        await asyncio.sleep(0.2)

        self.assertTrue(self.stream.is_terminal)
        self.assertFalse(self.stream.reconnect_pending)
        self.assertEqual(self.stream.connect_count, 1)

    async def test_no_reconnect_after_disconnect(self):
        await self.open_stream()
        await self.stream.disconnect()
        await asyncio.sleep(0.2)

        self.assertEqual(self.stream.state, StreamState.DISCONNECTED)
        self.assertEqual(self.stream.connect_count, 1)
        self.assertFalse(await self.stream.send("ping"))

        await self.stream.connect()
        await asyncio.sleep(0.1)
        self.assertEqual(len(self.sockets), 1)

    async def test_failed_attempt_schedules_retry(self):
        await self.stream.disconnect()
        self.stream = self.make_stream('/missing')

        await self.stream.connect()
        await wait_for(lambda: self.stream.error is not None)

        self.assertIsInstance(self.stream.error, StreamConnectionError)
        self.assertFalse(self.stream.is_connected)
        await wait_for(lambda: self.stream.reconnect_count >= 1)


if __name__ == '__main__':
    unittest.main()
