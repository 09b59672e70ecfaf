import asyncio
import unittest

import httpx

from convo_stream.errors import TransportError
from convo_stream.protocol import iter_events
from convo_stream.transport import HttpStreamTransport, StreamTransport
from tests.fakes import sse


def _transport(handler) -> HttpStreamTransport:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler), base_url="http://backend")
    return HttpStreamTransport("http://backend", client=client)


class HttpStreamTransportTests(unittest.TestCase):
    def test_streams_events_from_backend(self) -> None:
        requests: list[httpx.Request] = []
        body = sse({"type": "connected", "streaming_id": "abc"}, {"type": "closed"})

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(200, content=body)

        transport = _transport(handler)
        self.assertIsInstance(transport, StreamTransport)

        async def scenario() -> list[dict]:
            async with transport.connect("abc") as chunks:
                return [event async for event in iter_events(chunks)]

        events = asyncio.run(scenario())
        self.assertEqual(["connected", "closed"], [e["type"] for e in events])
        self.assertEqual("/api/stream/abc", requests[0].url.path)

    def test_error_status_raises_transport_error(self) -> None:
        transport = _transport(lambda request: httpx.Response(503))

        async def scenario() -> None:
            async with transport.connect("abc"):
                pass

        with self.assertRaises(TransportError) as ctx:
            asyncio.run(scenario())
        self.assertEqual(503, ctx.exception.status_code)

    def test_network_failure_raises_transport_error(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        transport = _transport(handler)

        async def scenario() -> None:
            async with transport.connect("abc"):
                pass

        with self.assertRaises(TransportError) as ctx:
            asyncio.run(scenario())
        self.assertIsNone(ctx.exception.status_code)
        self.assertIn("ConnectError", str(ctx.exception))

    def test_fetch_history(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path == "/api/conversations/sess-1":
                return httpx.Response(200, json={"messages": [{"uuid": "u1", "type": "user"}]})
            return httpx.Response(404)

        transport = _transport(handler)
        details = asyncio.run(transport.fetch_history("sess-1"))
        self.assertEqual("u1", details["messages"][0]["uuid"])

        with self.assertRaises(TransportError) as ctx:
            asyncio.run(transport.fetch_history("missing"))
        self.assertEqual(404, ctx.exception.status_code)

    def test_non_json_history_raises_transport_error(self) -> None:
        transport = _transport(lambda request: httpx.Response(200, content=b"<html>maintenance</html>"))

        with self.assertRaises(TransportError) as ctx:
            asyncio.run(transport.fetch_history("sess-1"))
        self.assertEqual(200, ctx.exception.status_code)
        self.assertIn("not JSON", str(ctx.exception))

    def test_bearer_token_header(self) -> None:
        transport = HttpStreamTransport("http://backend", token="secret")
        self.assertEqual("Bearer secret", transport._client.headers["Authorization"])
        self.assertEqual("text/event-stream", transport._client.headers["Accept"])
        asyncio.run(transport.aclose())


if __name__ == "__main__":
    unittest.main()
