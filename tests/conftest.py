import asyncio
import json
import logging
import socket
from collections.abc import AsyncIterator, Callable
from typing import Any, NamedTuple

import aiohttp
import aiohttp.web
import aiohttp.web_request
import aiohttp.web_response
import multidict
import pytest
from aiohttp.test_utils import TestServer
from pytest_aiohttp.plugin import AiohttpServer

import aio_exchange

logging.basicConfig(level="DEBUG")


class Backend(NamedTuple):
    server: TestServer
    ws_messages: list[Any]
    handshake_headers: list[multidict.CIMultiDictProxy[str]]
    ws_finished: asyncio.Event

    def url(self, path: str, scheme: str = "http") -> str:
        return str(self.server.make_url(path).with_scheme(scheme))


async def echo(request: aiohttp.web_request.Request) -> aiohttp.web_response.Response:
    return aiohttp.web.json_response(
        {
            "method": request.method,
            "query": list(request.query.items()),
            "headers": list(request.headers.items()),
            "body": await request.text(),
        }
    )


async def form(request: aiohttp.web_request.Request) -> aiohttp.web_response.Response:
    fields = {}
    files = {}
    reader = await request.multipart()
    async for part in reader:
        if part.filename is None:
            fields[part.name] = await part.text()
        else:
            files[part.name] = {
                "filename": part.filename,
                "content_type": part.headers.get(aiohttp.hdrs.CONTENT_TYPE),
                "content": (await part.read()).decode(),
            }
    return aiohttp.web.json_response({"fields": fields, "files": files})


async def status(request: aiohttp.web_request.Request) -> aiohttp.web_response.Response:
    return aiohttp.web_response.Response(status=int(request.match_info["status"]), text="status body")


async def slow(request: aiohttp.web_request.Request) -> aiohttp.web_response.Response:
    await asyncio.sleep(float(request.query.get("delay", "5")))
    return aiohttp.web_response.Response(text="late")


async def graphql(request: aiohttp.web_request.Request) -> aiohttp.web_response.Response:
    payload = await request.json()
    return aiohttp.web.json_response(
        {
            "data": {"echo": payload},
            "content_type": request.headers.get(aiohttp.hdrs.CONTENT_TYPE),
            "user_agent": request.headers.get(aiohttp.hdrs.USER_AGENT),
        }
    )


def sse_handler(chunks: list[str], *, hang: bool = False) -> Callable[..., Any]:
    async def handler(request: aiohttp.web_request.Request) -> aiohttp.web.StreamResponse:
        await request.read()
        response = aiohttp.web.StreamResponse(headers={aiohttp.hdrs.CONTENT_TYPE: "text/event-stream"})
        await response.prepare(request)
        for chunk in chunks:
            await response.write(chunk.encode())
        if hang:
            await asyncio.sleep(1)
        await response.write_eof()
        return response

    return handler


async def sse_stalled(request: aiohttp.web_request.Request) -> aiohttp.web_response.Response:
    await request.read()
    await asyncio.sleep(2)
    return aiohttp.web_response.Response(text="late")


async def sse_denied(request: aiohttp.web_request.Request) -> aiohttp.web_response.Response:
    return aiohttp.web_response.Response(status=403, text="data: should not be parsed\n\n")


def graphql_ws_handler(
    ws_messages: list[Any], handshake_headers: list[multidict.CIMultiDictProxy[str]], finished: asyncio.Event
) -> Callable[..., Any]:
    async def handler(request: aiohttp.web_request.Request) -> aiohttp.web.WebSocketResponse:
        try:
            return await session(request)
        finally:
            finished.set()

    async def session(request: aiohttp.web_request.Request) -> aiohttp.web.WebSocketResponse:
        handshake_headers.append(request.headers)
        scenario = request.query.get("scenario", "complete")
        ws = aiohttp.web.WebSocketResponse(protocols=("graphql-transport-ws", "graphql-ws"))
        await ws.prepare(request)

        async for msg in ws:
            if msg.type != aiohttp.WSMsgType.TEXT:
                continue
            message = json.loads(msg.data)
            ws_messages.append(message)

            if message["type"] == "connection_init":
                if scenario == "no-ack":
                    continue
                if scenario == "wrong-ack":
                    await ws.send_json({"type": "ka"})
                    continue
                await ws.send_json({"type": "connection_ack"})
            elif message["type"] == "subscribe":
                subscription_id = message["id"]
                if scenario == "complete":
                    await ws.send_json({"id": subscription_id, "type": "next", "payload": {"data": {"tick": 1}}})
                    await ws.send_json({"id": subscription_id, "type": "next", "payload": {"data": {"tick": 2}}})
                    await ws.send_json({"id": subscription_id, "type": "complete"})
                elif scenario == "error":
                    await ws.send_json({"id": subscription_id, "type": "error", "payload": [{"message": "boom"}]})
                    await ws.send_str("not json")
                    await ws.send_json({"id": subscription_id, "type": "complete"})
                elif scenario == "close":
                    await ws.send_json({"id": subscription_id, "type": "next", "payload": {"data": {"tick": 1}}})
                    await ws.close()
                elif scenario == "huge":
                    await ws.send_json({"id": subscription_id, "type": "next", "payload": {"data": {"tick": 1}}})
                    await ws.send_str("x" * 4096)
        return ws

    return handler


async def generic_ws(request: aiohttp.web_request.Request) -> aiohttp.web.WebSocketResponse:
    mode = request.query.get("mode", "echo")
    ws = aiohttp.web.WebSocketResponse(protocols=("chat",))
    await ws.prepare(request)

    if mode == "greet":
        await ws.send_str(f"hello {ws.ws_protocol or 'anonymous'}")
        await ws.close()
        return ws
    if mode == "binary":
        await ws.send_bytes(b"\xff abc")
        await ws.close()
        return ws

    async for msg in ws:
        if msg.type == aiohttp.WSMsgType.TEXT:
            await ws.send_str(f"echo: {msg.data}")
            if mode == "echo-close":
                await ws.close()
    return ws


@pytest.fixture
async def backend(aiohttp_server: AiohttpServer) -> Backend:
    ws_messages: list[Any] = []
    handshake_headers: list[multidict.CIMultiDictProxy[str]] = []
    ws_finished = asyncio.Event()

    app = aiohttp.web.Application()
    app.router.add_route("*", "/echo", echo)
    app.router.add_post("/form", form)
    app.router.add_route("*", "/status/{status}", status)
    app.router.add_get("/slow", slow)
    app.router.add_post("/graphql", graphql)
    app.router.add_post(
        "/sse/events",
        sse_handler([": comment\n", "data: one\n\n", "event: update\r\n", "data: a\ndata: b\n\n", "data: tail\n"]),
    )
    app.router.add_post("/sse/hang", sse_handler(["data: first\n\n", "data: pending\n"], hang=True))
    app.router.add_post("/sse/stalled", sse_stalled)
    app.router.add_post("/sse/denied", sse_denied)
    app.router.add_get("/graphql-ws", graphql_ws_handler(ws_messages, handshake_headers, ws_finished))
    app.router.add_get("/ws", generic_ws)
    return Backend(await aiohttp_server(app), ws_messages, handshake_headers, ws_finished)


@pytest.fixture
async def client_session() -> AsyncIterator[aiohttp.ClientSession]:
    async with aiohttp.ClientSession() as client_session:
        yield client_session


@pytest.fixture
def dispatcher(client_session: aiohttp.ClientSession) -> aio_exchange.Dispatcher:
    return aio_exchange.setup(
        client_session=client_session,
        request_timeout=5.0,
        ack_timeout=0.5,
        subscription_timeout=2.0,
        websocket_receive_timeout=2.0,
    )


@pytest.fixture(scope="session")
def unused_port() -> Callable[[], int]:
    def f() -> int:
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
            s.bind(("127.0.0.1", 0))
            return s.getsockname()[1]

    return f
