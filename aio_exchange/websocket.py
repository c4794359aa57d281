import asyncio
import collections.abc
import contextlib
import enum
import json
import logging
from typing import Any

import aiohttp
import multidict
import yarl

from .assembler import ResponseAssembler, describe_exception, unsupported_request_response
from .base import (
    DEFAULT_ACK_TIMEOUT,
    DEFAULT_MAX_MSG_SIZE,
    DEFAULT_SUBSCRIPTION_TIMEOUT,
    DEFAULT_USER_AGENT,
    DEFAULT_WEBSOCKET_RECEIVE_TIMEOUT,
    GRAPHQL_SUBSCRIPTION_ID,
    GRAPHQL_TRANSPORT_WS_PROTOCOL,
    GRAPHQL_WS_PROTOCOL,
    SWITCHING_PROTOCOLS,
    Method,
    StreamError,
    StreamEventType,
)
from .executor import RequestExecutor
from .models import GraphQLRequest, Request, Response, SentRequest, SubscriptionTransport, WebSocketRequest
from .transport import build_graphql_payload, build_handshake_headers, headers_proxy, to_websocket_url

logger = logging.getLogger(__package__)

CONNECTION_ESTABLISHED = "WebSocket connection established"
ACK_FAILED = "Failed to receive connection_ack"
CLOSED_BY_SERVER = "Connection closed by server"
TIMEOUT_REACHED = "Timeout reached, closing connection"

_CLOSE_TYPES = (aiohttp.WSMsgType.CLOSE, aiohttp.WSMsgType.CLOSING, aiohttp.WSMsgType.CLOSED)


class GraphQLMessageType:
    CONNECTION_INIT = "connection_init"
    CONNECTION_ACK = "connection_ack"
    SUBSCRIBE = "subscribe"
    NEXT = "next"
    ERROR = "error"
    COMPLETE = "complete"
    PING = "ping"
    PONG = "pong"


class SubscriptionState(enum.StrEnum):
    CONNECTING = enum.auto()
    INIT_SENT = enum.auto()
    AWAITING_ACK = enum.auto()
    ACKED = enum.auto()
    SUBSCRIBE_SENT = enum.auto()
    STREAMING = enum.auto()
    COMPLETED = enum.auto()
    CLOSED_BY_PEER = enum.auto()
    TIMED_OUT = enum.auto()
    ERROR = enum.auto()


class GuardedWebSocket:
    """WebSocket owned by a single execution.

    `release()` sends the farewell message (if one was registered) and closes
    the socket; failures of either step are recorded as warning events and
    never raised.
    """

    __slots__ = ("__assembler", "__farewell", "__ws")

    def __init__(self, ws: aiohttp.ClientWebSocketResponse, assembler: ResponseAssembler) -> None:
        self.__ws = ws
        self.__assembler = assembler
        self.__farewell: dict[str, Any] | None = None

    def set_farewell(self, message: dict[str, Any]) -> None:
        self.__farewell = message

    async def send_json(self, message: dict[str, Any]) -> None:
        await self.__ws.send_str(json.dumps(message))

    async def send_str(self, message: str) -> None:
        await self.__ws.send_str(message)

    async def receive(self) -> aiohttp.WSMessage:
        message = await self.__ws.receive()
        if message.type == aiohttp.WSMsgType.ERROR:
            error = message.data if isinstance(message.data, BaseException) else self.__ws.exception()
            raise StreamError(f"WebSocket error: {describe_exception(error) if error else 'unknown'}") from error
        return message

    async def close(self) -> None:
        await self.__ws.close()

    async def release(self) -> None:
        if self.__farewell is not None and not self.__ws.closed:
            try:
                await self.send_json(self.__farewell)
            except Exception as e:
                logger.debug("Failed to send farewell message", exc_info=True)
                self.__assembler.add_stream_event(
                    f"Warning: Failed to send complete message: {describe_exception(e)}", StreamEventType.WARNING
                )
        if not self.__ws.closed:
            try:
                await self.__ws.close()
            except Exception as e:
                logger.debug("Failed to close WebSocket", exc_info=True)
                self.__assembler.add_stream_event(
                    f"Warning: Failed to close WebSocket cleanly: {describe_exception(e)}", StreamEventType.WARNING
                )


@contextlib.asynccontextmanager
async def open_websocket(
    client_session: aiohttp.ClientSession,
    url: yarl.URL,
    *,
    assembler: ResponseAssembler,
    protocols: collections.abc.Iterable[str],
    headers: multidict.CIMultiDict[str],
    max_msg_size: int,
) -> collections.abc.AsyncIterator[GuardedWebSocket]:
    ws = await client_session.ws_connect(
        url,
        protocols=tuple(protocols),
        headers=headers,
        autoclose=False,
        max_msg_size=max_msg_size,
    )
    guarded = GuardedWebSocket(ws, assembler)
    try:
        yield guarded
    finally:
        await guarded.release()


def failed_headers_warning(failed_headers: collections.abc.Sequence[str]) -> str:
    return f"Warning: Failed to set {len(failed_headers)} header(s): {', '.join(failed_headers)}"


def decode_frame(message: aiohttp.WSMessage) -> str:
    if message.type == aiohttp.WSMsgType.BINARY:
        return bytes(message.data).decode("utf-8", errors="replace")
    return str(message.data)


def parse_graphql_message(text: str) -> tuple[str | None, dict[str, Any] | None]:
    try:
        message = json.loads(text)
    except ValueError:
        return None, None
    if not isinstance(message, dict):
        return None, None
    message_type = message.get("type")
    return (message_type if isinstance(message_type, str) else None), message


def _enter(state: SubscriptionState, url: yarl.URL) -> SubscriptionState:
    logger.debug("Subscription to %s is %s", url, state, extra={"request_url": url, "subscription_state": state})
    return state


class GraphQLWebSocketExecutor(RequestExecutor):
    """Runs a GraphQL subscription using the graphql-transport-ws protocol.

    Every observable step of the exchange is recorded as a stream event, the
    transcript of those events becomes the response body.
    """

    __slots__ = (
        "__ack_timeout",
        "__client_session",
        "__max_msg_size",
        "__subscription_timeout",
        "__user_agent",
    )

    def __init__(
        self,
        client_session: aiohttp.ClientSession,
        *,
        user_agent: str = DEFAULT_USER_AGENT,
        ack_timeout: float = DEFAULT_ACK_TIMEOUT,
        subscription_timeout: float = DEFAULT_SUBSCRIPTION_TIMEOUT,
        max_msg_size: int = DEFAULT_MAX_MSG_SIZE,
    ) -> None:
        if ack_timeout <= 0:
            raise ValueError("ack_timeout must be positive")
        if subscription_timeout <= 0:
            raise ValueError("subscription_timeout must be positive")
        if max_msg_size < 0:
            raise ValueError("max_msg_size must not be negative")

        self.__client_session = client_session
        self.__user_agent = user_agent
        self.__ack_timeout = ack_timeout
        self.__subscription_timeout = subscription_timeout
        self.__max_msg_size = max_msg_size

    def can_handle(self, request: Request) -> bool:
        return (
            isinstance(request, GraphQLRequest)
            and request.is_subscription
            and request.subscription_transport == SubscriptionTransport.WEBSOCKET
        )

    async def execute(self, request: Request) -> Response:
        if not isinstance(request, GraphQLRequest) or not self.can_handle(request):
            return unsupported_request_response(request, (self,))

        assembler = ResponseAssembler(streaming=True)
        try:
            state = await self.__subscribe(request, assembler)
        except Exception as e:
            state = SubscriptionState.ERROR
            logger.warning(
                "Subscription to %s over WebSocket has failed",
                request.url,
                exc_info=True,
                extra={
                    "request_method": Method.GRAPHQL_SUBSCRIPTION_WS,
                    "request_url": request.url,
                },
            )
            assembler.set_exception(e)
        else:
            assembler.finalize_streaming()

        logger.debug(
            "Subscription to %s finished as %s with %d events",
            request.url,
            state,
            len(assembler.stream_events),
            extra={"request_url": request.url, "subscription_state": state},
        )
        return assembler.build()

    async def __subscribe(self, request: GraphQLRequest, assembler: ResponseAssembler) -> SubscriptionState:
        url = to_websocket_url(request.url)
        _enter(SubscriptionState.CONNECTING, url)

        headers, failed_headers = build_handshake_headers(request, user_agent=self.__user_agent)
        payload = build_graphql_payload(request)
        assembler.set_sent_request(
            SentRequest(
                url=str(url),
                method=Method.GRAPHQL_SUBSCRIPTION_WS,
                headers=headers_proxy(headers),
                body=json.dumps(payload),
            )
        )
        if failed_headers:
            assembler.add_stream_event(failed_headers_warning(failed_headers), StreamEventType.WARNING)

        ws_ctx = open_websocket(
            self.__client_session,
            url,
            assembler=assembler,
            protocols=(GRAPHQL_TRANSPORT_WS_PROTOCOL, GRAPHQL_WS_PROTOCOL),
            headers=headers,
            max_msg_size=self.__max_msg_size,
        )
        async with ws_ctx as ws:
            assembler.stop_timing()
            assembler.set_status(SWITCHING_PROTOCOLS, CONNECTION_ESTABLISHED)

            await ws.send_json({"type": GraphQLMessageType.CONNECTION_INIT})
            assembler.add_stream_event(f"Sent: {GraphQLMessageType.CONNECTION_INIT}", StreamEventType.SENT)
            _enter(SubscriptionState.INIT_SENT, url)

            _enter(SubscriptionState.AWAITING_ACK, url)
            if not await self.__wait_for_ack(ws, assembler):
                assembler.set_status_text(ACK_FAILED)
                return _enter(SubscriptionState.ERROR, url)
            _enter(SubscriptionState.ACKED, url)

            ws.set_farewell({"id": GRAPHQL_SUBSCRIPTION_ID, "type": GraphQLMessageType.COMPLETE})
            await ws.send_json(
                {"id": GRAPHQL_SUBSCRIPTION_ID, "type": GraphQLMessageType.SUBSCRIBE, "payload": payload}
            )
            assembler.add_stream_event("Sent: subscribe with query", StreamEventType.SENT)
            _enter(SubscriptionState.SUBSCRIBE_SENT, url)

            _enter(SubscriptionState.STREAMING, url)
            return _enter(await self.__stream(ws, assembler), url)

    async def __wait_for_ack(self, ws: GuardedWebSocket, assembler: ResponseAssembler) -> bool:
        try:
            async with asyncio.timeout(self.__ack_timeout):
                message = await ws.receive()
        except TimeoutError:
            assembler.add_stream_event(
                f"No {GraphQLMessageType.CONNECTION_ACK} within {self.__ack_timeout:g}s", StreamEventType.ERROR
            )
            return False

        if message.type != aiohttp.WSMsgType.TEXT:
            frame_type = message.type.name.lower()
            assembler.add_stream_event(f"Received: {frame_type}", StreamEventType.RECEIVED)
            assembler.add_stream_event(f"Expected a text frame, received {frame_type}", StreamEventType.ERROR)
            return False

        message_type, _ = parse_graphql_message(message.data)
        assembler.add_stream_event(f"Received: {message_type or StreamEventType.UNKNOWN}", StreamEventType.RECEIVED)
        if message_type != GraphQLMessageType.CONNECTION_ACK:
            assembler.add_stream_event(
                f"Expected {GraphQLMessageType.CONNECTION_ACK}, received {message_type or 'non-JSON text'}",
                StreamEventType.ERROR,
            )
            return False
        return True

    async def __stream(self, ws: GuardedWebSocket, assembler: ResponseAssembler) -> SubscriptionState:
        deadline = asyncio.timeout(self.__subscription_timeout)
        try:
            async with deadline:
                while True:
                    message = await ws.receive()
                    if message.type in _CLOSE_TYPES:
                        await ws.close()
                        assembler.add_stream_event(CLOSED_BY_SERVER, StreamEventType.CLOSE)
                        return SubscriptionState.CLOSED_BY_PEER

                    text = decode_frame(message)
                    message_type, parsed = parse_graphql_message(text)
                    if parsed is None or message_type is None:
                        assembler.add_stream_event(text, StreamEventType.UNKNOWN)
                    elif message_type == GraphQLMessageType.NEXT:
                        assembler.add_stream_event(json.dumps(parsed.get("payload"), indent=2), StreamEventType.DATA)
                    elif message_type == GraphQLMessageType.COMPLETE:
                        assembler.add_stream_event("Subscription completed", StreamEventType.COMPLETE)
                        return SubscriptionState.COMPLETED
                    elif message_type == GraphQLMessageType.ERROR:
                        assembler.add_stream_event(f"Error: {json.dumps(parsed.get('payload'))}", StreamEventType.ERROR)
                    else:
                        assembler.add_stream_event(text, message_type)
                        if message_type == GraphQLMessageType.PING:
                            await ws.send_json({"type": GraphQLMessageType.PONG})
        except TimeoutError:
            if not deadline.expired():
                raise
            assembler.add_stream_event(TIMEOUT_REACHED, StreamEventType.TIMEOUT)
            return SubscriptionState.TIMED_OUT


class WebSocketExecutor(RequestExecutor):
    __slots__ = ("__client_session", "__max_msg_size", "__receive_timeout", "__user_agent")

    def __init__(
        self,
        client_session: aiohttp.ClientSession,
        *,
        user_agent: str = DEFAULT_USER_AGENT,
        receive_timeout: float = DEFAULT_WEBSOCKET_RECEIVE_TIMEOUT,
        max_msg_size: int = DEFAULT_MAX_MSG_SIZE,
    ) -> None:
        if receive_timeout <= 0:
            raise ValueError("receive_timeout must be positive")
        if max_msg_size < 0:
            raise ValueError("max_msg_size must not be negative")

        self.__client_session = client_session
        self.__user_agent = user_agent
        self.__receive_timeout = receive_timeout
        self.__max_msg_size = max_msg_size

    def can_handle(self, request: Request) -> bool:
        return isinstance(request, WebSocketRequest)

    async def execute(self, request: Request) -> Response:
        if not isinstance(request, WebSocketRequest):
            return unsupported_request_response(request, (self,))

        assembler = ResponseAssembler(streaming=True)
        try:
            await self.__exchange(request, assembler)
        except Exception as e:
            logger.warning(
                "WebSocket exchange with %s has failed",
                request.url,
                exc_info=True,
                extra={
                    "request_method": Method.WEBSOCKET,
                    "request_url": request.url,
                },
            )
            assembler.set_exception(e)
        else:
            assembler.finalize_streaming()

        return assembler.build()

    async def __exchange(self, request: WebSocketRequest, assembler: ResponseAssembler) -> None:
        url = to_websocket_url(request.url)
        headers, failed_headers = build_handshake_headers(request, user_agent=self.__user_agent)
        assembler.set_sent_request(
            SentRequest(
                url=str(url),
                method=Method.WEBSOCKET,
                headers=headers_proxy(headers),
                body=request.message,
            )
        )
        if failed_headers:
            assembler.add_stream_event(failed_headers_warning(failed_headers), StreamEventType.WARNING)

        logger.debug(
            "Connecting to %s",
            url,
            extra={
                "request_method": Method.WEBSOCKET,
                "request_url": url,
            },
        )
        ws_ctx = open_websocket(
            self.__client_session,
            url,
            assembler=assembler,
            protocols=[p for p in request.protocols if p.strip()],
            headers=headers,
            max_msg_size=self.__max_msg_size,
        )
        async with ws_ctx as ws:
            assembler.stop_timing()
            assembler.set_status(SWITCHING_PROTOCOLS, CONNECTION_ESTABLISHED)

            if request.message:
                await ws.send_str(request.message)
                assembler.add_stream_event(f"Sent: {request.message}", StreamEventType.SENT)

            deadline = asyncio.timeout(self.__receive_timeout)
            try:
                async with deadline:
                    while True:
                        message = await ws.receive()
                        if message.type in _CLOSE_TYPES:
                            await ws.close()
                            assembler.add_stream_event(CLOSED_BY_SERVER, StreamEventType.CLOSE)
                            return
                        assembler.add_stream_event(decode_frame(message), StreamEventType.MESSAGE)
            except TimeoutError:
                if not deadline.expired():
                    raise
                assembler.add_stream_event(TIMEOUT_REACHED, StreamEventType.TIMEOUT)
