import asyncio
import json
import logging

import aiohttp
import multidict

from .assembler import ResponseAssembler, unsupported_request_response
from .base import (
    DEFAULT_REQUEST_TIMEOUT,
    DEFAULT_SUBSCRIPTION_TIMEOUT,
    DEFAULT_USER_AGENT,
    Header,
    MediaType,
    Method,
    StreamEventType,
)
from .executor import RequestExecutor
from .models import GraphQLRequest, Request, Response, SentRequest, SubscriptionTransport
from .sse import SseParser
from .transport import (
    build_graphql_payload,
    build_http_headers,
    headers_proxy,
    is_header_disabled,
    skip_auto_headers,
)

logger = logging.getLogger(__package__)


def _prepare_post(
    request: GraphQLRequest, *, user_agent: str, accept: str | None = None
) -> tuple[multidict.CIMultiDict[str], str]:
    body = json.dumps(build_graphql_payload(request))
    headers = build_http_headers(request, user_agent=user_agent)
    if not is_header_disabled(request, Header.CONTENT_TYPE):
        headers[Header.CONTENT_TYPE] = MediaType.APPLICATION_JSON
    if accept is not None:
        headers[Header.ACCEPT] = accept
    return headers, body


class GraphQLQueryExecutor(RequestExecutor):
    __slots__ = ("__client_session", "__request_timeout", "__user_agent")

    def __init__(
        self,
        client_session: aiohttp.ClientSession,
        *,
        user_agent: str = DEFAULT_USER_AGENT,
        request_timeout: float = DEFAULT_REQUEST_TIMEOUT,
    ) -> None:
        if request_timeout <= 0:
            raise ValueError("request_timeout must be positive")

        self.__client_session = client_session
        self.__user_agent = user_agent
        self.__request_timeout = request_timeout

    def can_handle(self, request: Request) -> bool:
        return isinstance(request, GraphQLRequest) and not request.is_subscription

    async def execute(self, request: Request) -> Response:
        if not isinstance(request, GraphQLRequest) or not self.can_handle(request):
            return unsupported_request_response(request, (self,))

        assembler = ResponseAssembler()
        try:
            headers, body = _prepare_post(request, user_agent=self.__user_agent)
            assembler.set_sent_request(
                SentRequest(url=request.url, method=Method.POST, headers=headers_proxy(headers), body=body)
            )

            logger.debug(
                "Sending %s %s",
                request.operation_type,
                request.url,
                extra={
                    "request_method": Method.POST,
                    "request_url": request.url,
                    "graphql_operation": request.operation_type,
                },
            )
            response_ctx = self.__client_session.post(
                request.url,
                data=body.encode("utf-8"),
                headers=headers,
                skip_auto_headers=skip_auto_headers(request),
                timeout=aiohttp.ClientTimeout(total=self.__request_timeout),
            )
            async with response_ctx as response:
                await assembler.read_body(response)
                assembler.stop_timing()
                assembler.set_status(response.status, response.reason or "")
                assembler.set_headers(response.headers)
        except Exception as e:
            logger.warning(
                "GraphQL %s %s has failed",
                request.operation_type,
                request.url,
                exc_info=True,
                extra={
                    "request_method": Method.POST,
                    "request_url": request.url,
                    "graphql_operation": request.operation_type,
                },
            )
            assembler.set_exception(e)

        return assembler.build()


class GraphQLSseExecutor(RequestExecutor):
    """Runs a GraphQL subscription as a POST answered with text/event-stream.

    Response headers must arrive within `connect_timeout`. After that the
    exchange ends when the server closes the stream or when
    `subscription_timeout` elapses, whichever comes first.
    """

    __slots__ = ("__client_session", "__connect_timeout", "__subscription_timeout", "__user_agent")

    def __init__(
        self,
        client_session: aiohttp.ClientSession,
        *,
        user_agent: str = DEFAULT_USER_AGENT,
        connect_timeout: float = DEFAULT_REQUEST_TIMEOUT,
        subscription_timeout: float = DEFAULT_SUBSCRIPTION_TIMEOUT,
    ) -> None:
        if connect_timeout <= 0:
            raise ValueError("connect_timeout must be positive")
        if subscription_timeout <= 0:
            raise ValueError("subscription_timeout must be positive")

        self.__client_session = client_session
        self.__user_agent = user_agent
        self.__connect_timeout = connect_timeout
        self.__subscription_timeout = subscription_timeout

    def can_handle(self, request: Request) -> bool:
        return (
            isinstance(request, GraphQLRequest)
            and request.is_subscription
            and request.subscription_transport == SubscriptionTransport.SSE
        )

    async def execute(self, request: Request) -> Response:
        if not isinstance(request, GraphQLRequest) or not self.can_handle(request):
            return unsupported_request_response(request, (self,))

        assembler = ResponseAssembler(streaming=True)
        try:
            headers, body = _prepare_post(request, user_agent=self.__user_agent, accept=MediaType.TEXT_EVENT_STREAM)
            assembler.set_sent_request(
                SentRequest(
                    url=request.url,
                    method=Method.GRAPHQL_SUBSCRIPTION_SSE,
                    headers=headers_proxy(headers),
                    body=body,
                )
            )

            logger.debug(
                "Subscribing to %s over SSE",
                request.url,
                extra={
                    "request_method": Method.GRAPHQL_SUBSCRIPTION_SSE,
                    "request_url": request.url,
                },
            )
            # connect_timeout covers everything up to the response headers
            async with asyncio.timeout(self.__connect_timeout):
                response = await self.__client_session.post(
                    request.url,
                    data=body.encode("utf-8"),
                    headers=headers,
                    skip_auto_headers=skip_auto_headers(request),
                    timeout=aiohttp.ClientTimeout(total=None),
                )
            async with response:
                assembler.stop_timing()
                assembler.set_status(response.status, response.reason or "")
                assembler.set_headers(response.headers)
                if 200 <= response.status < 300:
                    await self.__read_events(response, assembler)
            assembler.finalize_streaming()
        except Exception as e:
            logger.warning(
                "Subscription to %s over SSE has failed",
                request.url,
                exc_info=True,
                extra={
                    "request_method": Method.GRAPHQL_SUBSCRIPTION_SSE,
                    "request_url": request.url,
                },
            )
            assembler.set_exception(e)

        return assembler.build()

    async def __read_events(self, response: aiohttp.ClientResponse, assembler: ResponseAssembler) -> None:
        parser = SseParser()
        deadline = asyncio.timeout(self.__subscription_timeout)
        try:
            async with deadline:
                async for line in response.content:
                    event = parser.feed_line(line.decode("utf-8", errors="replace"))
                    if event is not None:
                        assembler.add_stream_event(event.data, event.event_type)
        except TimeoutError:
            if not deadline.expired():
                raise
            assembler.add_stream_event("Timeout reached, closing connection", StreamEventType.TIMEOUT)

        last = parser.flush()
        if last is not None:
            assembler.add_stream_event(last.data, last.event_type)
