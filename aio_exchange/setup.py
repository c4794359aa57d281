import aiohttp

from .base import (
    DEFAULT_ACK_TIMEOUT,
    DEFAULT_MAX_MSG_SIZE,
    DEFAULT_REQUEST_TIMEOUT,
    DEFAULT_SUBSCRIPTION_TIMEOUT,
    DEFAULT_USER_AGENT,
    DEFAULT_WEBSOCKET_RECEIVE_TIMEOUT,
)
from .dispatcher import Dispatcher
from .graphql import GraphQLQueryExecutor, GraphQLSseExecutor
from .rest import RestExecutor
from .websocket import GraphQLWebSocketExecutor, WebSocketExecutor


def setup(
    *,
    client_session: aiohttp.ClientSession,
    user_agent: str = DEFAULT_USER_AGENT,
    request_timeout: float = DEFAULT_REQUEST_TIMEOUT,
    ack_timeout: float = DEFAULT_ACK_TIMEOUT,
    subscription_timeout: float = DEFAULT_SUBSCRIPTION_TIMEOUT,
    websocket_receive_timeout: float = DEFAULT_WEBSOCKET_RECEIVE_TIMEOUT,
    max_msg_size: int = DEFAULT_MAX_MSG_SIZE,
) -> Dispatcher:
    if not user_agent:
        raise ValueError("user_agent must not be empty")

    return Dispatcher(
        [
            RestExecutor(client_session, user_agent=user_agent, request_timeout=request_timeout),
            GraphQLQueryExecutor(client_session, user_agent=user_agent, request_timeout=request_timeout),
            GraphQLWebSocketExecutor(
                client_session,
                user_agent=user_agent,
                ack_timeout=ack_timeout,
                subscription_timeout=subscription_timeout,
                max_msg_size=max_msg_size,
            ),
            GraphQLSseExecutor(
                client_session,
                user_agent=user_agent,
                connect_timeout=request_timeout,
                subscription_timeout=subscription_timeout,
            ),
            WebSocketExecutor(
                client_session,
                user_agent=user_agent,
                receive_timeout=websocket_receive_timeout,
                max_msg_size=max_msg_size,
            ),
        ]
    )
