import re
import sys
from typing import NamedTuple

from .assembler import ResponseAssembler, render_transcript, unsupported_request_response
from .base import (
    DEFAULT_USER_AGENT,
    SWITCHING_PROTOCOLS,
    TRANSPORT_ERROR_STATUS,
    Header,
    HeaderNotAllowedError,
    MediaType,
    Method,
    StreamError,
    StreamEventType,
)
from .dispatcher import Dispatcher
from .executor import RequestExecutor
from .graphql import GraphQLQueryExecutor, GraphQLSseExecutor
from .models import (
    AuthType,
    BodyType,
    FormDataField,
    FormDataFile,
    GraphQLOperationType,
    GraphQLRequest,
    Request,
    Response,
    RestRequest,
    SentRequest,
    StreamEvent,
    SubscriptionTransport,
    WebSocketRequest,
)
from .rest import RestExecutor
from .setup import setup
from .sse import SseEvent, SseParser
from .websocket import GraphQLWebSocketExecutor, SubscriptionState, WebSocketExecutor

__all__: tuple[str, ...] = (
    "DEFAULT_USER_AGENT",
    "SWITCHING_PROTOCOLS",
    "TRANSPORT_ERROR_STATUS",
    "AuthType",
    "BodyType",
    "Dispatcher",
    "FormDataField",
    "FormDataFile",
    "GraphQLOperationType",
    "GraphQLQueryExecutor",
    "GraphQLRequest",
    "GraphQLSseExecutor",
    "GraphQLWebSocketExecutor",
    "Header",
    "HeaderNotAllowedError",
    "MediaType",
    "Method",
    "Request",
    "RequestExecutor",
    "Response",
    "ResponseAssembler",
    "RestExecutor",
    "RestRequest",
    "SentRequest",
    "SseEvent",
    "SseParser",
    "StreamError",
    "StreamEvent",
    "StreamEventType",
    "SubscriptionState",
    "SubscriptionTransport",
    "WebSocketExecutor",
    "WebSocketRequest",
    "render_transcript",
    "setup",
    "unsupported_request_response",
)

__version__ = "0.1.0"

version = f"{__version__}, Python {sys.version}"


class VersionInfo(NamedTuple):
    major: int
    minor: int
    micro: int
    release_level: str
    serial: int


def _parse_version(v: str) -> VersionInfo:
    version_re = r"^(?P<major>\d+)\.(?P<minor>\d+)\.(?P<micro>\d+)((?P<release_level>[a-z]+)(?P<serial>\d+)?)?$"
    match = re.match(version_re, v)
    if not match:
        raise ImportError(f"Invalid package version {v}")
    try:
        major = int(match.group("major"))
        minor = int(match.group("minor"))
        micro = int(match.group("micro"))
        levels = {"rc": "candidate", "a": "alpha", "b": "beta", None: "final"}
        release_level = levels[match.group("release_level")]
        serial = int(match.group("serial")) if match.group("serial") else 0
        return VersionInfo(major, minor, micro, release_level, serial)
    except Exception as e:
        raise ImportError(f"Invalid package version {v}") from e


version_info = _parse_version(__version__)
