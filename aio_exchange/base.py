import re

import multidict

EMPTY_HEADERS = multidict.CIMultiDictProxy[str](multidict.CIMultiDict[str]())

SWITCHING_PROTOCOLS = 101
TRANSPORT_ERROR_STATUS = 0

DEFAULT_USER_AGENT = "aio-exchange"
DEFAULT_REQUEST_TIMEOUT = 100.0
DEFAULT_ACK_TIMEOUT = 5.0
DEFAULT_SUBSCRIPTION_TIMEOUT = 60.0
DEFAULT_WEBSOCKET_RECEIVE_TIMEOUT = 30.0
DEFAULT_MAX_MSG_SIZE = 4 * 1024 * 1024


class Method:
    GET = "GET"
    POST = "POST"
    PUT = "PUT"
    DELETE = "DELETE"
    PATCH = "PATCH"
    HEAD = "HEAD"
    OPTIONS = "OPTIONS"

    # Pseudo-methods recorded in SentRequest for socket and stream exchanges
    WEBSOCKET = "WEBSOCKET"
    GRAPHQL_SUBSCRIPTION_WS = "GRAPHQL_SUBSCRIPTION_WS"
    GRAPHQL_SUBSCRIPTION_SSE = "GRAPHQL_SUBSCRIPTION_SSE"


class Header:
    ACCEPT = multidict.istr("Accept")
    AUTHORIZATION = multidict.istr("Authorization")
    CONTENT_TYPE = multidict.istr("Content-Type")
    USER_AGENT = multidict.istr("User-Agent")


class MediaType:
    APPLICATION_JSON = "application/json"
    APPLICATION_XML = "application/xml"
    APPLICATION_JAVASCRIPT = "application/javascript"
    APPLICATION_OCTET_STREAM = "application/octet-stream"
    TEXT_PLAIN = "text/plain"
    TEXT_HTML = "text/html"
    TEXT_EVENT_STREAM = "text/event-stream"


class AuthScheme:
    BASIC = "Basic"
    BEARER = "Bearer"


class StreamEventType:
    SENT = "sent"
    RECEIVED = "received"
    MESSAGE = "message"
    DATA = "data"
    COMPLETE = "complete"
    ERROR = "error"
    CLOSE = "close"
    TIMEOUT = "timeout"
    WARNING = "warning"
    UNKNOWN = "unknown"


GRAPHQL_TRANSPORT_WS_PROTOCOL = "graphql-transport-ws"
GRAPHQL_WS_PROTOCOL = "graphql-ws"
GRAPHQL_SUBSCRIPTION_ID = "1"

# Handshake headers owned by the WebSocket client itself
RESTRICTED_HANDSHAKE_HEADERS = frozenset({"host", "connection", "upgrade", "content-length", "transfer-encoding"})
RESTRICTED_HANDSHAKE_HEADER_PREFIX = "sec-websocket-"

header_name_re = re.compile(r"^[!#$%&'*+\-.^_`|~0-9A-Za-z]+$")


class HeaderNotAllowedError(ValueError):
    """Header cannot be set on a WebSocket handshake"""


class StreamError(Exception):
    """Streaming connection reported an error"""
