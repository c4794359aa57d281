import collections.abc
import dataclasses
import datetime
import enum

import multidict

from .base import EMPTY_HEADERS, TRANSPORT_ERROR_STATUS, Method


class AuthType(enum.StrEnum):
    NONE = enum.auto()
    BASIC = enum.auto()
    BEARER = enum.auto()


class BodyType(enum.StrEnum):
    NONE = enum.auto()
    JSON = enum.auto()
    XML = enum.auto()
    TEXT = enum.auto()
    HTML = enum.auto()
    JAVASCRIPT = enum.auto()
    FORM_DATA = enum.auto()


class GraphQLOperationType(enum.StrEnum):
    QUERY = enum.auto()
    MUTATION = enum.auto()
    SUBSCRIPTION = enum.auto()


class SubscriptionTransport(enum.StrEnum):
    WEBSOCKET = enum.auto()
    SSE = enum.auto()


@dataclasses.dataclass(frozen=True, slots=True, kw_only=True)
class FormDataField:
    key: str
    value: str = ""
    enabled: bool = True


@dataclasses.dataclass(frozen=True, slots=True, kw_only=True)
class FormDataFile:
    key: str
    file_path: str
    content_type: str | None = None
    enabled: bool = True


@dataclasses.dataclass(frozen=True, slots=True, kw_only=True)
class Request:
    """Fully-resolved request, placeholders are already substituted"""

    url: str
    headers: collections.abc.Mapping[str, str] = dataclasses.field(default_factory=dict)
    disabled_headers: collections.abc.Set[str] = frozenset()
    auth_type: AuthType = AuthType.NONE
    basic_auth_username: str | None = None
    basic_auth_password: str | None = None
    bearer_token: str | None = None


@dataclasses.dataclass(frozen=True, slots=True, kw_only=True)
class RestRequest(Request):
    method: str = Method.GET
    query_parameters: collections.abc.Mapping[str, str] = dataclasses.field(default_factory=dict)
    disabled_query_parameters: collections.abc.Set[str] = frozenset()
    body: str | None = None
    body_type: BodyType = BodyType.JSON
    content_type: str | None = None
    form_data_fields: collections.abc.Sequence[FormDataField] = ()
    form_data_files: collections.abc.Sequence[FormDataFile] = ()

    def __repr__(self) -> str:
        return f"<RestRequest [{self.method} {self.url}]>"


@dataclasses.dataclass(frozen=True, slots=True, kw_only=True)
class GraphQLRequest(Request):
    query: str = ""
    variables: str | None = None
    operation_name: str | None = None
    operation_type: GraphQLOperationType = GraphQLOperationType.QUERY
    subscription_transport: SubscriptionTransport = SubscriptionTransport.WEBSOCKET

    @property
    def is_subscription(self) -> bool:
        return self.operation_type == GraphQLOperationType.SUBSCRIPTION

    def __repr__(self) -> str:
        if self.is_subscription:
            return f"<GraphQLRequest [{self.operation_type} over {self.subscription_transport} {self.url}]>"
        return f"<GraphQLRequest [{self.operation_type} {self.url}]>"


@dataclasses.dataclass(frozen=True, slots=True, kw_only=True)
class WebSocketRequest(Request):
    protocols: collections.abc.Sequence[str] = ()
    message: str | None = None

    def __repr__(self) -> str:
        return f"<WebSocketRequest [{self.url}]>"


@dataclasses.dataclass(frozen=True, slots=True, kw_only=True)
class SentRequest:
    url: str
    method: str
    headers: multidict.CIMultiDictProxy[str] = dataclasses.field(default_factory=lambda: EMPTY_HEADERS)
    body: str | None = None
    query_parameters: collections.abc.Mapping[str, str] = dataclasses.field(default_factory=dict)


@dataclasses.dataclass(frozen=True, slots=True, kw_only=True)
class StreamEvent:
    timestamp: datetime.datetime
    event_type: str
    data: str


@dataclasses.dataclass(frozen=True, slots=True, kw_only=True)
class Response:
    status: int
    status_text: str
    headers: multidict.CIMultiDictProxy[str]
    body: str
    size: int
    elapsed: int
    started_at: datetime.datetime
    is_streaming: bool = False
    stream_events: tuple[StreamEvent, ...] = ()
    sent_request: SentRequest | None = None

    def is_transport_error(self) -> bool:
        return self.status == TRANSPORT_ERROR_STATUS

    def is_successful(self) -> bool:
        return 200 <= self.status < 300

    def __repr__(self) -> str:
        if self.is_streaming:
            return f"<Response [{self.status}, {len(self.stream_events)} events]>"
        return f"<Response [{self.status}]>"
