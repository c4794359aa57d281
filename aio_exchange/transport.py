import base64
import collections.abc
import json
from typing import Any

import multidict
import yarl

from .base import (
    RESTRICTED_HANDSHAKE_HEADER_PREFIX,
    RESTRICTED_HANDSHAKE_HEADERS,
    AuthScheme,
    Header,
    HeaderNotAllowedError,
    MediaType,
    header_name_re,
)
from .models import AuthType, BodyType, GraphQLRequest, Request, RestRequest

_CONTENT_TYPE_BY_BODY_TYPE = {
    BodyType.JSON: MediaType.APPLICATION_JSON,
    BodyType.XML: MediaType.APPLICATION_XML,
    BodyType.HTML: MediaType.TEXT_HTML,
    BodyType.JAVASCRIPT: MediaType.APPLICATION_JAVASCRIPT,
    BodyType.TEXT: MediaType.TEXT_PLAIN,
}


def is_header_disabled(request: Request, name: str) -> bool:
    folded = name.casefold()
    return any(folded == disabled.casefold() for disabled in request.disabled_headers)


def enabled_headers(request: Request) -> list[tuple[str, str]]:
    return [(name, value) for name, value in request.headers.items() if not is_header_disabled(request, name)]


def enabled_query_parameters(request: RestRequest) -> dict[str, str]:
    return {
        name: value
        for name, value in request.query_parameters.items()
        if name not in request.disabled_query_parameters
    }


def build_authorization(request: Request) -> str | None:
    if request.auth_type == AuthType.BASIC:
        if not request.basic_auth_username:
            return None
        credentials = f"{request.basic_auth_username}:{request.basic_auth_password or ''}"
        return f"{AuthScheme.BASIC} {base64.b64encode(credentials.encode()).decode('ascii')}"
    if request.auth_type == AuthType.BEARER:
        if not request.bearer_token:
            return None
        return f"{AuthScheme.BEARER} {request.bearer_token}"
    return None


def should_skip_header(request: Request, name: str) -> bool:
    return request.auth_type != AuthType.NONE and name.casefold() == Header.AUTHORIZATION.casefold()


def custom_content_type(request: Request) -> str | None:
    for name, value in enabled_headers(request):
        if name.casefold() == Header.CONTENT_TYPE.casefold():
            return value
    return None


def content_type_for(body_type: BodyType) -> str:
    return _CONTENT_TYPE_BY_BODY_TYPE.get(body_type, MediaType.TEXT_PLAIN)


def build_http_headers(request: Request, *, user_agent: str) -> multidict.CIMultiDict[str]:
    headers = multidict.CIMultiDict[str]()
    if not is_header_disabled(request, Header.USER_AGENT):
        headers[Header.USER_AGENT] = user_agent

    authorization = build_authorization(request)
    if authorization is not None:
        headers[Header.AUTHORIZATION] = authorization

    for name, value in enabled_headers(request):
        if should_skip_header(request, name):
            continue
        # Content-Type travels with the body
        if name.casefold() == Header.CONTENT_TYPE.casefold():
            continue
        if name.casefold() == Header.USER_AGENT.casefold():
            headers[Header.USER_AGENT] = value
            continue
        headers.add(name, value)
    return headers


def skip_auto_headers(request: Request) -> tuple[str, ...]:
    return tuple(
        name for name in (Header.USER_AGENT, Header.CONTENT_TYPE) if is_header_disabled(request, name)
    )


def check_handshake_header(name: str, value: str) -> None:
    if not header_name_re.match(name):
        raise HeaderNotAllowedError(f"'{name}' is not a valid header name")
    if "\r" in value or "\n" in value:
        raise HeaderNotAllowedError("header value contains a line break")
    folded = name.casefold()
    if folded in RESTRICTED_HANDSHAKE_HEADERS or folded.startswith(RESTRICTED_HANDSHAKE_HEADER_PREFIX):
        raise HeaderNotAllowedError(f"'{name}' is managed by the WebSocket handshake")


def build_handshake_headers(request: Request, *, user_agent: str) -> tuple[multidict.CIMultiDict[str], list[str]]:
    """Headers for a WebSocket handshake plus the ones which could not be set.

    Each custom header is checked separately, a rejected header is reported
    as `name: reason` and does not prevent the others from being applied.
    """
    headers = multidict.CIMultiDict[str]()
    if not is_header_disabled(request, Header.USER_AGENT):
        headers[Header.USER_AGENT] = user_agent

    authorization = build_authorization(request)
    if authorization is not None:
        headers[Header.AUTHORIZATION] = authorization

    failed: list[str] = []
    for name, value in enabled_headers(request):
        if should_skip_header(request, name):
            continue
        try:
            check_handshake_header(name, value)
        except HeaderNotAllowedError as e:
            failed.append(f"{name}: {e}")
            continue
        headers[name] = value
    return headers, failed


def to_websocket_url(url: str) -> yarl.URL:
    try:
        parsed = yarl.URL(url)
    except ValueError:
        return yarl.URL(f"wss://{url}")

    if parsed.scheme in ("ws", "wss"):
        return parsed
    if parsed.scheme == "http":
        return parsed.with_scheme("ws")
    if parsed.scheme == "https":
        return parsed.with_scheme("wss")
    return yarl.URL(f"wss://{url}")


def build_graphql_payload(request: GraphQLRequest) -> dict[str, Any]:
    payload: dict[str, Any] = {"query": request.query}
    if request.variables is not None and request.variables.strip():
        payload["variables"] = json.loads(request.variables)
    if request.operation_name:
        payload["operationName"] = request.operation_name
    return payload


def headers_proxy(headers: collections.abc.Mapping[str, str]) -> multidict.CIMultiDictProxy[str]:
    return multidict.CIMultiDictProxy[str](multidict.CIMultiDict[str](headers))
