import base64
import json
from collections.abc import Callable
from pathlib import Path

import aiohttp
import pytest

import aio_exchange
from tests.conftest import Backend


def response_headers(response: aio_exchange.Response) -> dict[str, str]:
    return {k.lower(): v for k, v in json.loads(response.body)["headers"]}


async def test_get_with_query_parameters(dispatcher: aio_exchange.Dispatcher, backend: Backend) -> None:
    request = aio_exchange.RestRequest(
        url=backend.url("/echo?existing=1"),
        query_parameters={"a": "b c", "skipped": "x"},
        disabled_query_parameters=frozenset({"skipped"}),
    )

    response = await dispatcher.execute(request)

    assert response.status == 200
    assert response.status_text == "OK"
    assert not response.is_streaming
    assert json.loads(response.body)["query"] == [["existing", "1"], ["a", "b c"]]
    assert response.size == len(response.body.encode())
    assert response.elapsed >= 0
    assert response.sent_request is not None
    assert response.sent_request.method == "GET"
    assert response.sent_request.query_parameters == {"a": "b c"}
    assert "skipped" not in response.sent_request.url


async def test_query_parameter_keys_are_case_sensitive(dispatcher: aio_exchange.Dispatcher, backend: Backend) -> None:
    request = aio_exchange.RestRequest(
        url=backend.url("/echo"),
        query_parameters={"Key": "1", "key": "2"},
        disabled_query_parameters=frozenset({"key"}),
    )

    response = await dispatcher.execute(request)

    assert json.loads(response.body)["query"] == [["Key", "1"]]


async def test_default_user_agent_and_custom_headers(dispatcher: aio_exchange.Dispatcher, backend: Backend) -> None:
    request = aio_exchange.RestRequest(
        url=backend.url("/echo"),
        headers={"X-Trace": "abc", "X-Hidden": "secret"},
        disabled_headers=frozenset({"x-hidden"}),
    )

    response = await dispatcher.execute(request)

    headers = response_headers(response)
    assert headers["user-agent"] == aio_exchange.DEFAULT_USER_AGENT
    assert headers["x-trace"] == "abc"
    assert "x-hidden" not in headers
    assert response.sent_request is not None
    assert "X-Hidden" not in response.sent_request.headers
    assert response.sent_request.headers["X-Trace"] == "abc"


async def test_disabled_user_agent_is_not_sent(dispatcher: aio_exchange.Dispatcher, backend: Backend) -> None:
    request = aio_exchange.RestRequest(url=backend.url("/echo"), disabled_headers=frozenset({"User-Agent"}))

    response = await dispatcher.execute(request)

    assert "user-agent" not in response_headers(response)
    assert response.sent_request is not None
    assert aio_exchange.Header.USER_AGENT not in response.sent_request.headers


async def test_basic_auth_replaces_custom_authorization(
    dispatcher: aio_exchange.Dispatcher, backend: Backend
) -> None:
    request = aio_exchange.RestRequest(
        url=backend.url("/echo"),
        headers={"Authorization": "Custom token"},
        auth_type=aio_exchange.AuthType.BASIC,
        basic_auth_username="user",
        basic_auth_password="pass",
    )

    response = await dispatcher.execute(request)

    expected = "Basic " + base64.b64encode(b"user:pass").decode()
    assert response_headers(response)["authorization"] == expected


async def test_basic_auth_without_username_sends_nothing(
    dispatcher: aio_exchange.Dispatcher, backend: Backend
) -> None:
    request = aio_exchange.RestRequest(
        url=backend.url("/echo"),
        headers={"Authorization": "Custom token"},
        auth_type=aio_exchange.AuthType.BASIC,
    )

    response = await dispatcher.execute(request)

    assert "authorization" not in response_headers(response)


async def test_bearer_auth(dispatcher: aio_exchange.Dispatcher, backend: Backend) -> None:
    request = aio_exchange.RestRequest(
        url=backend.url("/echo"), auth_type=aio_exchange.AuthType.BEARER, bearer_token="t0ken"
    )

    response = await dispatcher.execute(request)

    assert response_headers(response)["authorization"] == "Bearer t0ken"


@pytest.mark.parametrize(
    "body_type, content_type",
    [
        (aio_exchange.BodyType.JSON, "application/json"),
        (aio_exchange.BodyType.XML, "application/xml"),
        (aio_exchange.BodyType.HTML, "text/html"),
        (aio_exchange.BodyType.JAVASCRIPT, "application/javascript"),
        (aio_exchange.BodyType.TEXT, "text/plain"),
    ],
)
async def test_content_type_is_derived_from_body_type(
    dispatcher: aio_exchange.Dispatcher, backend: Backend, body_type: aio_exchange.BodyType, content_type: str
) -> None:
    request = aio_exchange.RestRequest(
        url=backend.url("/echo"), method=aio_exchange.Method.POST, body="payload", body_type=body_type
    )

    response = await dispatcher.execute(request)

    assert response_headers(response)["content-type"] == content_type
    assert json.loads(response.body)["body"] == "payload"
    assert response.sent_request is not None
    assert response.sent_request.body == "payload"


async def test_content_type_override_precedence(dispatcher: aio_exchange.Dispatcher, backend: Backend) -> None:
    from_header = aio_exchange.RestRequest(
        url=backend.url("/echo"),
        method=aio_exchange.Method.PUT,
        headers={"Content-Type": "application/vnd.custom+json"},
        body="{}",
    )
    explicit = aio_exchange.RestRequest(
        url=backend.url("/echo"),
        method=aio_exchange.Method.PUT,
        headers={"Content-Type": "application/vnd.custom+json"},
        body="{}",
        content_type="application/merge-patch+json",
    )

    assert response_headers(await dispatcher.execute(from_header))["content-type"] == "application/vnd.custom+json"
    assert response_headers(await dispatcher.execute(explicit))["content-type"] == "application/merge-patch+json"


async def test_disabled_content_type_is_not_sent(dispatcher: aio_exchange.Dispatcher, backend: Backend) -> None:
    request = aio_exchange.RestRequest(
        url=backend.url("/echo"),
        method=aio_exchange.Method.POST,
        body="raw",
        disabled_headers=frozenset({"content-type"}),
    )

    response = await dispatcher.execute(request)

    assert "content-type" not in response_headers(response)
    assert json.loads(response.body)["body"] == "raw"


async def test_no_body_when_body_type_is_none(dispatcher: aio_exchange.Dispatcher, backend: Backend) -> None:
    request = aio_exchange.RestRequest(
        url=backend.url("/echo"),
        method=aio_exchange.Method.POST,
        body="ignored",
        body_type=aio_exchange.BodyType.NONE,
    )

    response = await dispatcher.execute(request)

    assert json.loads(response.body)["body"] == ""
    assert response.sent_request is not None
    assert response.sent_request.body is None


async def test_custom_content_type_without_body(dispatcher: aio_exchange.Dispatcher, backend: Backend) -> None:
    request = aio_exchange.RestRequest(
        url=backend.url("/echo"),
        headers={"Content-Type": "application/vnd.custom+json"},
        body_type=aio_exchange.BodyType.NONE,
    )

    response = await dispatcher.execute(request)

    assert response_headers(response)["content-type"] == "application/vnd.custom+json"
    assert response.sent_request is not None
    assert response.sent_request.headers["Content-Type"] == "application/vnd.custom+json"
    assert response.sent_request.body is None


async def test_form_data_with_files(dispatcher: aio_exchange.Dispatcher, backend: Backend, tmp_path: Path) -> None:
    report = tmp_path / "report.csv"
    report.write_text("a,b\n1,2\n")
    blob = tmp_path / "blob"
    blob.write_text("raw")

    request = aio_exchange.RestRequest(
        url=backend.url("/form"),
        method=aio_exchange.Method.POST,
        body_type=aio_exchange.BodyType.FORM_DATA,
        form_data_fields=[
            aio_exchange.FormDataField(key="name", value="value"),
            aio_exchange.FormDataField(key="off", value="x", enabled=False),
            aio_exchange.FormDataField(key="", value="no key"),
        ],
        form_data_files=[
            aio_exchange.FormDataFile(key="report", file_path=str(report)),
            aio_exchange.FormDataFile(key="blob", file_path=str(blob)),
            aio_exchange.FormDataFile(key="typed", file_path=str(blob), content_type="image/png"),
            aio_exchange.FormDataFile(key="skipped", file_path=str(blob), enabled=False),
        ],
    )

    response = await dispatcher.execute(request)

    assert response.status == 200
    received = json.loads(response.body)
    assert received["fields"] == {"name": "value"}
    assert received["files"]["report"] == {
        "filename": "report.csv",
        "content_type": "text/csv",
        "content": "a,b\n1,2\n",
    }
    assert received["files"]["blob"]["content_type"] == "application/octet-stream"
    assert received["files"]["typed"]["content_type"] == "image/png"
    assert "skipped" not in received["files"]
    assert response.sent_request is not None
    assert response.sent_request.headers["Content-Type"].startswith("multipart/form-data")
    assert "name=value" in (response.sent_request.body or "")


async def test_form_data_without_enabled_parts_has_no_body(
    dispatcher: aio_exchange.Dispatcher, backend: Backend
) -> None:
    request = aio_exchange.RestRequest(
        url=backend.url("/echo"),
        method=aio_exchange.Method.POST,
        body_type=aio_exchange.BodyType.FORM_DATA,
        form_data_fields=[aio_exchange.FormDataField(key="off", value="x", enabled=False)],
    )

    response = await dispatcher.execute(request)

    assert json.loads(response.body)["body"] == ""


async def test_missing_form_data_file_is_reported(
    dispatcher: aio_exchange.Dispatcher, backend: Backend, tmp_path: Path
) -> None:
    request = aio_exchange.RestRequest(
        url=backend.url("/form"),
        method=aio_exchange.Method.POST,
        body_type=aio_exchange.BodyType.FORM_DATA,
        form_data_files=[aio_exchange.FormDataFile(key="file", file_path=str(tmp_path / "missing.txt"))],
    )

    response = await dispatcher.execute(request)

    assert response.status == aio_exchange.TRANSPORT_ERROR_STATUS
    assert response.status_text.startswith("Error: ")
    assert "FileNotFoundError" in response.body


async def test_error_status_is_not_a_transport_error(dispatcher: aio_exchange.Dispatcher, backend: Backend) -> None:
    response = await dispatcher.execute(
        aio_exchange.RestRequest(url=backend.url("/status/404"), method=aio_exchange.Method.DELETE)
    )

    assert response.status == 404
    assert response.status_text == "Not Found"
    assert response.body == "status body"
    assert not response.is_transport_error()
    assert not response.is_successful()


async def test_connection_failure(dispatcher: aio_exchange.Dispatcher, unused_port: Callable[[], int]) -> None:
    url = f"http://127.0.0.1:{unused_port()}/"
    response = await dispatcher.execute(aio_exchange.RestRequest(url=url))

    assert response.status == 0
    assert response.status_text.startswith("Error: ")
    assert "ClientConnectorError" in response.body
    assert response.sent_request is not None
    assert response.sent_request.url == url


async def test_request_timeout(client_session: aiohttp.ClientSession, backend: Backend) -> None:
    executor = aio_exchange.RestExecutor(client_session, request_timeout=0.2)

    response = await executor.execute(aio_exchange.RestRequest(url=backend.url("/slow?delay=1")))

    assert response.status == 0
    assert response.status_text.startswith("Error: ")
    assert "TimeoutError" in response.body
    assert 100 <= response.elapsed < 1000


async def test_relative_url_is_reported(dispatcher: aio_exchange.Dispatcher) -> None:
    response = await dispatcher.execute(aio_exchange.RestRequest(url="/no/host"))

    assert response.status == 0
    assert response.status_text.startswith("Error: ")


async def test_non_positive_timeout_is_rejected(client_session: aiohttp.ClientSession) -> None:
    with pytest.raises(ValueError):
        aio_exchange.RestExecutor(client_session, request_timeout=0)
