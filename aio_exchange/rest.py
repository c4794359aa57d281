import contextlib
import logging
import mimetypes
import os

import aiohttp
import multidict
import yarl

from .assembler import ResponseAssembler, unsupported_request_response
from .base import DEFAULT_REQUEST_TIMEOUT, DEFAULT_USER_AGENT, Header, MediaType
from .executor import RequestExecutor
from .models import BodyType, FormDataField, FormDataFile, Request, Response, RestRequest, SentRequest
from .transport import (
    build_http_headers,
    content_type_for,
    custom_content_type,
    enabled_query_parameters,
    headers_proxy,
    is_header_disabled,
    skip_auto_headers,
)

logger = logging.getLogger(__package__)


class RestExecutor(RequestExecutor):
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
        return isinstance(request, RestRequest)

    async def execute(self, request: Request) -> Response:
        if not isinstance(request, RestRequest):
            return unsupported_request_response(request, (self,))

        assembler = ResponseAssembler()
        try:
            with contextlib.ExitStack() as opened_files:
                query_parameters = enabled_query_parameters(request)
                url = yarl.URL(request.url)
                if query_parameters:
                    url = url.extend_query(query_parameters)

                headers = build_http_headers(request, user_agent=self.__user_agent)
                data, sent_body = _build_body(request, headers, opened_files)
                assembler.set_sent_request(
                    SentRequest(
                        url=str(url),
                        method=request.method,
                        headers=headers_proxy(headers),
                        body=sent_body,
                        query_parameters=query_parameters,
                    )
                )

                logger.debug(
                    "Sending request %s %s",
                    request.method,
                    url,
                    extra={
                        "request_method": request.method,
                        "request_url": url,
                    },
                )
                response_ctx = self.__client_session.request(
                    request.method,
                    url,
                    headers=headers,
                    data=data,
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
                "Request %s %s has failed",
                request.method,
                request.url,
                exc_info=True,
                extra={
                    "request_method": request.method,
                    "request_url": request.url,
                },
            )
            assembler.set_exception(e)

        return assembler.build()


def _build_body(
    request: RestRequest, headers: multidict.CIMultiDict[str], opened_files: contextlib.ExitStack
) -> tuple[bytes | aiohttp.MultipartWriter | None, str | None]:
    if request.body_type == BodyType.FORM_DATA:
        return _build_form_data(request, headers, opened_files)

    if request.body_type == BodyType.NONE or not request.body:
        custom = custom_content_type(request)
        if custom is not None and not is_header_disabled(request, Header.CONTENT_TYPE):
            headers[Header.CONTENT_TYPE] = custom
        return None, None

    if not is_header_disabled(request, Header.CONTENT_TYPE):
        headers[Header.CONTENT_TYPE] = (
            request.content_type or custom_content_type(request) or content_type_for(request.body_type)
        )
    return request.body.encode("utf-8"), request.body


def _build_form_data(
    request: RestRequest, headers: multidict.CIMultiDict[str], opened_files: contextlib.ExitStack
) -> tuple[aiohttp.MultipartWriter | None, str | None]:
    fields = [f for f in request.form_data_fields if f.enabled and f.key]
    files = [f for f in request.form_data_files if f.enabled and f.key]
    if not fields and not files:
        return None, None

    writer = aiohttp.MultipartWriter("form-data")
    summary = []
    for field in fields:
        _append_field(writer, field)
        summary.append(f"{field.key}={field.value}")
    for file in files:
        content_type = _append_file(writer, file, opened_files)
        summary.append(f"{file.key}=@{file.file_path} ({content_type})")

    if not is_header_disabled(request, Header.CONTENT_TYPE):
        headers[Header.CONTENT_TYPE] = writer.content_type
    return writer, "\n".join(summary)


def _append_field(writer: aiohttp.MultipartWriter, field: FormDataField) -> None:
    part = writer.append(field.value)
    part.set_content_disposition("form-data", name=field.key)


def _append_file(writer: aiohttp.MultipartWriter, file: FormDataFile, opened_files: contextlib.ExitStack) -> str:
    content_type = (
        file.content_type or mimetypes.guess_type(file.file_path)[0] or MediaType.APPLICATION_OCTET_STREAM
    )
    stream = opened_files.enter_context(open(file.file_path, "rb"))
    part = writer.append(stream, {Header.CONTENT_TYPE: content_type})
    part.set_content_disposition("form-data", name=file.key, filename=os.path.basename(file.file_path))
    return content_type
