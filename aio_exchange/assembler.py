import collections.abc
import traceback

import aiohttp
import multidict

from .base import TRANSPORT_ERROR_STATUS, StreamEventType
from .models import Request, Response, SentRequest, StreamEvent
from .utils import format_timestamp, perf_counter, perf_counter_elapsed_ms, utc_now


def render_transcript(events: collections.abc.Iterable[StreamEvent]) -> str:
    return "".join(f"[{format_timestamp(e.timestamp)}] {e.event_type}: {e.data}\n" for e in events)


def describe_exception(exc: BaseException) -> str:
    message = str(exc)
    return message if message else type(exc).__name__


class ResponseAssembler:
    """Accumulates the outcome of a single execution.

    Created per call and discarded after `build()`; executors never share one.
    Streaming executors append events in receipt order and call
    `finalize_streaming()` to render the transcript, while failures go through
    `set_exception()` which keeps whatever was captured so far.
    """

    __slots__ = (
        "__body",
        "__elapsed",
        "__events",
        "__headers",
        "__sent_request",
        "__size",
        "__started_at",
        "__started_at_counter",
        "__status",
        "__status_text",
        "__streaming",
    )

    def __init__(self, *, streaming: bool = False) -> None:
        self.__streaming = streaming
        self.__started_at = utc_now()
        self.__started_at_counter = perf_counter()
        self.__elapsed: int | None = None
        self.__status = TRANSPORT_ERROR_STATUS
        self.__status_text = ""
        self.__headers = multidict.CIMultiDict[str]()
        self.__body = ""
        self.__size = 0
        self.__events: list[StreamEvent] = []
        self.__sent_request: SentRequest | None = None

    @property
    def elapsed(self) -> int:
        if self.__elapsed is not None:
            return self.__elapsed
        return perf_counter_elapsed_ms(self.__started_at_counter)

    @property
    def timing_stopped(self) -> bool:
        return self.__elapsed is not None

    @property
    def status(self) -> int:
        return self.__status

    @property
    def stream_events(self) -> tuple[StreamEvent, ...]:
        return tuple(self.__events)

    def stop_timing(self) -> None:
        if self.__elapsed is None:
            self.__elapsed = perf_counter_elapsed_ms(self.__started_at_counter)

    def set_sent_request(self, sent_request: SentRequest) -> None:
        self.__sent_request = sent_request

    def set_status(self, status: int, status_text: str) -> None:
        self.__status = status
        self.__status_text = status_text

    def set_status_text(self, status_text: str) -> None:
        self.__status_text = status_text

    def set_headers(self, headers: collections.abc.Mapping[str, str] | multidict.CIMultiDictProxy[str]) -> None:
        self.__headers.extend(headers)

    def set_body(self, body: str, size: int | None = None) -> None:
        self.__body = body
        self.__size = len(body.encode()) if size is None else size

    async def read_body(self, response: aiohttp.ClientResponse) -> None:
        content = await response.read()
        self.set_body(content.decode(response.get_encoding(), errors="replace"), len(content))

    def add_stream_event(self, data: str, event_type: str = StreamEventType.MESSAGE) -> None:
        self.__events.append(StreamEvent(timestamp=utc_now(), event_type=event_type, data=data))

    def finalize_streaming(self) -> None:
        self.set_body(render_transcript(self.__events))

    def set_exception(self, exc: BaseException) -> None:
        self.stop_timing()
        self.__status = TRANSPORT_ERROR_STATUS
        self.__status_text = f"Error: {describe_exception(exc)}"
        details = "".join(traceback.format_exception(exc))
        if self.__streaming:
            self.add_stream_event(f"{type(exc).__name__}: {describe_exception(exc)}", StreamEventType.ERROR)
            self.set_body(f"{render_transcript(self.__events)}\n{details}")
        else:
            self.set_body(details)

    def build(self) -> Response:
        return Response(
            status=self.__status,
            status_text=self.__status_text,
            headers=multidict.CIMultiDictProxy[str](multidict.CIMultiDict[str](self.__headers)),
            body=self.__body,
            size=self.__size,
            elapsed=self.elapsed,
            started_at=self.__started_at,
            is_streaming=self.__streaming,
            stream_events=tuple(self.__events),
            sent_request=self.__sent_request,
        )

    def __repr__(self) -> str:
        return f"<ResponseAssembler [{self.__status}, {len(self.__events)} events]>"


def unsupported_request_response(request: Request, handlers: collections.abc.Iterable[object] = ()) -> Response:
    assembler = ResponseAssembler()
    assembler.stop_timing()
    assembler.set_status(TRANSPORT_ERROR_STATUS, f"Error: no executor can handle {type(request).__name__}")
    registered = ", ".join(type(h).__name__ for h in handlers) or "none"
    assembler.set_body(f"Unsupported request {request!r}, registered executors: {registered}")
    return assembler.build()
