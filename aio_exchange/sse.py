from typing import NamedTuple

from .base import StreamEventType

EVENT_FIELD = "event:"
DATA_FIELD = "data:"
COMMENT_PREFIX = ":"


class SseEvent(NamedTuple):
    event_type: str
    data: str


class SseParser:
    """Incremental parser for text/event-stream lines.

    Lines are fed one by one without their terminator; a blank line dispatches
    the pending event when it has data and resets the event type.
    """

    __slots__ = ("__data", "__event_type")

    def __init__(self) -> None:
        self.__event_type = StreamEventType.MESSAGE
        self.__data: list[str] = []

    def feed_line(self, line: str) -> SseEvent | None:
        line = line.rstrip("\r\n")
        if not line.strip():
            event = self.__take()
            self.__event_type = StreamEventType.MESSAGE
            return event

        if line.startswith(COMMENT_PREFIX):
            return None
        if line.startswith(EVENT_FIELD):
            self.__event_type = line[len(EVENT_FIELD) :].strip() or StreamEventType.MESSAGE
        elif line.startswith(DATA_FIELD):
            self.__data.append(line[len(DATA_FIELD) :].strip())
        return None

    def flush(self) -> SseEvent | None:
        return self.__take()

    def __take(self) -> SseEvent | None:
        if not self.__data:
            return None
        event = SseEvent(self.__event_type, "\n".join(self.__data))
        self.__data = []
        return event


def parse_events(text: str) -> list[SseEvent]:
    parser = SseParser()
    events = [event for line in text.splitlines() if (event := parser.feed_line(line)) is not None]
    last = parser.flush()
    if last is not None:
        events.append(last)
    return events
