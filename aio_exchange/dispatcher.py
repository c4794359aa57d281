import collections.abc
import logging

from .assembler import ResponseAssembler, unsupported_request_response
from .executor import RequestExecutor
from .metrics import capture_metrics
from .models import Request, Response
from .utils import perf_counter, perf_counter_elapsed

logger = logging.getLogger(__package__)


class Dispatcher:
    """Routes a request to the first executor which can handle it.

    Executors are expected to be mutually exclusive, the order only matters
    for the fail-fast lookup. A response is always returned.
    """

    __slots__ = ("__executors",)

    def __init__(self, executors: collections.abc.Iterable[RequestExecutor]) -> None:
        self.__executors = tuple(executors)

    @property
    def executors(self) -> tuple[RequestExecutor, ...]:
        return self.__executors

    def executor_for(self, request: Request) -> RequestExecutor | None:
        for executor in self.__executors:
            if executor.can_handle(request):
                return executor
        return None

    async def execute(self, request: Request) -> Response:
        started_at = perf_counter()
        executor = self.executor_for(request)
        if executor is None:
            logger.warning(
                "No executor can handle %r",
                request,
                extra={"request_url": request.url, "request_type": type(request).__name__},
            )
            response = unsupported_request_response(request, self.__executors)
        else:
            try:
                response = await executor.execute(request)
            except Exception as e:
                logger.warning(
                    "Executor %r has failed on %r",
                    executor,
                    request,
                    exc_info=True,
                    extra={"request_url": request.url, "request_type": type(request).__name__},
                )
                assembler = ResponseAssembler()
                assembler.set_exception(e)
                response = assembler.build()

        capture_metrics(request=request, status=response.status, elapsed=perf_counter_elapsed(started_at))
        return response

    def __repr__(self) -> str:
        return f"<Dispatcher {list(self.__executors)!r}>"
