import abc

from .models import Request, Response


class RequestExecutor(abc.ABC):
    __slots__ = ()

    @abc.abstractmethod
    def can_handle(self, request: Request) -> bool: ...

    @abc.abstractmethod
    async def execute(self, request: Request) -> Response: ...

    def __repr__(self) -> str:
        return f"<{type(self).__name__}>"
