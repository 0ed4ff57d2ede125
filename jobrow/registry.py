import inspect
import logging
from typing import Any, Callable

from jobrow.core.base import DecoratedCallable


logger = logging.getLogger(__name__)

JobHandler = Callable[[dict[str, Any]], Any]


class UnknownJobError(LookupError):
    """Raised when a job names a handler that was never registered."""

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"No handler registered for job {name!r}")


def _has_handle(obj: Any) -> bool:
    return callable(getattr(obj, "handle", None))


class HandlerRegistry:
    """Maps job type identifiers to the code that processes them.

    A handler can be a function receiving the job data, a class whose
    instances expose ``handle(data)``, or an object exposing
    ``handle(data)``. Classes are instantiated without arguments for every
    job.

    Examples:

        Register a function under its own name
        >>> registry = HandlerRegistry()
        >>> @registry.job()
        ... def send_email(data: dict) -> None:
        ...     mailer.send(data["to"])

        Register a class under a custom name
        >>> @registry.job("SendEmail")
        ... class SendEmail:
        ...     def handle(self, data: dict) -> None:
        ...         mailer.send(data["to"])

        Resolve and run a handler
        >>> registry.resolve("SendEmail")({"to": "a@b.com"})
    """

    def __init__(self) -> None:
        self._handlers: dict[str, Any] = {}

    def register(self, name: str, handler: Any, replace: bool = False) -> None:
        if not name or not isinstance(name, str):
            raise ValueError("Job name must be a non-empty string")
        if not (inspect.isclass(handler) or _has_handle(handler) or callable(handler)):
            raise TypeError(
                f"Handler for {name!r} must be callable or expose handle(data)"
            )
        if inspect.isclass(handler) and not _has_handle(handler):
            raise TypeError(f"Handler class for {name!r} must define handle(data)")
        if name in self._handlers and not replace:
            raise ValueError(f"Job {name!r} is already registered")

        self._handlers[name] = handler
        logger.debug(f"Registered handler for job {name}")

    def job(
        self, name: str | None = None, replace: bool = False
    ) -> Callable[[DecoratedCallable], DecoratedCallable]:
        """Decorate a function or class to register it as a job handler.

        Args:
            name (str | None): Job type identifier. Defaults to the
                decorated object's ``__name__``.
            replace (bool): Replace an existing handler with the same name.
        """

        def decorator(handler: DecoratedCallable) -> DecoratedCallable:
            self.register(name or handler.__name__, handler, replace=replace)
            return handler

        return decorator

    def resolve(self, name: str) -> JobHandler:
        """Return a callable that runs the handler registered under ``name``.

        Raises:
            UnknownJobError: Nothing is registered under ``name``.
        """
        try:
            handler = self._handlers[name]
        except KeyError:
            raise UnknownJobError(name) from None

        if inspect.isclass(handler):
            return lambda data: handler().handle(data)
        if _has_handle(handler):
            return handler.handle
        return handler

    def names(self) -> list[str]:
        return sorted(self._handlers)

    def __contains__(self, name: object) -> bool:
        return name in self._handlers

    def __len__(self) -> int:
        return len(self._handlers)
