from __future__ import annotations

import logging
from typing import Any, Callable, Generic, Optional, Protocol, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")

Done = Callable[[Optional[R], Optional[BaseException]], None]


class TimerHost(Protocol):
    """Anything with Tk-style ``after`` / ``after_cancel``."""

    def after(self, ms: int, func: Callable[[], Any]) -> Any: ...

    def after_cancel(self, id: Any) -> None: ...


def immediate(func: Callable[[T], R]) -> Callable[[T, Done], None]:
    """Adapt a plain function into a render callable that completes at once."""

    def render(request: T, done: Done) -> None:
        try:
            result = func(request)
        except Exception as exc:
            done(None, exc)
            return
        done(result, None)

    return render


class PreviewScheduler(Generic[T, R]):
    """Single-flight debounced recomputation.

    Each ``request`` cancels the pending timer and restarts the quiet window.
    When the window expires the latest request is rendered, but only one render
    runs at a time: a window that expires mid-render waits for it to finish.
    ``render`` gets a ``done(result, error)`` continuation and may complete
    later; a completion whose generation is no longer current is dropped, so
    an old render can never replace a newer preview. A failed render is
    logged and the last good result stays in place.
    """

    def __init__(
        self,
        host: TimerHost,
        render: Callable[[T, Done], None],
        apply: Callable[[R], None],
        delay_ms: int = 50,
    ) -> None:
        self.host = host
        self.render = render
        self.apply = apply
        self.delay_ms = delay_ms
        self.generation = 0
        self.latest: Optional[R] = None
        self._timer: Any = None
        self._pending: Optional[T] = None
        self._has_pending = False
        self._in_flight: Optional[int] = None

    @property
    def pending(self) -> bool:
        return self._timer is not None

    @property
    def in_flight(self) -> bool:
        return self._in_flight is not None

    def request(self, value: T) -> None:
        self.generation += 1
        self._cancel_timer()
        self._pending = value
        self._has_pending = True
        self._timer = self.host.after(self.delay_ms, self._fire)

    def flush(self) -> None:
        """Render the pending request now instead of waiting for the timer."""
        if self._timer is None:
            return
        self._cancel_timer()
        self._fire()

    def cancel(self) -> None:
        self.generation += 1
        self._cancel_timer()
        self._pending = None
        self._has_pending = False
        self._in_flight = None

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self.host.after_cancel(self._timer)
            self._timer = None

    def _fire(self) -> None:
        self._timer = None
        if not self._has_pending:
            return
        if self._in_flight is not None:
            # the running render picks this request up when it completes
            return
        value = self._pending
        self._pending = None
        self._has_pending = False
        generation = self.generation
        self._in_flight = generation

        def done(result: Optional[R], error: Optional[BaseException] = None) -> None:
            self._complete(generation, result, error)

        try:
            self.render(value, done)
        except Exception as exc:
            self._complete(generation, None, exc)

    def _complete(self, generation: int, result: Optional[R], error: Optional[BaseException]) -> None:
        if self._in_flight == generation:
            self._in_flight = None
        if generation != self.generation:
            logger.debug("Dropping stale preview (generation %s, current %s)", generation, self.generation)
        elif error is not None:
            logger.error("Preview recomputation failed; keeping previous preview", exc_info=error)
        else:
            self.latest = result
            self.apply(result)
        if self._in_flight is None and self._has_pending and self._timer is None:
            self._fire()
