from __future__ import annotations

from typing import Any, Callable, List, Optional

from . import curves
from .curves import CHANNELS, CurveSettings
from .history import DEFAULT_CAPACITY, CurveHistory
from .scheduler import TimerHost

Listener = Callable[[CurveSettings], None]


class CurveEditor:
    """The one writer of the live curve settings.

    Clicks and removals commit a history entry immediately unless
    ``add_point`` is told not to. A drag mutates the live settings on every
    move and commits once on release.
    """

    def __init__(self, settings: Optional[CurveSettings] = None, capacity: int = DEFAULT_CAPACITY) -> None:
        self._settings = settings or CurveSettings()
        self.history = CurveHistory(capacity=capacity, initial=self._settings)
        self.active_channel = "all"
        self.dragging: Optional[int] = None
        self._listeners: List[Listener] = []

    @property
    def settings(self) -> CurveSettings:
        return self._settings

    @property
    def points(self) -> curves.Curve:
        return self._settings.channel(self.active_channel)

    def subscribe(self, listener: Listener) -> None:
        self._listeners.append(listener)

    def _set_live(self, settings: CurveSettings) -> None:
        if settings == self._settings:
            return
        self._settings = settings
        for listener in list(self._listeners):
            listener(settings)

    def select_channel(self, channel: str) -> None:
        if channel not in CHANNELS:
            raise KeyError(channel)
        self.end_drag()
        self.active_channel = channel

    def add_point(self, x: float, y: float, commit: bool = True) -> int:
        """Add a point to the active channel and return its index.

        With ``commit=False`` the point is only live; a drag begun from the
        same press records it together with the move in ``end_drag``, and
        ``cancel_drag`` takes it back out.
        """
        points = curves.add_point(self.points, x, y)
        self._set_live(self._settings.with_channel(self.active_channel, points))
        if commit:
            self.history.commit(self._settings)
        target = curves.clamp_byte(x)
        return next(i for i, point in enumerate(points) if point.x == target)

    def remove_point(self, index: int) -> None:
        points = curves.remove_point(self.points, index)
        self._set_live(self._settings.with_channel(self.active_channel, points))
        self.history.commit(self._settings)

    def begin_drag(self, index: int) -> None:
        if not 0 <= index < len(self.points):
            raise IndexError(index)
        self.dragging = index

    def drag_to(self, x: float, y: float) -> None:
        if self.dragging is None:
            return
        points = curves.move_point(self.points, self.dragging, x, y)
        self._set_live(self._settings.with_channel(self.active_channel, points))

    def end_drag(self) -> None:
        if self.dragging is None:
            return
        self.dragging = None
        self.history.commit(self._settings)

    def cancel_drag(self) -> None:
        """Drop the gesture in progress and return to the last recorded state."""
        self.dragging = None
        if self.history.current is not None:
            self._set_live(self.history.current)

    def undo(self) -> bool:
        self.end_drag()
        state = self.history.undo()
        if state is None:
            return False
        self._set_live(state)
        return True

    def redo(self) -> bool:
        self.end_drag()
        state = self.history.redo()
        if state is None:
            return False
        self._set_live(state)
        return True

    def reset(self, settings: Optional[CurveSettings] = None) -> None:
        """Start over with fresh settings and an empty redo/undo trail."""
        self.dragging = None
        self.active_channel = "all"
        fresh = settings or CurveSettings()
        self.history.reset(fresh)
        self._set_live(fresh)


class CurveGestures:
    """Pointer gestures on the curve canvas, in curve coordinates.

    A press on empty space adds a point and starts dragging it; the whole
    press-drag-release is one history entry. A click that does not move is
    only recorded once the double-click window has passed, so a double-click
    on empty space leaves both the curve and the history untouched. A
    double-click on a point removes it.
    """

    def __init__(
        self,
        editor: CurveEditor,
        host: TimerHost,
        double_click_ms: int = 300,
        radius: float = 8.0,
        on_commit: Optional[Callable[[], None]] = None,
    ) -> None:
        self.editor = editor
        self.host = host
        self.double_click_ms = double_click_ms
        self.radius = radius
        self.on_commit = on_commit
        self._commit_job: Any = None
        self._added = False
        self._moved = False

    @property
    def pending_click(self) -> bool:
        return self._commit_job is not None

    def press(self, x: float, y: float) -> int:
        self.flush()
        index = curves.nearest_point(self.editor.points, x, y, radius=self.radius)
        self._added = index is None
        self._moved = False
        if index is None:
            index = self.editor.add_point(x, y, commit=False)
        self.editor.begin_drag(index)
        return index

    def drag(self, x: float, y: float) -> None:
        if self.editor.dragging is None:
            return
        before = self.editor.settings
        self.editor.drag_to(x, y)
        if self.editor.settings != before:
            self._moved = True

    def release(self) -> None:
        if self.editor.dragging is None:
            return
        if self._added and not self._moved:
            self._commit_job = self.host.after(self.double_click_ms, self.flush)
            return
        self.editor.end_drag()

    def flush(self) -> None:
        """Record a click still waiting out the double-click window."""
        self._cancel_job()
        if self.editor.dragging is None:
            return
        self.editor.end_drag()
        if self.on_commit is not None:
            self.on_commit()

    def double_click(self, x: float, y: float) -> None:
        if self._commit_job is not None:
            self._cancel_job()
            self.editor.cancel_drag()
            return
        index = curves.nearest_point(self.editor.points, x, y, radius=self.radius)
        if index is not None:
            self.editor.remove_point(index)

    def cancel(self) -> None:
        self._cancel_job()
        self.editor.cancel_drag()

    def _cancel_job(self) -> None:
        if self._commit_job is not None:
            self.host.after_cancel(self._commit_job)
            self._commit_job = None
