from __future__ import annotations

import copy
from typing import List, Optional

from .curves import CurveSettings

DEFAULT_CAPACITY = 50


class CurveHistory:
    """Linear undo/redo over curve snapshots with a fixed capacity.

    ``index`` is -1 while empty. Committing from a non-tip index drops the
    redo branch; overflowing the capacity evicts the oldest snapshot.
    """

    def __init__(self, capacity: int = DEFAULT_CAPACITY, initial: Optional[CurveSettings] = None) -> None:
        if capacity < 1:
            raise ValueError("History capacity must be at least 1.")
        self.capacity = capacity
        self._entries: List[CurveSettings] = []
        self._index = -1
        if initial is not None:
            self.commit(initial)

    @property
    def index(self) -> int:
        return self._index

    @property
    def current(self) -> Optional[CurveSettings]:
        if self._index < 0:
            return None
        return self._entries[self._index]

    def __len__(self) -> int:
        return len(self._entries)

    def can_undo(self) -> bool:
        return self._index > 0

    def can_redo(self) -> bool:
        return self._index < len(self._entries) - 1

    def commit(self, state: CurveSettings) -> bool:
        if self.current == state:
            return False
        del self._entries[self._index + 1 :]
        self._entries.append(copy.deepcopy(state))
        self._index += 1
        if len(self._entries) > self.capacity:
            del self._entries[0]
            self._index -= 1
        return True

    def undo(self) -> Optional[CurveSettings]:
        if not self.can_undo():
            return None
        self._index -= 1
        return self._entries[self._index]

    def redo(self) -> Optional[CurveSettings]:
        if not self.can_redo():
            return None
        self._index += 1
        return self._entries[self._index]

    def reset(self, initial: Optional[CurveSettings] = None) -> None:
        self._entries = []
        self._index = -1
        if initial is not None:
            self.commit(initial)
