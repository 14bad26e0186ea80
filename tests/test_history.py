import pytest

from passport_sheet_studio.curves import CurveSettings
from passport_sheet_studio.history import CurveHistory


def _state(n):
    return CurveSettings(all=((0, 0), (128, n % 256), (255, 255)))


def test_capacity_evicts_oldest():
    history = CurveHistory()
    states = [_state(i) for i in range(60)]
    for state in states:
        assert history.commit(state)
    assert len(history) == 50
    assert history.index == 49
    assert history.current == states[-1]

    for _ in range(49):
        assert history.undo() is not None
    assert history.index == 0
    assert history.current == states[10]
    assert history.undo() is None
    assert history.index == 0


def test_fifty_undos_from_tip_stop_at_zero():
    history = CurveHistory()
    for i in range(60):
        history.commit(_state(i))
    for _ in range(50):
        history.undo()
    assert history.index == 0
    assert history.undo() is None
    assert history.index == 0


def test_redo_after_undo_restores_snapshot():
    history = CurveHistory(initial=CurveSettings())
    history.commit(_state(1))
    before = history.current
    assert history.undo() == CurveSettings()
    assert history.redo() == before
    assert history.redo() is None


def test_commit_dedups_identical_tip():
    history = CurveHistory(initial=CurveSettings())
    assert not history.commit(CurveSettings())
    assert len(history) == 1
    history.commit(_state(3))
    assert not history.commit(_state(3))
    assert len(history) == 2


def test_commit_from_middle_drops_redo_branch():
    history = CurveHistory(initial=_state(0))
    history.commit(_state(1))
    history.commit(_state(2))
    history.undo()
    history.undo()
    history.commit(_state(9))
    assert len(history) == 2
    assert history.current == _state(9)
    assert not history.can_redo()
    assert history.undo() == _state(0)


def test_empty_history_is_inert():
    history = CurveHistory(capacity=3)
    assert history.index == -1
    assert history.current is None
    assert history.undo() is None
    assert history.redo() is None


def test_small_capacity_keeps_index_in_range():
    history = CurveHistory(capacity=2)
    history.commit(_state(1))
    history.commit(_state(2))
    history.commit(_state(3))
    assert len(history) == 2
    assert history.index == 1
    assert history.undo() == _state(2)


def test_capacity_must_be_positive():
    with pytest.raises(ValueError):
        CurveHistory(capacity=0)
