"""Tests for the per-paragraph view state table."""

from __future__ import annotations

import random

import pytest

from folio.config import ViewMode
from folio.notebook.view_state import ExecutionState, ViewStateTable, visibility_for


def _table(ids: list[str] | None = None, mode: ViewMode = ViewMode.BOTH) -> ViewStateTable:
    table = ViewStateTable(mode)
    table.reset(ids or ["a", "b", "c", "d"])
    return table


def _selected(table: ViewStateTable) -> list[str]:
    return [pid for pid in table.ids() if table.get(pid).is_selected]  # type: ignore[union-attr]


def test_reset_starts_idle_with_mode_visibility() -> None:
    table = _table(mode=ViewMode.OUTPUT_ONLY)
    state = table.get("a")
    assert state is not None
    assert state.execution == ExecutionState.IDLE
    assert state.is_input_hidden is True
    assert state.is_output_hidden is False


def test_queue_all_marks_every_paragraph() -> None:
    table = _table()
    table.queue_all()
    for pid in table.ids():
        state = table.get(pid)
        assert state is not None
        assert state.is_queued
        assert state.is_output_hidden


def test_mark_running_touches_only_target() -> None:
    table = _table()
    assert table.mark_running("b") is True
    assert table.get("b").is_running  # type: ignore[union-attr]
    assert table.get("b").is_output_hidden  # type: ignore[union-attr]
    assert not table.get("a").is_running  # type: ignore[union-attr]
    assert not table.get("a").is_output_hidden  # type: ignore[union-attr]


def test_mark_running_unknown_id() -> None:
    assert _table().mark_running("zzz") is False


def test_select_is_exclusive() -> None:
    table = _table()
    table.select("a")
    table.select("c")
    assert _selected(table) == ["c"]
    assert table.selected_id() == "c"


def test_select_unknown_clears_selection() -> None:
    table = _table()
    table.select("a")
    table.select("missing")
    assert _selected(table) == []
    assert table.selected_id() is None


def test_at_most_one_selected_after_any_sequence() -> None:
    rng = random.Random(1234)
    table = _table()
    candidates = [*table.ids(), "missing"]
    for _ in range(200):
        table.select(rng.choice(candidates))
        assert len(_selected(table)) <= 1


def test_hover_is_exclusive() -> None:
    table = _table()
    table.hover("a")
    table.hover("b")
    assert [pid for pid in table.ids() if table.get(pid).is_hovered] == ["b"]  # type: ignore[union-attr]


def test_hover_suppressed_for_selected() -> None:
    table = _table()
    table.hover("a")
    table.select("b")
    table.hover("b")
    assert not any(table.get(pid).is_hovered for pid in table.ids())  # type: ignore[union-attr]


def test_reset_hover() -> None:
    table = _table()
    table.hover("c")
    table.reset_hover()
    assert not any(table.get(pid).is_hovered for pid in table.ids())  # type: ignore[union-attr]


@pytest.mark.parametrize("mode", list(ViewMode))
def test_apply_view_mode_is_idempotent(mode: ViewMode) -> None:
    once = _table()
    once.mark_running("a")
    once.apply_view_mode(mode)
    twice = _table()
    twice.mark_running("a")
    twice.apply_view_mode(mode)
    twice.apply_view_mode(mode)
    for pid in once.ids():
        assert once.get(pid) == twice.get(pid)


def test_apply_view_mode_overrides_every_paragraph() -> None:
    table = _table()
    table.mark_running("a")
    table.apply_view_mode(ViewMode.INPUT_ONLY)
    for pid in table.ids():
        state = table.get(pid)
        assert state is not None
        assert (state.is_input_hidden, state.is_output_hidden) == (False, True)
    assert table.mode == ViewMode.INPUT_ONLY


def test_visibility_for_modes() -> None:
    assert visibility_for(ViewMode.BOTH) == (False, False)
    assert visibility_for(ViewMode.INPUT_ONLY) == (False, True)
    assert visibility_for(ViewMode.OUTPUT_ONLY) == (True, False)


def test_sync_keeps_state_by_identity_across_deletion() -> None:
    table = _table()
    table.select("c")
    table.mark_running("d")
    table.sync(["a", "c", "d"])  # "b" deleted, "c" moves up one position
    assert table.ids() == ["a", "c", "d"]
    assert table.selected_id() == "c"
    assert table.get("d").is_running  # type: ignore[union-attr]
    assert "b" not in table


def test_sync_adds_fresh_entry_for_insertion() -> None:
    table = _table(["a", "b"], mode=ViewMode.INPUT_ONLY)
    table.select("b")
    table.sync(["a", "new", "b"])
    fresh = table.get("new")
    assert fresh is not None
    assert fresh.is_selected is False
    assert fresh.is_output_hidden is True
    assert table.selected_id() == "b"


def test_settle_returns_to_idle_with_mode_visibility() -> None:
    table = _table()
    table.mark_running("a")
    table.settle(["a", "unknown"])
    state = table.get("a")
    assert state is not None
    assert state.execution == ExecutionState.IDLE
    assert state.is_output_hidden is False
