"""Ephemeral per-paragraph view state, kept in a side table keyed by paragraph id."""

from __future__ import annotations

from collections.abc import Iterable
from enum import StrEnum

from pydantic import BaseModel

from folio.config import ViewMode


class ExecutionState(StrEnum):
    IDLE = "idle"
    QUEUED = "queued"
    RUNNING = "running"


class ParagraphViewState(BaseModel):
    execution: ExecutionState = ExecutionState.IDLE
    is_selected: bool = False
    is_hovered: bool = False
    is_input_hidden: bool = False
    is_output_hidden: bool = False

    @property
    def is_running(self) -> bool:
        return self.execution == ExecutionState.RUNNING

    @property
    def is_queued(self) -> bool:
        return self.execution == ExecutionState.QUEUED


def visibility_for(mode: ViewMode) -> tuple[bool, bool]:
    """Return (input_hidden, output_hidden) for a view mode."""
    if mode == ViewMode.INPUT_ONLY:
        return False, True
    if mode == ViewMode.OUTPUT_ONLY:
        return True, False
    return False, False


class ViewStateTable:
    """View state for every paragraph of the open notebook.

    Entries are addressed by paragraph id so inserting or deleting paragraphs
    never shifts state onto a neighbour. The table must be resynced with the
    canonical id list after every reparse.
    """

    def __init__(self, mode: ViewMode = ViewMode.BOTH) -> None:
        self.mode = mode
        self._states: dict[str, ParagraphViewState] = {}

    def __contains__(self, paragraph_id: object) -> bool:
        return paragraph_id in self._states

    def __len__(self) -> int:
        return len(self._states)

    def get(self, paragraph_id: str) -> ParagraphViewState | None:
        return self._states.get(paragraph_id)

    def ids(self) -> list[str]:
        return list(self._states)

    def _fresh(self) -> ParagraphViewState:
        input_hidden, output_hidden = visibility_for(self.mode)
        return ParagraphViewState(is_input_hidden=input_hidden, is_output_hidden=output_hidden)

    # --- structural changes ---

    def reset(self, ids: Iterable[str]) -> None:
        """Discard all state and start every paragraph fresh."""
        self._states = {pid: self._fresh() for pid in ids}

    def sync(self, ids: Iterable[str]) -> None:
        """Keep state for surviving ids, add fresh entries for new ones, drop the rest."""
        self._states = {pid: self._states.get(pid) or self._fresh() for pid in ids}

    def settle(self, ids: Iterable[str]) -> None:
        """Return paragraphs to idle and restore the view mode's visibility."""
        input_hidden, output_hidden = visibility_for(self.mode)
        for pid in ids:
            state = self._states.get(pid)
            if state is None:
                continue
            state.execution = ExecutionState.IDLE
            state.is_input_hidden = input_hidden
            state.is_output_hidden = output_hidden

    # --- execution ---

    def queue_all(self) -> None:
        for state in self._states.values():
            state.execution = ExecutionState.QUEUED
            state.is_output_hidden = True

    def mark_running(self, paragraph_id: str) -> bool:
        state = self._states.get(paragraph_id)
        if state is None:
            return False
        state.execution = ExecutionState.RUNNING
        state.is_output_hidden = True
        return True

    def mark_all_running(self) -> None:
        for state in self._states.values():
            state.execution = ExecutionState.RUNNING
            state.is_output_hidden = True

    # --- selection and hover ---

    def select(self, paragraph_id: str) -> None:
        """Select one paragraph and deselect every other one."""
        for pid, state in self._states.items():
            state.is_selected = pid == paragraph_id

    def selected_id(self) -> str | None:
        for pid, state in self._states.items():
            if state.is_selected:
                return pid
        return None

    def reset_hover(self) -> None:
        for state in self._states.values():
            state.is_hovered = False

    def hover(self, paragraph_id: str) -> None:
        self.reset_hover()
        state = self._states.get(paragraph_id)
        if state is not None and not state.is_selected:
            state.is_hovered = True

    # --- visibility ---

    def apply_view_mode(self, mode: ViewMode) -> None:
        """Set input/output visibility of every paragraph from a global mode."""
        self.mode = mode
        input_hidden, output_hidden = visibility_for(mode)
        for state in self._states.values():
            state.is_input_hidden = input_hidden
            state.is_output_hidden = output_hidden
