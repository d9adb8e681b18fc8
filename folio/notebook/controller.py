"""Notebook session controller: paragraph mutations and execution against a paragraph store.

Every operation follows the same sequence: validate against the in-memory
session, call the store, fold the store's answer into the raw paragraph list,
then reparse the whole list. Store failures are caught here, logged and
returned as diagnostics; they never propagate to the caller.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Callable, Iterable
from typing import Any

from pydantic import BaseModel, Field

from folio.config import FolioConfig, ViewMode
from folio.core import Diag, Result
from folio.notebook.paragraph import InputType, NormalizedParagraph, NotebookRecord, SavedVisualization
from folio.notebook.parser import ParagraphParser, get_parser
from folio.notebook.view_state import ExecutionState, ParagraphViewState, ViewStateTable
from folio.store.base import ParagraphStore, StoreRequestError
from folio.viz.payload import VisualizationPayloadBuilder

logger = logging.getLogger("folio.controller")

SELECT_PARAGRAPH_NOTICE = "Please select a paragraph"


class ParagraphView(BaseModel):
    paragraph: NormalizedParagraph
    state: ParagraphViewState


class NotebookSnapshot(BaseModel):
    """Read-only view of the session handed to the presentation layer."""

    notebook_id: str | None = None
    path: str | None = None
    date_created: str | None = None
    date_modified: str | None = None
    view_mode: ViewMode = ViewMode.BOTH
    paragraphs: list[ParagraphView] = Field(default_factory=list)
    diagnostics: list[Diag] = Field(default_factory=list)


Listener = Callable[[NotebookSnapshot], None]
Notifier = Callable[[str], None]


def _log_notice(message: str) -> None:
    logger.warning("User notice: %s", message)


class NotebookSession:
    """All mutable state of the open notebook."""

    def __init__(self, view_mode: ViewMode) -> None:
        self.notebook: NotebookRecord | None = None
        self.raw_paragraphs: list[Any] = []
        self.paragraphs: list[NormalizedParagraph] = []
        self.view = ViewStateTable(view_mode)
        self.drafts: dict[str, str] = {}
        self.diagnostics: list[Diag] = []


class NotebookController:
    def __init__(
        self,
        store: ParagraphStore,
        parser: ParagraphParser,
        builder: VisualizationPayloadBuilder | None = None,
        *,
        view_mode: ViewMode = ViewMode.BOTH,
        run_all_concurrency: int | None = None,
        notifier: Notifier | None = None,
    ) -> None:
        self._store = store
        self._parser = parser
        self._builder = builder or VisualizationPayloadBuilder(parser.visualization_marker)
        self._session = NotebookSession(view_mode)
        self._run_all_concurrency = run_all_concurrency
        self._notify = notifier or _log_notice
        self._listeners: list[Listener] = []

    @classmethod
    def from_config(
        cls, config: FolioConfig, store: ParagraphStore, notifier: Notifier | None = None
    ) -> NotebookController:
        return cls(
            store,
            get_parser(config.backend.format),
            view_mode=config.settings.view_mode,
            run_all_concurrency=config.settings.run_all_concurrency,
            notifier=notifier,
        )

    # ------------------------------------------------------------------ #
    # Observation
    # ------------------------------------------------------------------ #

    @property
    def notebook_id(self) -> str | None:
        nb = self._session.notebook
        return nb.id if nb else None

    @property
    def paragraphs(self) -> list[NormalizedParagraph]:
        return list(self._session.paragraphs)

    def get_paragraph(self, paragraph_id: str) -> NormalizedParagraph | None:
        for paragraph in self._session.paragraphs:
            if paragraph.id == paragraph_id:
                return paragraph
        return None

    def get_view_state(self, paragraph_id: str) -> ParagraphViewState | None:
        state = self._session.view.get(paragraph_id)
        return state.model_copy() if state else None

    def snapshot(self) -> NotebookSnapshot:
        session = self._session
        views = []
        for paragraph in session.paragraphs:
            state = session.view.get(paragraph.id) or ParagraphViewState()
            views.append(ParagraphView(paragraph=paragraph.model_copy(deep=True), state=state.model_copy()))
        nb = session.notebook
        return NotebookSnapshot(
            notebook_id=nb.id if nb else None,
            path=nb.path if nb else None,
            date_created=nb.date_created if nb else None,
            date_modified=nb.date_modified if nb else None,
            view_mode=session.view.mode,
            paragraphs=views,
            diagnostics=list(session.diagnostics),
        )

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Call ``listener`` with a fresh snapshot after every state change."""
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def _publish(self) -> None:
        if not self._listeners:
            return
        snapshot = self.snapshot()
        for listener in list(self._listeners):
            listener(snapshot)

    def _finish(self, result: Result[Any]) -> None:
        self._session.diagnostics = list(result.diagnostics)
        self._publish()

    # ------------------------------------------------------------------ #
    # Internal helpers
    # ------------------------------------------------------------------ #

    def _require_notebook(self, result: Result[Any]) -> NotebookRecord | None:
        if self._session.notebook is None:
            result.error("NO_NOTEBOOK", "No notebook is loaded")
        return self._session.notebook

    def _require_paragraph(self, result: Result[Any], paragraph_id: str) -> NormalizedParagraph | None:
        paragraph = self.get_paragraph(paragraph_id)
        if paragraph is None:
            result.error("NOT_FOUND", f"Paragraph {paragraph_id} not found")
        return paragraph

    def _store_failed(self, result: Result[Any], action: str, error: StoreRequestError) -> None:
        logger.warning("%s failed: %s", action, error)
        result.error("STORE_ERROR", f"{action} failed: {error.message}")
        self._finish(result)

    def _reparse(self, *, settled: Iterable[str] = (), reset: bool = False) -> Result[list[NormalizedParagraph]]:
        """Rebuild canonical paragraphs from the raw list and resync view state."""
        session = self._session
        parsed = self._parser.parse(session.raw_paragraphs)
        paragraphs = parsed.data or []
        ids = [p.id for p in paragraphs]

        if reset:
            session.view.reset(ids)
        else:
            session.view.sync(ids)
            session.view.settle(settled)

        session.drafts = {pid: text for pid, text in session.drafts.items() if pid in session.view}
        session.paragraphs = [self._with_draft(p) for p in paragraphs]
        return parsed

    def _with_draft(self, paragraph: NormalizedParagraph) -> NormalizedParagraph:
        text = self._session.drafts.get(paragraph.id)
        if text is None:
            return paragraph
        update: dict[str, Any] = {"input_text": text}
        if paragraph.is_visualization:
            update["visualization"] = json.loads(text) if text else {}
        return paragraph.model_copy(update=update)

    def _raw_index(self, paragraph_id: str) -> int:
        # Raw and canonical indices differ when malformed records are skipped
        for i, raw in enumerate(self._session.raw_paragraphs):
            if isinstance(raw, dict) and raw.get("id") == paragraph_id:
                return i
        raise LookupError(paragraph_id)

    def _replace_raw(self, paragraph_id: str, raw: dict[str, Any]) -> bool:
        """Swap in a store response by id, against the list as it is now."""
        for i, existing in enumerate(self._session.raw_paragraphs):
            if isinstance(existing, dict) and existing.get("id") == paragraph_id:
                self._session.raw_paragraphs[i] = raw
                return True
        logger.warning("Paragraph %s is no longer in the notebook; dropping store response", paragraph_id)
        return False

    def _outgoing(self, paragraph: NormalizedParagraph, content: str | None) -> str:
        return content if content is not None else self._parser.encode_input(paragraph)

    async def _update(self, paragraph_id: str, content: str | None, *, run: bool) -> Result[NormalizedParagraph]:
        result: Result[NormalizedParagraph] = Result()
        notebook = self._require_notebook(result)
        paragraph = self._require_paragraph(result, paragraph_id) if notebook else None
        if notebook is None or paragraph is None:
            self._finish(result)
            return result

        action = "Run paragraph" if run else "Save paragraph"
        outgoing = self._outgoing(paragraph, content)
        if run:
            self._session.view.mark_running(paragraph_id)
            self._publish()

        try:
            if run:
                raw = await self._store.update_and_run(notebook.id, paragraph_id, outgoing)
            else:
                raw = await self._store.update_only(notebook.id, paragraph_id, outgoing)
        except StoreRequestError as e:
            self._store_failed(result, action, e)
            return result

        if self._replace_raw(paragraph_id, raw):
            self._session.drafts.pop(paragraph_id, None)
        parsed = self._reparse(settled=[paragraph_id])
        result.extend(parsed.diagnostics)
        result.data = self.get_paragraph(paragraph_id)
        logger.info("%s %s", action, paragraph_id)
        self._finish(result)
        return result

    # ------------------------------------------------------------------ #
    # Store-backed operations
    # ------------------------------------------------------------------ #

    async def load(self, notebook_id: str) -> Result[list[NormalizedParagraph]]:
        """Fetch a notebook and replace the whole session with it."""
        result: Result[list[NormalizedParagraph]] = Result()
        self._session.view.queue_all()
        self._publish()

        try:
            record = await self._store.fetch_notebook(notebook_id)
        except StoreRequestError as e:
            self._store_failed(result, "Fetch notebook", e)
            return result

        session = self._session
        session.notebook = record.model_copy(update={"paragraphs": []})
        session.raw_paragraphs = list(record.paragraphs)
        session.drafts = {}
        parsed = self._reparse(reset=True)
        session.view.apply_view_mode(session.view.mode)

        result.extend(parsed.diagnostics)
        result.data = self.paragraphs
        logger.info("Loaded notebook %s (%d paragraphs)", notebook_id, len(session.paragraphs))
        self._finish(result)
        return result

    async def add_paragraph(
        self, index: int, content: str = "", input_type: InputType = InputType.CODE
    ) -> Result[NormalizedParagraph]:
        result: Result[NormalizedParagraph] = Result()
        notebook = self._require_notebook(result)
        if notebook is None:
            self._finish(result)
            return result

        try:
            raw = await self._store.create_paragraph(notebook.id, index, content, input_type)
        except StoreRequestError as e:
            self._store_failed(result, "Add paragraph", e)
            return result

        raw_paragraphs = self._session.raw_paragraphs
        raw_paragraphs.insert(max(0, min(index, len(raw_paragraphs))), raw)
        parsed = self._reparse()
        result.extend(parsed.diagnostics)
        new_id = raw.get("id") if isinstance(raw, dict) else None
        result.data = self.get_paragraph(new_id) if isinstance(new_id, str) else None
        logger.info("Added %s paragraph %s at %d", input_type.value, new_id, index)
        self._finish(result)
        return result

    async def delete_paragraph(self, paragraph_id: str) -> Result[list[NormalizedParagraph]]:
        result: Result[list[NormalizedParagraph]] = Result()
        notebook = self._require_notebook(result)
        if notebook is None or self._require_paragraph(result, paragraph_id) is None:
            self._finish(result)
            return result

        try:
            remaining = await self._store.delete_paragraph(notebook.id, paragraph_id)
        except StoreRequestError as e:
            self._store_failed(result, "Delete paragraph", e)
            return result

        self._session.raw_paragraphs = list(remaining)
        parsed = self._reparse()
        result.extend(parsed.diagnostics)
        result.data = self.paragraphs
        logger.info("Deleted paragraph %s", paragraph_id)
        self._finish(result)
        return result

    async def save_paragraph(self, paragraph_id: str, content: str | None = None) -> Result[NormalizedParagraph]:
        """Persist a paragraph's input without running it.

        ``content`` is sent verbatim; when omitted the paragraph's current
        input (including unsaved edits) is encoded for the backend.
        """
        return await self._update(paragraph_id, content, run=False)

    async def run_paragraph(self, paragraph_id: str, content: str | None = None) -> Result[NormalizedParagraph]:
        """Persist and execute a paragraph.

        The paragraph is marked running before the request. If the request
        fails it stays running until the next successful load.
        """
        return await self._update(paragraph_id, content, run=True)

    async def run_all(self) -> Result[list[NormalizedParagraph]]:
        """Run every paragraph as an independent task.

        Requests are issued concurrently (bounded by ``run_all_concurrency``
        when set) and each applies its own result when it resolves. No order
        between paragraphs is guaranteed.
        """
        result: Result[list[NormalizedParagraph]] = Result()
        if self._require_notebook(result) is None:
            self._finish(result)
            return result

        paragraph_ids = [p.id for p in self._session.paragraphs]
        semaphore = asyncio.Semaphore(self._run_all_concurrency) if self._run_all_concurrency else None

        async def _run(paragraph_id: str) -> Result[NormalizedParagraph]:
            if semaphore is None:
                return await self.run_paragraph(paragraph_id)
            state = self._session.view.get(paragraph_id)
            if state is not None:
                state.execution = ExecutionState.QUEUED
            async with semaphore:
                return await self.run_paragraph(paragraph_id)

        outcomes = await asyncio.gather(*(_run(pid) for pid in paragraph_ids))
        result.data = [o.data for o in outcomes if o.data is not None]
        for outcome in outcomes:
            result.extend(outcome.diagnostics)
        logger.info("Ran %d paragraphs (%d succeeded)", len(paragraph_ids), len(result.data))
        self._finish(result)
        return result

    async def clone_paragraph(self, paragraph_id: str) -> Result[NormalizedParagraph]:
        """Insert a copy of a paragraph directly after it."""
        result: Result[NormalizedParagraph] = Result()
        if self._require_notebook(result) is None:
            self._finish(result)
            return result
        source = self._require_paragraph(result, paragraph_id)
        if source is None:
            self._finish(result)
            return result

        return await self.add_paragraph(
            self._raw_index(source.id) + 1, self._parser.encode_input(source), source.input_type
        )

    async def clear_all_outputs(self) -> Result[list[NormalizedParagraph]]:
        result: Result[list[NormalizedParagraph]] = Result()
        notebook = self._require_notebook(result)
        if notebook is None:
            self._finish(result)
            return result

        self._session.view.mark_all_running()
        self._publish()
        try:
            raw_paragraphs = await self._store.clear_all_outputs(notebook.id)
        except StoreRequestError as e:
            self._store_failed(result, "Clear outputs", e)
            return result

        self._session.raw_paragraphs = list(raw_paragraphs)
        parsed = self._reparse()
        self._session.view.settle(self._session.view.ids())
        result.extend(parsed.diagnostics)
        result.data = self.paragraphs
        self._finish(result)
        return result

    async def save_selected(self) -> Result[NormalizedParagraph]:
        """Save the selected paragraph. A selection is required."""
        selected = self._session.view.selected_id()
        if selected is None:
            result: Result[NormalizedParagraph] = Result()
            self._notify(SELECT_PARAGRAPH_NOTICE)
            result.error("SELECTION_REQUIRED", SELECT_PARAGRAPH_NOTICE)
            self._finish(result)
            return result
        return await self.save_paragraph(selected)

    async def list_saved_visualizations(self) -> Result[list[SavedVisualization]]:
        result: Result[list[SavedVisualization]] = Result()
        try:
            result.data = await self._store.list_saved_visualizations()
        except StoreRequestError as e:
            logger.warning("Fetching visualizations failed: %s", e)
            result.error("STORE_ERROR", f"Fetching visualizations failed: {e.message}")
        return result

    async def add_visualization(self, index: int, reference_key: str) -> Result[NormalizedParagraph]:
        """Embed a saved visualization as a new paragraph at ``index``."""
        payload = self._builder.build(reference_key)
        return await self.add_paragraph(index, self._builder.serialize(payload), InputType.VISUALIZATION)

    # ------------------------------------------------------------------ #
    # Local state
    # ------------------------------------------------------------------ #

    def select(self, paragraph_id: str) -> None:
        self._session.view.select(paragraph_id)
        self._publish()

    def hover(self, paragraph_id: str) -> None:
        self._session.view.hover(paragraph_id)
        self._publish()

    def reset_hover(self) -> None:
        self._session.view.reset_hover()
        self._publish()

    def set_view_mode(self, mode: ViewMode) -> None:
        self._session.view.apply_view_mode(mode)
        self._publish()

    def edit_input(self, paragraph_id: str, text: str) -> Result[NormalizedParagraph]:
        """Record an unsaved edit of a paragraph's input."""
        result: Result[NormalizedParagraph] = Result()
        paragraph = self._require_paragraph(result, paragraph_id)
        if paragraph is None:
            return result
        if paragraph.is_visualization:
            try:
                payload = json.loads(text) if text else {}
            except ValueError as e:
                result.error("INVALID_VISUALIZATION", f"Visualization content is not valid JSON: {e}")
                return result
            if not isinstance(payload, dict):
                result.error("INVALID_VISUALIZATION", "Visualization content must be a JSON object")
                return result
        return self._store_draft(result, paragraph, text)

    def edit_visualization(self, paragraph_id: str, content: str | dict[str, Any]) -> Result[NormalizedParagraph]:
        """Merge edits into a visualization paragraph's panel descriptor."""
        result: Result[NormalizedParagraph] = Result()
        paragraph = self._require_paragraph(result, paragraph_id)
        if paragraph is None:
            return result
        if not paragraph.is_visualization:
            result.error("NOT_VISUALIZATION", f"Paragraph {paragraph_id} is not a visualization")
            return result
        try:
            encoded = self._builder.edit(paragraph.visualization, content)
        except ValueError as e:
            result.error("INVALID_VISUALIZATION", str(e))
            return result
        return self._store_draft(result, paragraph, encoded.removeprefix(self._builder.marker))

    def _store_draft(
        self, result: Result[NormalizedParagraph], paragraph: NormalizedParagraph, text: str
    ) -> Result[NormalizedParagraph]:
        self._session.drafts[paragraph.id] = text
        updated = self._with_draft(paragraph)
        paragraphs = self._session.paragraphs
        paragraphs[paragraphs.index(paragraph)] = updated
        result.data = updated
        self._publish()
        return result
