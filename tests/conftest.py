"""Shared test fixtures for folio tests."""

from __future__ import annotations

import asyncio
import copy
from typing import Any

import pytest

from folio.config import BackendFormat
from folio.notebook.controller import NotebookController
from folio.notebook.paragraph import InputType, NotebookRecord, SavedVisualization
from folio.notebook.parser import ParagraphParser, get_parser
from folio.store.base import StoreRequestError


def structured(
    paragraph_id: str,
    text: str = "",
    input_type: str = "CODE",
    output: list[dict[str, Any]] | None = None,
) -> dict[str, Any]:
    """Build a structured-format raw paragraph."""
    return {
        "id": paragraph_id,
        "dateCreated": "2024-01-01T00:00:00+00:00",
        "dateModified": "2024-01-01T00:00:00+00:00",
        "input": {"inputType": input_type, "inputText": text},
        "output": output or [],
    }


def legacy(paragraph_id: str, text: str = "", messages: list[dict[str, Any]] | None = None) -> dict[str, Any]:
    """Build a legacy-marker (Zeppelin-style) raw paragraph."""
    record: dict[str, Any] = {"id": paragraph_id, "text": text, "dateUpdated": "Jan 1, 2024 12:00:00 AM"}
    if messages is not None:
        record["results"] = {"code": "SUCCESS", "msg": messages}
    return record


class FakeParagraphStore:
    """In-memory structured-format store that records every call.

    ``fail`` holds operation names that raise StoreRequestError and ``fail_ids``
    paragraph ids whose update-and-run fails. ``gates`` maps paragraph ids to
    events an update-and-run waits on before answering.
    """

    def __init__(self, paragraphs: list[dict[str, Any]] | None = None, notebook_id: str = "nb_test") -> None:
        self.notebook = NotebookRecord(
            id=notebook_id,
            path="Test notebook",
            date_created="2024-01-01T00:00:00+00:00",
            date_modified="2024-01-02T00:00:00+00:00",
            paragraphs=paragraphs if paragraphs is not None else [],
        )
        self.calls: list[tuple[Any, ...]] = []
        self.fail: set[str] = set()
        self.fail_ids: set[str] = set()
        self.in_flight = 0
        self.max_in_flight = 0
        self.gates: dict[str, asyncio.Event] = {}
        self.visualizations = [SavedVisualization(label="Flights", key="viz-flights")]
        self._created = 0

    def _check(self, operation: str) -> None:
        if operation in self.fail:
            raise StoreRequestError(operation, "backend unavailable", 500)

    def _find(self, paragraph_id: str) -> dict[str, Any]:
        for paragraph in self.notebook.paragraphs:
            if paragraph["id"] == paragraph_id:
                return paragraph
        raise StoreRequestError("find", f"Paragraph {paragraph_id} not found", 404)

    async def fetch_notebook(self, notebook_id: str) -> NotebookRecord:
        self.calls.append(("fetch_notebook", notebook_id))
        self._check("fetch_notebook")
        if notebook_id != self.notebook.id:
            raise StoreRequestError("fetch_notebook", f"Notebook {notebook_id} not found", 404)
        return self.notebook.model_copy(deep=True)

    async def create_paragraph(
        self, notebook_id: str, index: int, content: str, input_type: InputType
    ) -> dict[str, Any]:
        self.calls.append(("create_paragraph", notebook_id, index, content, input_type))
        self._check("create_paragraph")
        self._created += 1
        paragraph = structured(f"para_new{self._created}", content, input_type.value)
        self.notebook.paragraphs.insert(index, paragraph)
        return copy.deepcopy(paragraph)

    async def update_and_run(self, notebook_id: str, paragraph_id: str, content: str) -> dict[str, Any]:
        self.calls.append(("update_and_run", notebook_id, paragraph_id, content))
        paragraph = self._find(paragraph_id)
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            gate = self.gates.get(paragraph_id)
            if gate is not None:
                await gate.wait()
            else:
                await asyncio.sleep(0)
        finally:
            self.in_flight -= 1
        self._check("update_and_run")
        if paragraph_id in self.fail_ids:
            raise StoreRequestError("update_and_run", f"Paragraph {paragraph_id} failed", 500)
        paragraph["input"]["inputText"] = content
        paragraph["output"] = [{"outputType": "TEXT", "result": f"ran: {content}", "execution_time": "0s"}]
        return copy.deepcopy(paragraph)

    async def update_only(self, notebook_id: str, paragraph_id: str, content: str) -> dict[str, Any]:
        self.calls.append(("update_only", notebook_id, paragraph_id, content))
        self._check("update_only")
        paragraph = self._find(paragraph_id)
        paragraph["input"]["inputText"] = content
        return copy.deepcopy(paragraph)

    async def delete_paragraph(self, notebook_id: str, paragraph_id: str) -> list[dict[str, Any]]:
        self.calls.append(("delete_paragraph", notebook_id, paragraph_id))
        self._check("delete_paragraph")
        self.notebook.paragraphs.remove(self._find(paragraph_id))
        return copy.deepcopy(self.notebook.paragraphs)

    async def clear_all_outputs(self, notebook_id: str) -> list[dict[str, Any]]:
        self.calls.append(("clear_all_outputs", notebook_id))
        self._check("clear_all_outputs")
        for paragraph in self.notebook.paragraphs:
            paragraph["output"] = []
        return copy.deepcopy(self.notebook.paragraphs)

    async def list_saved_visualizations(self) -> list[SavedVisualization]:
        self.calls.append(("list_saved_visualizations",))
        self._check("list_saved_visualizations")
        return list(self.visualizations)

    def call_names(self) -> list[str]:
        return [call[0] for call in self.calls]


def five_paragraphs() -> list[dict[str, Any]]:
    return [structured(f"p{i}", f"echo {i}", output=[{"outputType": "TEXT", "result": str(i)}]) for i in range(1, 6)]


@pytest.fixture
def store() -> FakeParagraphStore:
    return FakeParagraphStore(five_paragraphs())


@pytest.fixture
def parser() -> ParagraphParser:
    return get_parser(BackendFormat.STRUCTURED)


@pytest.fixture
def notices() -> list[str]:
    return []


@pytest.fixture
def controller(store: FakeParagraphStore, parser: ParagraphParser, notices: list[str]) -> NotebookController:
    return NotebookController(store, parser, notifier=notices.append)
