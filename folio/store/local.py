"""File-backed paragraph store. Saves structured-format notebooks to ~/.folio/notebooks/{id}.json."""

from __future__ import annotations

import json
import logging
import time
import uuid
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from folio.notebook.paragraph import InputType, NotebookRecord, SavedVisualization
from folio.store.base import StoreRequestError

logger = logging.getLogger("folio.store")

VISUALIZATIONS_FILE = "visualizations.json"


def generate_notebook_id() -> str:
    """Generate a notebook ID: 'nb_' + 12 hex chars from uuid4."""
    return "nb_" + uuid.uuid4().hex[:12]


def generate_paragraph_id() -> str:
    """Generate a paragraph ID: 'para_' + 8 hex chars from uuid4."""
    return "para_" + uuid.uuid4().hex[:8]


def _now() -> str:
    return datetime.now(UTC).isoformat()


def render_output(input_type: InputType, text: str) -> list[dict[str, Any]]:
    """Produce the output records of a "run". Inputs are echoed, never evaluated."""
    started = time.perf_counter()
    if input_type == InputType.VISUALIZATION:
        output_type, result = "VISUALIZATION", text
    elif input_type == InputType.MARKDOWN:
        output_type, result = "MARKDOWN", text.removeprefix("%md").lstrip()
    else:
        output_type, result = "TEXT", text
    elapsed = time.perf_counter() - started
    return [{"outputType": output_type, "result": result, "execution_time": f"{elapsed:.3f}s"}]


def _nested_input(operation: str, paragraph: dict[str, Any]) -> dict[str, Any]:
    """Rewrite a paragraph's input to ``{inputType, inputText}`` in place and return it.

    Flat ``{type, input: "text"}`` records and nested inputs without an
    ``inputType`` get the same defaults the structured parser applies.
    """
    raw_input = paragraph.get("input")
    if isinstance(raw_input, dict):
        type_value = raw_input.get("inputType", InputType.CODE)
        nested = dict(raw_input)
    else:
        type_value = paragraph.pop("type", InputType.CODE)
        nested = {"inputText": "" if raw_input is None else raw_input}
    try:
        nested["inputType"] = InputType(type_value).value
    except ValueError as e:
        message = f"Paragraph {paragraph.get('id')} has unknown input type {type_value!r}"
        raise StoreRequestError(operation, message) from e
    nested.setdefault("inputText", "")
    paragraph["input"] = nested
    return nested


class LocalParagraphStore:
    """Stores notebooks on disk in the structured paragraph format."""

    def __init__(self, notebooks_dir: Path) -> None:
        self._notebooks_dir = notebooks_dir
        self._notebooks_dir.mkdir(parents=True, exist_ok=True)

    def _path(self, notebook_id: str) -> Path:
        return self._notebooks_dir / f"{notebook_id}.json"

    def _load(self, operation: str, notebook_id: str) -> NotebookRecord:
        path = self._path(notebook_id)
        if not path.exists():
            raise StoreRequestError(operation, f"Notebook {notebook_id} not found", 404)
        try:
            return NotebookRecord.model_validate_json(path.read_text())
        except (OSError, ValueError) as e:
            raise StoreRequestError(operation, f"Failed to read notebook {notebook_id}: {e}") from e

    def _save(self, operation: str, notebook: NotebookRecord) -> None:
        """Atomic write: write to .tmp, then rename."""
        notebook.date_modified = _now()
        path = self._path(notebook.id)
        tmp_path = path.with_suffix(".json.tmp")
        try:
            tmp_path.write_text(json.dumps(notebook.model_dump(), indent=2, default=str) + "\n")
            tmp_path.rename(path)
        except OSError as e:
            tmp_path.unlink(missing_ok=True)
            raise StoreRequestError(operation, f"Failed to write notebook {notebook.id}: {e}") from e
        logger.info("Saved notebook %s (%d paragraphs)", notebook.id, len(notebook.paragraphs))

    @staticmethod
    def _find(operation: str, notebook: NotebookRecord, paragraph_id: str) -> dict[str, Any]:
        for paragraph in notebook.paragraphs:
            if paragraph.get("id") == paragraph_id:
                return paragraph
        raise StoreRequestError(operation, f"Paragraph {paragraph_id} not found", 404)

    def create_notebook(self, name: str = "Untitled") -> NotebookRecord:
        now = _now()
        notebook = NotebookRecord(id=generate_notebook_id(), path=name, date_created=now, date_modified=now)
        self._save("create_notebook", notebook)
        return notebook

    def list_notebooks(self) -> list[NotebookRecord]:
        notebooks = []
        for path in sorted(self._notebooks_dir.glob("nb_*.json")):
            try:
                notebooks.append(NotebookRecord.model_validate_json(path.read_text()))
            except ValueError:
                logger.warning("Skipping corrupt notebook: %s", path)
        return notebooks

    async def fetch_notebook(self, notebook_id: str) -> NotebookRecord:
        return self._load("fetch_notebook", notebook_id)

    async def create_paragraph(
        self, notebook_id: str, index: int, content: str, input_type: InputType
    ) -> dict[str, Any]:
        notebook = self._load("create_paragraph", notebook_id)
        now = _now()
        paragraph = {
            "id": generate_paragraph_id(),
            "dateCreated": now,
            "dateModified": now,
            "input": {"inputType": input_type.value, "inputText": content},
            "output": [],
        }
        index = max(0, min(index, len(notebook.paragraphs)))
        notebook.paragraphs.insert(index, paragraph)
        self._save("create_paragraph", notebook)
        return paragraph

    async def update_and_run(self, notebook_id: str, paragraph_id: str, content: str) -> dict[str, Any]:
        notebook = self._load("update_and_run", notebook_id)
        paragraph = self._find("update_and_run", notebook, paragraph_id)
        source = _nested_input("update_and_run", paragraph)
        source["inputText"] = content
        paragraph["output"] = render_output(InputType(source["inputType"]), content)
        paragraph["dateModified"] = _now()
        self._save("update_and_run", notebook)
        return paragraph

    async def update_only(self, notebook_id: str, paragraph_id: str, content: str) -> dict[str, Any]:
        notebook = self._load("update_only", notebook_id)
        paragraph = self._find("update_only", notebook, paragraph_id)
        _nested_input("update_only", paragraph)["inputText"] = content
        paragraph["dateModified"] = _now()
        self._save("update_only", notebook)
        return paragraph

    async def delete_paragraph(self, notebook_id: str, paragraph_id: str) -> list[dict[str, Any]]:
        notebook = self._load("delete_paragraph", notebook_id)
        paragraph = self._find("delete_paragraph", notebook, paragraph_id)
        notebook.paragraphs.remove(paragraph)
        self._save("delete_paragraph", notebook)
        return notebook.paragraphs

    async def clear_all_outputs(self, notebook_id: str) -> list[dict[str, Any]]:
        notebook = self._load("clear_all_outputs", notebook_id)
        for paragraph in notebook.paragraphs:
            paragraph["output"] = []
        self._save("clear_all_outputs", notebook)
        return notebook.paragraphs

    async def list_saved_visualizations(self) -> list[SavedVisualization]:
        """Read saved visualizations from visualizations.json, if present."""
        path = self._notebooks_dir / VISUALIZATIONS_FILE
        if not path.exists():
            return []
        try:
            entries = json.loads(path.read_text())
            return [SavedVisualization.model_validate(entry) for entry in entries]
        except (OSError, ValueError, TypeError) as e:
            raise StoreRequestError("list_saved_visualizations", f"Failed to read {path}: {e}") from e
