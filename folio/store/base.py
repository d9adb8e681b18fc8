"""Paragraph store contract the notebook controller depends on."""

from __future__ import annotations

from typing import Any, Protocol

from folio.notebook.paragraph import InputType, NotebookRecord, SavedVisualization


class StoreRequestError(Exception):
    """A paragraph store request failed (transport, backend or decoding error)."""

    def __init__(self, operation: str, message: str, status_code: int | None = None) -> None:
        super().__init__(f"{operation}: {message}")
        self.operation = operation
        self.message = message
        self.status_code = status_code


class ParagraphStore(Protocol):
    async def fetch_notebook(self, notebook_id: str) -> NotebookRecord: ...

    async def create_paragraph(
        self, notebook_id: str, index: int, content: str, input_type: InputType
    ) -> dict[str, Any]: ...

    async def update_and_run(self, notebook_id: str, paragraph_id: str, content: str) -> dict[str, Any]: ...

    async def update_only(self, notebook_id: str, paragraph_id: str, content: str) -> dict[str, Any]: ...

    async def delete_paragraph(self, notebook_id: str, paragraph_id: str) -> list[dict[str, Any]]: ...

    async def clear_all_outputs(self, notebook_id: str) -> list[dict[str, Any]]: ...

    async def list_saved_visualizations(self) -> list[SavedVisualization]: ...
