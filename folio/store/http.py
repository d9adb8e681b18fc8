"""Paragraph store backed by a remote notebooks HTTP API."""

from __future__ import annotations

import logging
from typing import Any

import httpx

from folio.config import BackendConfig
from folio.notebook.paragraph import InputType, NotebookRecord, SavedVisualization
from folio.store.base import StoreRequestError

logger = logging.getLogger("folio.store")


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text or response.reason_phrase
    if isinstance(body, dict) and body.get("message"):
        return str(body["message"])
    return response.reason_phrase


class HttpParagraphStore:
    """Talks to the notebooks API under ``api_prefix``.

    Requests carry no timeout and are never retried: a slow backend leaves the
    calling operation pending until it answers.
    """

    def __init__(
        self,
        base_url: str,
        api_prefix: str = "/api/notebooks",
        headers: dict[str, str] | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._prefix = api_prefix.rstrip("/")
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(base_url=base_url, headers=headers or {}, timeout=None)

    @classmethod
    def from_config(cls, backend: BackendConfig) -> HttpParagraphStore:
        return cls(backend.base_url, backend.api_prefix, backend.headers)

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> HttpParagraphStore:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def _request(self, operation: str, method: str, path: str, body: dict[str, Any] | None = None) -> Any:
        url = f"{self._prefix}{path}"
        logger.debug("%s %s", method, url)
        try:
            response = await self._client.request(method, url, json=body)
            response.raise_for_status()
            return response.json()
        except httpx.HTTPStatusError as e:
            raise StoreRequestError(operation, _error_message(e.response), e.response.status_code) from e
        except httpx.HTTPError as e:
            raise StoreRequestError(operation, str(e) or type(e).__name__) from e
        except ValueError as e:
            raise StoreRequestError(operation, f"invalid JSON response: {e}") from e

    @staticmethod
    def _expect_paragraph(operation: str, data: Any) -> dict[str, Any]:
        if not isinstance(data, dict):
            raise StoreRequestError(operation, "expected a paragraph object")
        return data

    @staticmethod
    def _expect_paragraphs(operation: str, data: Any) -> list[dict[str, Any]]:
        paragraphs = data.get("paragraphs") if isinstance(data, dict) else None
        if not isinstance(paragraphs, list):
            raise StoreRequestError(operation, "expected a 'paragraphs' list")
        return paragraphs

    async def fetch_notebook(self, notebook_id: str) -> NotebookRecord:
        data = await self._request("fetch_notebook", "GET", f"/note/{notebook_id}")
        paragraphs = self._expect_paragraphs("fetch_notebook", data)
        return NotebookRecord(
            id=notebook_id,
            path=data.get("path") or "Untitled",
            date_created=data.get("dateCreated"),
            date_modified=data.get("dateModified"),
            paragraphs=paragraphs,
        )

    async def create_paragraph(
        self, notebook_id: str, index: int, content: str, input_type: InputType
    ) -> dict[str, Any]:
        body = {
            "noteId": notebook_id,
            "paragraphIndex": index,
            "paragraphInput": content,
            "inputType": input_type.value,
        }
        data = await self._request("create_paragraph", "POST", "/paragraph/", body)
        return self._expect_paragraph("create_paragraph", data)

    async def update_and_run(self, notebook_id: str, paragraph_id: str, content: str) -> dict[str, Any]:
        body = {"noteId": notebook_id, "paragraphId": paragraph_id, "paragraphInput": content}
        data = await self._request("update_and_run", "POST", "/paragraph/update/run/", body)
        return self._expect_paragraph("update_and_run", data)

    async def update_only(self, notebook_id: str, paragraph_id: str, content: str) -> dict[str, Any]:
        body = {"noteId": notebook_id, "paragraphId": paragraph_id, "paragraphInput": content}
        data = await self._request("update_only", "PUT", "/paragraph/", body)
        return self._expect_paragraph("update_only", data)

    async def delete_paragraph(self, notebook_id: str, paragraph_id: str) -> list[dict[str, Any]]:
        data = await self._request("delete_paragraph", "DELETE", f"/paragraph/{notebook_id}/{paragraph_id}")
        return self._expect_paragraphs("delete_paragraph", data)

    async def clear_all_outputs(self, notebook_id: str) -> list[dict[str, Any]]:
        data = await self._request("clear_all_outputs", "PUT", "/paragraph/clearall/", {"noteId": notebook_id})
        return self._expect_paragraphs("clear_all_outputs", data)

    async def list_saved_visualizations(self) -> list[SavedVisualization]:
        data = await self._request("list_saved_visualizations", "GET", "/visualizations")
        entries = data.get("savedVisualizations") if isinstance(data, dict) else None
        if not isinstance(entries, list):
            raise StoreRequestError("list_saved_visualizations", "expected a 'savedVisualizations' list")
        try:
            return [SavedVisualization.model_validate(entry) for entry in entries]
        except ValueError as e:
            raise StoreRequestError("list_saved_visualizations", str(e)) from e
