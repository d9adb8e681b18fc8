"""FastAPI server exposing the notebook controller to a presentation layer."""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import AsyncGenerator
from typing import Any

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from sse_starlette.sse import EventSourceResponse

from folio.config import ViewMode, load_config
from folio.core import Result
from folio.notebook.controller import NotebookController, NotebookSnapshot
from folio.notebook.paragraph import InputType
from folio.store.factory import create_store

logger = logging.getLogger("folio.server")

app = FastAPI(title="Folio", version="0.1.0")


def configure_cors(target: FastAPI, origins: list[str]) -> None:
    """Allow browser clients served from ``origins`` to call the API."""
    if not origins:
        return
    target.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )


configure_cors(app, load_config().settings.cors_origins)

_STATUS_BY_CODE = {
    "NOT_FOUND": 404,
    "NO_NOTEBOOK": 409,
    "SELECTION_REQUIRED": 409,
    "PARSE_FAILURE": 422,
    "INVALID_VISUALIZATION": 422,
    "NOT_VISUALIZATION": 422,
    "STORE_ERROR": 502,
}

_controller: NotebookController | None = None

# One bounded queue per open /api/events stream
SUBSCRIBER_BUFFER = 256
_subscribers: set[asyncio.Queue[dict[str, str]]] = set()


def _new_subscriber() -> asyncio.Queue[dict[str, str]]:
    queue: asyncio.Queue[dict[str, str]] = asyncio.Queue(maxsize=SUBSCRIBER_BUFFER)
    _subscribers.add(queue)
    return queue


def _broadcast(event: str, data: dict[str, Any]) -> None:
    payload = {"event": event, "data": json.dumps(data, default=str)}
    for queue in list(_subscribers):
        try:
            queue.put_nowait(payload)
        except asyncio.QueueFull:
            logger.warning("Event stream is not keeping up; dropping %s event", event)


def _on_snapshot(snapshot: NotebookSnapshot) -> None:
    _broadcast("snapshot", snapshot.model_dump(mode="json"))


def _on_notice(message: str) -> None:
    logger.info("Notice: %s", message)
    _broadcast("notice", {"message": message})


def get_controller() -> NotebookController:
    """Get the module-level controller, building it from the saved config on first use."""
    global _controller  # noqa: PLW0603
    if _controller is None:
        config = load_config()
        store = create_store(config.backend)
        _controller = NotebookController.from_config(config, store, notifier=_on_notice)
        _controller.subscribe(_on_snapshot)
    return _controller


def reset_controller() -> None:
    """Reset the singleton (for testing)."""
    global _controller  # noqa: PLW0603
    _controller = None


def _respond(result: Result[Any]) -> Any:
    content = result.model_dump(mode="json")
    error = result.first_error
    if error is None:
        return content
    content["error"] = error.message
    return JSONResponse(status_code=_STATUS_BY_CODE.get(error.code, 400), content=content)


@app.get("/api/health")
async def health() -> dict[str, Any]:
    controller = get_controller()
    result: dict[str, Any] = {"ok": True}
    if controller.notebook_id:
        result["notebook_id"] = controller.notebook_id
    return result


@app.get("/api/notebook")
async def get_notebook() -> dict[str, Any]:
    return get_controller().snapshot().model_dump(mode="json")


@app.get("/api/events")
async def events() -> EventSourceResponse:
    queue = _new_subscriber()
    controller = get_controller()

    async def _stream() -> AsyncGenerator[dict[str, str]]:
        try:
            yield {"event": "snapshot", "data": controller.snapshot().model_dump_json()}
            while True:
                yield await queue.get()
        finally:
            _subscribers.discard(queue)

    return EventSourceResponse(_stream())


@app.post("/api/notebooks/{notebook_id}/load")
async def load_notebook(notebook_id: str) -> Any:
    logger.info("POST /api/notebooks/%s/load", notebook_id)
    return _respond(await get_controller().load(notebook_id))


class AddParagraphRequest(BaseModel):
    index: int
    content: str = ""
    input_type: InputType = InputType.CODE


@app.post("/api/paragraphs")
async def add_paragraph(request: AddParagraphRequest) -> Any:
    logger.info("POST /api/paragraphs index=%d type=%s", request.index, request.input_type)
    return _respond(await get_controller().add_paragraph(request.index, request.content, request.input_type))


class EditParagraphRequest(BaseModel):
    text: str | None = None
    visualization: dict[str, Any] | None = None


@app.patch("/api/paragraphs/{paragraph_id}")
async def edit_paragraph(paragraph_id: str, request: EditParagraphRequest) -> Any:
    controller = get_controller()
    if request.visualization is not None:
        return _respond(controller.edit_visualization(paragraph_id, request.visualization))
    return _respond(controller.edit_input(paragraph_id, request.text or ""))


class ContentRequest(BaseModel):
    content: str | None = None


@app.put("/api/paragraphs/{paragraph_id}")
async def save_paragraph(paragraph_id: str, request: ContentRequest) -> Any:
    return _respond(await get_controller().save_paragraph(paragraph_id, request.content))


@app.delete("/api/paragraphs/{paragraph_id}")
async def delete_paragraph(paragraph_id: str) -> Any:
    logger.info("DELETE /api/paragraphs/%s", paragraph_id)
    return _respond(await get_controller().delete_paragraph(paragraph_id))


@app.post("/api/paragraphs/{paragraph_id}/run")
async def run_paragraph(paragraph_id: str, request: ContentRequest | None = None) -> Any:
    content = request.content if request else None
    return _respond(await get_controller().run_paragraph(paragraph_id, content))


@app.post("/api/paragraphs/{paragraph_id}/clone")
async def clone_paragraph(paragraph_id: str) -> Any:
    return _respond(await get_controller().clone_paragraph(paragraph_id))


@app.post("/api/paragraphs/{paragraph_id}/select")
async def select_paragraph(paragraph_id: str) -> dict[str, Any]:
    controller = get_controller()
    controller.select(paragraph_id)
    return controller.snapshot().model_dump(mode="json")


@app.post("/api/paragraphs/{paragraph_id}/hover")
async def hover_paragraph(paragraph_id: str) -> dict[str, Any]:
    controller = get_controller()
    controller.hover(paragraph_id)
    return controller.snapshot().model_dump(mode="json")


@app.delete("/api/hover")
async def reset_hover() -> dict[str, Any]:
    controller = get_controller()
    controller.reset_hover()
    return controller.snapshot().model_dump(mode="json")


@app.post("/api/run-all")
async def run_all() -> Any:
    logger.info("POST /api/run-all")
    return _respond(await get_controller().run_all())


@app.post("/api/clear-outputs")
async def clear_outputs() -> Any:
    return _respond(await get_controller().clear_all_outputs())


@app.post("/api/save-selected")
async def save_selected() -> Any:
    return _respond(await get_controller().save_selected())


class ViewModeRequest(BaseModel):
    mode: ViewMode


@app.put("/api/view-mode")
async def set_view_mode(request: ViewModeRequest) -> dict[str, Any]:
    controller = get_controller()
    controller.set_view_mode(request.mode)
    return controller.snapshot().model_dump(mode="json")


@app.get("/api/visualizations")
async def list_visualizations() -> Any:
    return _respond(await get_controller().list_saved_visualizations())


class AddVisualizationRequest(BaseModel):
    index: int
    key: str


@app.post("/api/visualizations")
async def add_visualization(request: AddVisualizationRequest) -> Any:
    logger.info("POST /api/visualizations index=%d key=%s", request.index, request.key)
    return _respond(await get_controller().add_visualization(request.index, request.key))
