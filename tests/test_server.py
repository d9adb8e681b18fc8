"""Tests for the notebook HTTP API."""

from __future__ import annotations

from collections.abc import AsyncGenerator, Generator
from unittest.mock import patch

import pytest
from conftest import FakeParagraphStore
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient

from folio import server
from folio.notebook.controller import NotebookController
from folio.server import app, configure_cors, reset_controller


@pytest.fixture
def _controller(controller: NotebookController) -> Generator[NotebookController]:
    """Patch get_controller to return the fake-store controller."""
    with patch("folio.server.get_controller", return_value=controller):
        yield controller
    reset_controller()


@pytest.fixture
async def client() -> AsyncGenerator[AsyncClient]:
    transport = ASGITransport(app=app)  # type: ignore[arg-type]
    async with AsyncClient(transport=transport, base_url="http://test") as c:
        yield c


async def test_health(client: AsyncClient, _controller: NotebookController) -> None:
    resp = await client.get("/api/health")
    assert resp.status_code == 200
    assert resp.json() == {"ok": True}


async def test_load_notebook(client: AsyncClient, _controller: NotebookController) -> None:
    resp = await client.post("/api/notebooks/nb_test/load")
    assert resp.status_code == 200
    assert [p["id"] for p in resp.json()["data"]] == ["p1", "p2", "p3", "p4", "p5"]

    snapshot = (await client.get("/api/notebook")).json()
    assert snapshot["notebook_id"] == "nb_test"
    assert snapshot["paragraphs"][0]["state"]["execution"] == "idle"


async def test_load_unknown_notebook_is_bad_gateway(client: AsyncClient, _controller: NotebookController) -> None:
    resp = await client.post("/api/notebooks/nb_missing/load")
    assert resp.status_code == 502
    assert resp.json()["diagnostics"][0]["code"] == "STORE_ERROR"
    assert "not found" in resp.json()["error"]


async def test_operations_without_notebook(client: AsyncClient, _controller: NotebookController) -> None:
    resp = await client.post("/api/run-all")
    assert resp.status_code == 409
    assert resp.json()["diagnostics"][0]["code"] == "NO_NOTEBOOK"


async def test_add_run_and_delete(
    client: AsyncClient, _controller: NotebookController, store: FakeParagraphStore
) -> None:
    await client.post("/api/notebooks/nb_test/load")

    resp = await client.post("/api/paragraphs", json={"index": 0, "content": "# hi", "input_type": "MARKDOWN"})
    assert resp.status_code == 200
    new_id = resp.json()["data"]["id"]
    assert resp.json()["data"]["input_type"] == "MARKDOWN"

    resp = await client.post(f"/api/paragraphs/{new_id}/run")
    assert resp.status_code == 200
    assert resp.json()["data"]["outputs"][0]["result"] == "ran: # hi"

    resp = await client.delete(f"/api/paragraphs/{new_id}")
    assert resp.status_code == 200
    assert len(resp.json()["data"]) == 5


async def test_run_unknown_paragraph(client: AsyncClient, _controller: NotebookController) -> None:
    await client.post("/api/notebooks/nb_test/load")
    resp = await client.post("/api/paragraphs/ghost/run")
    assert resp.status_code == 404


async def test_edit_and_save(
    client: AsyncClient, _controller: NotebookController, store: FakeParagraphStore
) -> None:
    await client.post("/api/notebooks/nb_test/load")

    resp = await client.patch("/api/paragraphs/p2", json={"text": "echo draft"})
    assert resp.status_code == 200
    assert resp.json()["data"]["input_text"] == "echo draft"

    resp = await client.put("/api/paragraphs/p2", json={})
    assert resp.status_code == 200
    assert store.calls[-1] == ("update_only", "nb_test", "p2", "echo draft")


async def test_edit_visualization_on_code_paragraph(client: AsyncClient, _controller: NotebookController) -> None:
    await client.post("/api/notebooks/nb_test/load")
    resp = await client.patch("/api/paragraphs/p1", json={"visualization": {"title": "x"}})
    assert resp.status_code == 422


async def test_save_selected_requires_selection(
    client: AsyncClient, _controller: NotebookController, notices: list[str]
) -> None:
    await client.post("/api/notebooks/nb_test/load")

    resp = await client.post("/api/save-selected")
    assert resp.status_code == 409
    assert resp.json()["diagnostics"][0]["code"] == "SELECTION_REQUIRED"
    assert notices == ["Please select a paragraph"]

    resp = await client.post("/api/paragraphs/p3/select")
    assert resp.status_code == 200
    assert resp.json()["paragraphs"][2]["state"]["is_selected"] is True

    resp = await client.post("/api/save-selected")
    assert resp.status_code == 200
    assert resp.json()["data"]["id"] == "p3"


async def test_clone_and_clear(client: AsyncClient, _controller: NotebookController) -> None:
    await client.post("/api/notebooks/nb_test/load")

    resp = await client.post("/api/paragraphs/p1/clone")
    assert resp.status_code == 200
    assert resp.json()["data"]["position"] == 2

    resp = await client.post("/api/clear-outputs")
    assert resp.status_code == 200
    assert all(p["outputs"] == [] for p in resp.json()["data"])


async def test_view_mode_and_hover(client: AsyncClient, _controller: NotebookController) -> None:
    await client.post("/api/notebooks/nb_test/load")

    resp = await client.put("/api/view-mode", json={"mode": "output_only"})
    assert resp.status_code == 200
    assert resp.json()["view_mode"] == "output_only"
    assert all(p["state"]["is_input_hidden"] for p in resp.json()["paragraphs"])

    resp = await client.post("/api/paragraphs/p2/hover")
    assert resp.json()["paragraphs"][1]["state"]["is_hovered"] is True
    resp = await client.delete("/api/hover")
    assert not any(p["state"]["is_hovered"] for p in resp.json()["paragraphs"])


async def test_bad_view_mode_is_rejected(client: AsyncClient, _controller: NotebookController) -> None:
    resp = await client.put("/api/view-mode", json={"mode": "sideways"})
    assert resp.status_code == 422


async def test_visualizations(client: AsyncClient, _controller: NotebookController) -> None:
    await client.post("/api/notebooks/nb_test/load")

    resp = await client.get("/api/visualizations")
    assert resp.json()["data"] == [{"label": "Flights", "key": "viz-flights"}]

    resp = await client.post("/api/visualizations", json={"index": 5, "key": "viz-flights"})
    assert resp.status_code == 200
    data = resp.json()["data"]
    assert data["is_visualization"] is True
    assert data["visualization"]["panels"]["1"]["explicitInput"]["savedObjectId"] == "viz-flights"


def test_event_queue_drops_events_when_full() -> None:
    queue = server._new_subscriber()
    try:
        for i in range(server.SUBSCRIBER_BUFFER + 10):
            server._broadcast("notice", {"message": str(i)})
        assert queue.qsize() == server.SUBSCRIBER_BUFFER
        assert queue.get_nowait()["data"] == '{"message": "0"}'
    finally:
        server._subscribers.discard(queue)


async def test_cors_is_off_unless_configured() -> None:
    closed = FastAPI()
    configure_cors(closed, [])
    opened = FastAPI()
    configure_cors(opened, ["http://notebook.example"])
    for target in (closed, opened):
        target.get("/ping")(lambda: {"ok": True})

    headers = {"Origin": "http://notebook.example"}
    async with AsyncClient(transport=ASGITransport(app=closed), base_url="http://test") as c:  # type: ignore[arg-type]
        assert "access-control-allow-origin" not in (await c.get("/ping", headers=headers)).headers
    async with AsyncClient(transport=ASGITransport(app=opened), base_url="http://test") as c:  # type: ignore[arg-type]
        resp = await c.get("/ping", headers=headers)
        assert resp.headers["access-control-allow-origin"] == "http://notebook.example"
