"""Panel descriptors embedded in visualization paragraphs."""

from __future__ import annotations

import json
import uuid
from datetime import UTC, datetime, timedelta
from typing import Any

from folio.notebook.parser import VIZ_MARKER

DEFAULT_TIME_WINDOW = timedelta(days=30)
DEFAULT_GRID = {"x": 15, "y": 0, "w": 20, "h": 20, "i": "1"}
QUERY_LANGUAGE = "lucene"
REFRESH_INTERVAL = 15


def generate_panel_id() -> str:
    return uuid.uuid4().hex


class VisualizationPayloadBuilder:
    """Builds and edits the dashboard container input of a visualization paragraph.

    ``marker`` is the prefix a serialized payload is written under. It defaults
    to the legacy-format marker; sessions on the structured format pass the
    parser's (empty) marker instead.
    """

    def __init__(self, marker: str = VIZ_MARKER) -> None:
        self.marker = marker

    def build(self, reference_id: str, now: datetime | None = None) -> dict[str, Any]:
        """Return a panel descriptor embedding one saved visualization."""
        now = now or datetime.now(UTC)
        panel_id = generate_panel_id()
        return {
            "viewMode": "view",
            "panels": {
                "1": {
                    "gridData": dict(DEFAULT_GRID),
                    "type": "visualization",
                    "explicitInput": {"id": "1", "savedObjectId": reference_id},
                },
            },
            "isFullScreenMode": False,
            "filters": [],
            "useMargins": False,
            "id": panel_id,
            "timeRange": {
                "from": (now - DEFAULT_TIME_WINDOW).isoformat(),
                "to": now.isoformat(),
            },
            "title": f"embed_viz_{panel_id}",
            "query": {"query": "", "language": QUERY_LANGUAGE},
            "refreshConfig": {"pause": True, "value": REFRESH_INTERVAL},
        }

    def serialize(self, payload: dict[str, Any]) -> str:
        return self.marker + json.dumps(payload)

    def edit(self, existing: dict[str, Any] | None, new_content: str | dict[str, Any]) -> str:
        """Merge edited fields into a payload and serialize it under the marker.

        ``new_content`` is either a JSON object string or a dict. Top-level keys
        replace those of ``existing``.
        """
        changes = json.loads(new_content) if isinstance(new_content, str) else new_content
        if not isinstance(changes, dict):
            raise ValueError("Visualization content must be a JSON object")
        return self.serialize({**(existing or {}), **changes})
