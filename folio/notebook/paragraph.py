"""Canonical paragraph models for the notebook session.

Raw paragraphs are plain dicts in one of the two backend formats; they are the
source of truth. Everything in this module is derived from them and can be
thrown away and recomputed on every refresh.
"""

from __future__ import annotations

from enum import StrEnum
from typing import Any

from pydantic import BaseModel, Field


class InputType(StrEnum):
    CODE = "CODE"
    MARKDOWN = "MARKDOWN"
    VISUALIZATION = "VISUALIZATION"


class ParagraphOutput(BaseModel):
    output_type: str
    result: Any = ""
    execution_time: str | None = None


class NormalizedParagraph(BaseModel):
    id: str
    position: int
    input_type: InputType = InputType.CODE
    input_text: str = ""
    editor_language: str = ""
    is_visualization: bool = False
    visualization: dict[str, Any] | None = None
    outputs: list[ParagraphOutput] = Field(default_factory=list)
    date_modified: str | None = None


class NotebookRecord(BaseModel):
    """A notebook as returned by the paragraph store."""

    id: str
    path: str = "Untitled"
    date_created: str | None = None
    date_modified: str | None = None
    paragraphs: list[dict[str, Any]] = Field(default_factory=list)


class SavedVisualization(BaseModel):
    label: str
    key: str
