"""Raw paragraph parsers: backend records → NormalizedParagraph.

Two raw encodings exist and a session speaks exactly one of them, chosen once
through get_parser():

- legacy marker: Zeppelin-style records. The paragraph kind lives in the text
  itself (``%md`` interpreter prefix, or the visualization marker followed by
  a JSON panel descriptor).
- structured: the paragraph kind is an explicit ``inputType`` field and a
  visualization payload is a first-class value.
"""

from __future__ import annotations

import json
import logging
from enum import StrEnum
from typing import Any

from folio.config import BackendFormat
from folio.core import Result
from folio.notebook.paragraph import InputType, NormalizedParagraph, ParagraphOutput

logger = logging.getLogger("folio.parser")

VIZ_MARKER = "%sh #vizobject:"
MARKDOWN_DIRECTIVE = "%md"


class ParsePolicy(StrEnum):
    """What to do with a notebook that contains a malformed record."""

    FAIL_CLOSED = "fail_closed"
    SKIP_MALFORMED = "skip_malformed"


class MalformedParagraphError(ValueError):
    """Raised internally when a raw record cannot be normalized."""


class ParagraphParser:
    """Base parser. Subclasses implement a single raw record format."""

    backend_format: BackendFormat
    visualization_marker = ""

    def __init__(self, policy: ParsePolicy = ParsePolicy.FAIL_CLOSED) -> None:
        self.policy = policy

    def parse(self, raw_paragraphs: Any) -> Result[list[NormalizedParagraph]]:
        """Normalize a raw paragraph list.

        Under FAIL_CLOSED a single malformed record empties the whole result.
        Under SKIP_MALFORMED only that record is dropped and a warning is
        recorded. Nothing raised while reading a record escapes this method.
        """
        result: Result[list[NormalizedParagraph]] = Result(data=[])

        if not isinstance(raw_paragraphs, list | tuple):
            logger.error("Expected a list of paragraphs, got %s", type(raw_paragraphs).__name__)
            result.error("PARSE_FAILURE", f"Expected a list of paragraphs, got {type(raw_paragraphs).__name__}")
            return result

        parsed: list[NormalizedParagraph] = []
        for index, record in enumerate(raw_paragraphs):
            try:
                parsed.append(self._parse_record(record, position=len(parsed) + 1))
            except Exception as e:  # noqa: BLE001
                if self.policy == ParsePolicy.SKIP_MALFORMED:
                    logger.warning("Skipping malformed paragraph at index %d: %s", index, e)
                    result.warning("PARAGRAPH_SKIPPED", f"Paragraph at index {index} is malformed: {e}")
                    continue
                logger.error("Parsing paragraphs failed at index %d: %s", index, e)
                result.error(
                    "PARSE_FAILURE",
                    f"Paragraph at index {index} is malformed: {e}",
                    hint="The whole notebook is discarded when any paragraph is malformed",
                )
                return result

        result.data = parsed
        return result

    def encode_input(self, paragraph: NormalizedParagraph) -> str:
        """Return the content to send back to the store for this paragraph."""
        return paragraph.input_text

    def _parse_record(self, record: Any, position: int) -> NormalizedParagraph:
        raise NotImplementedError


def _require_id(record: Any) -> str:
    if not isinstance(record, dict):
        raise MalformedParagraphError(f"record must be an object, got {type(record).__name__}")
    paragraph_id = record.get("id")
    if not isinstance(paragraph_id, str) or not paragraph_id:
        raise MalformedParagraphError("record has no paragraph id")
    return paragraph_id


def _decode_payload(body: str) -> dict[str, Any]:
    if not body:
        return {}
    payload = json.loads(body)
    if not isinstance(payload, dict):
        raise MalformedParagraphError("visualization payload must be a JSON object")
    return payload


def _interpreter(text: str) -> str:
    """Return the ``%name`` interpreter directive of a paragraph, if any."""
    stripped = text.lstrip()
    if not stripped.startswith("%") or stripped[1:2].isspace():
        return ""
    parts = stripped[1:].split(maxsplit=1)
    return parts[0] if parts else ""


class LegacyMarkerParser(ParagraphParser):
    """Zeppelin-style records: ``{id, text, dateUpdated, results: {msg: [...]}}``."""

    backend_format = BackendFormat.LEGACY_MARKER
    visualization_marker = VIZ_MARKER

    def encode_input(self, paragraph: NormalizedParagraph) -> str:
        if paragraph.is_visualization:
            return VIZ_MARKER + paragraph.input_text
        return paragraph.input_text

    def _parse_record(self, record: Any, position: int) -> NormalizedParagraph:
        paragraph_id = _require_id(record)
        text = record.get("text") or ""
        if not isinstance(text, str):
            raise MalformedParagraphError("paragraph text must be a string")

        outputs = self._outputs(record.get("results"))
        date_modified = record.get("dateUpdated")

        if text.startswith(VIZ_MARKER):
            body = text[len(VIZ_MARKER) :].strip()
            return NormalizedParagraph(
                id=paragraph_id,
                position=position,
                input_type=InputType.VISUALIZATION,
                input_text=body,
                is_visualization=True,
                visualization=_decode_payload(body),
                outputs=outputs,
                date_modified=date_modified,
            )

        language = _interpreter(text)
        input_type = InputType.MARKDOWN if language == MARKDOWN_DIRECTIVE[1:] else InputType.CODE
        return NormalizedParagraph(
            id=paragraph_id,
            position=position,
            input_type=input_type,
            input_text=text,
            editor_language=language,
            outputs=outputs,
            date_modified=date_modified,
        )

    @staticmethod
    def _outputs(results: Any) -> list[ParagraphOutput]:
        if results is None:
            return []
        if not isinstance(results, dict):
            raise MalformedParagraphError("results must be an object")
        messages = results.get("msg") or []
        if not isinstance(messages, list):
            raise MalformedParagraphError("results.msg must be a list")
        outputs = []
        for msg in messages:
            if not isinstance(msg, dict):
                raise MalformedParagraphError("result message must be an object")
            outputs.append(ParagraphOutput(output_type=str(msg.get("type", "TEXT")), result=msg.get("data", "")))
        return outputs


class StructuredParser(ParagraphParser):
    """Field-based records: ``{id, dateModified, input: {inputType, inputText}, output: [...]}``.

    The flat shorthand ``{id, type, input: "text"}`` is accepted for the same record.
    """

    backend_format = BackendFormat.STRUCTURED

    def _parse_record(self, record: Any, position: int) -> NormalizedParagraph:
        paragraph_id = _require_id(record)

        raw_input = record.get("input")
        if isinstance(raw_input, dict):
            type_value = raw_input.get("inputType", InputType.CODE)
            text_value = raw_input.get("inputText", "")
        else:
            type_value = record.get("type", InputType.CODE)
            text_value = "" if raw_input is None else raw_input
        input_type = InputType(type_value)

        visualization: dict[str, Any] | None = None
        if input_type == InputType.VISUALIZATION:
            if isinstance(text_value, dict):
                visualization = text_value
                text_value = json.dumps(text_value)
            elif isinstance(text_value, str):
                text_value = text_value.strip()
                visualization = _decode_payload(text_value)
        if not isinstance(text_value, str):
            raise MalformedParagraphError("paragraph input must be a string")

        return NormalizedParagraph(
            id=paragraph_id,
            position=position,
            input_type=input_type,
            input_text=text_value,
            editor_language="md" if input_type == InputType.MARKDOWN else "",
            is_visualization=visualization is not None,
            visualization=visualization,
            outputs=self._outputs(record.get("output")),
            date_modified=record.get("dateModified"),
        )

    @staticmethod
    def _outputs(output: Any) -> list[ParagraphOutput]:
        if output is None:
            return []
        if not isinstance(output, list):
            raise MalformedParagraphError("output must be a list")
        outputs = []
        for item in output:
            if not isinstance(item, dict):
                raise MalformedParagraphError("output entry must be an object")
            outputs.append(
                ParagraphOutput(
                    output_type=str(item.get("outputType", "TEXT")),
                    result=item.get("result", ""),
                    execution_time=item.get("execution_time"),
                )
            )
        return outputs


_PARSERS: dict[BackendFormat, type[ParagraphParser]] = {
    BackendFormat.LEGACY_MARKER: LegacyMarkerParser,
    BackendFormat.STRUCTURED: StructuredParser,
}


def get_parser(backend_format: BackendFormat, policy: ParsePolicy = ParsePolicy.FAIL_CLOSED) -> ParagraphParser:
    """Return the parser for a backend format. Called once per session."""
    return _PARSERS[backend_format](policy)
