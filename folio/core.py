"""Diagnostics carried by parse results and notebook operations.

Error codes used across Folio: PARSE_FAILURE, PARAGRAPH_SKIPPED, STORE_ERROR,
SELECTION_REQUIRED, NOT_FOUND, NO_NOTEBOOK, INVALID_VISUALIZATION and
NOT_VISUALIZATION. The server maps them to HTTP status codes.
"""

from enum import StrEnum
from typing import Generic, TypeVar

from pydantic import BaseModel, Field

T = TypeVar("T")


class Severity(StrEnum):
    ERROR = "error"
    WARNING = "warning"
    INFO = "info"


class Diag(BaseModel):
    """A structured diagnostic message."""

    severity: Severity
    code: str
    message: str
    hint: str | None = None


class Result(BaseModel, Generic[T]):  # noqa: UP046  Pydantic requires a Generic[T] subclass
    """Outcome of a parse or controller operation.

    ``data`` is None when an operation was aborted. A failed parse instead
    carries an empty paragraph list, so a broken notebook renders as empty.
    """

    data: T | None = None
    diagnostics: list[Diag] = Field(default_factory=list)

    @property
    def has_errors(self) -> bool:
        return any(d.severity == Severity.ERROR for d in self.diagnostics)

    @property
    def ok(self) -> bool:
        return not self.has_errors

    @property
    def first_error(self) -> Diag | None:
        for d in self.diagnostics:
            if d.severity == Severity.ERROR:
                return d
        return None

    def error(self, code: str, message: str, *, hint: str | None = None) -> None:
        self.diagnostics.append(Diag(severity=Severity.ERROR, code=code, message=message, hint=hint))

    def warning(self, code: str, message: str, *, hint: str | None = None) -> None:
        self.diagnostics.append(Diag(severity=Severity.WARNING, code=code, message=message, hint=hint))

    def info(self, code: str, message: str, *, hint: str | None = None) -> None:
        self.diagnostics.append(Diag(severity=Severity.INFO, code=code, message=message, hint=hint))

    def extend(self, diagnostics: list[Diag]) -> None:
        self.diagnostics.extend(diagnostics)
