"""Configuration management for Folio."""

import json
from enum import StrEnum
from pathlib import Path

from pydantic import BaseModel, Field


class BackendFormat(StrEnum):
    """Raw paragraph encoding spoken by the paragraph store."""

    LEGACY_MARKER = "legacy_marker"
    STRUCTURED = "structured"


class StoreKind(StrEnum):
    HTTP = "http"
    LOCAL = "local"


class ViewMode(StrEnum):
    BOTH = "both"
    INPUT_ONLY = "input_only"
    OUTPUT_ONLY = "output_only"


class BackendConfig(BaseModel):
    format: BackendFormat = BackendFormat.STRUCTURED
    kind: StoreKind = StoreKind.LOCAL
    base_url: str = "http://localhost:5601"
    api_prefix: str = "/api/notebooks"
    headers: dict[str, str] = Field(default_factory=dict)


class SettingsConfig(BaseModel):
    view_mode: ViewMode = ViewMode.BOTH
    run_all_concurrency: int | None = None
    cors_origins: list[str] = Field(default_factory=list)


class FolioConfig(BaseModel):
    backend: BackendConfig = Field(default_factory=BackendConfig)
    settings: SettingsConfig = Field(default_factory=SettingsConfig)


def _config_dir() -> Path:
    return Path.home() / ".folio"


def _config_path() -> Path:
    return _config_dir() / "config.json"


def notebooks_dir() -> Path:
    """Return the directory used by the local paragraph store."""
    return _config_dir() / "notebooks"


def ensure_dirs() -> None:
    """Create required Folio directories."""
    _config_dir().mkdir(exist_ok=True)
    notebooks_dir().mkdir(exist_ok=True)


def load_config() -> FolioConfig:
    """Load config from ~/.folio/config.json, returning defaults if missing."""
    path = _config_path()
    if not path.exists():
        return FolioConfig()
    return FolioConfig.model_validate_json(path.read_text())


def save_config(config: FolioConfig) -> None:
    """Save config to ~/.folio/config.json."""
    ensure_dirs()
    path = _config_path()
    path.write_text(json.dumps(config.model_dump(mode="json"), indent=2) + "\n")
