"""Build the paragraph store a configuration points at."""

from __future__ import annotations

from pathlib import Path

from folio.config import BackendConfig, BackendFormat, StoreKind, notebooks_dir
from folio.store.base import ParagraphStore
from folio.store.http import HttpParagraphStore
from folio.store.local import LocalParagraphStore


def create_store(backend: BackendConfig, local_dir: Path | None = None) -> ParagraphStore:
    if backend.kind == StoreKind.HTTP:
        return HttpParagraphStore.from_config(backend)
    if backend.format != BackendFormat.STRUCTURED:
        raise ValueError("The local store only speaks the structured paragraph format")
    return LocalParagraphStore(local_dir or notebooks_dir())


async def close_store(store: ParagraphStore) -> None:
    if isinstance(store, HttpParagraphStore):
        await store.aclose()
