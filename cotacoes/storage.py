from __future__ import annotations

import os
from pathlib import Path

from flask import current_app

from cotacoes.tenant import is_valid_tenant_id


class StorageError(RuntimeError):
    pass


def _root(tenant_id: str) -> Path:
    if not is_valid_tenant_id(tenant_id):
        raise StorageError(f"Tenant invalido para armazenamento: {tenant_id!r}")
    base = current_app.config.get("STORAGE_DIR") or os.path.join(os.getcwd(), "storage")
    return Path(base).resolve() / tenant_id


def _resolve(tenant_id: str, key: str) -> Path:
    root = _root(tenant_id)
    path = (root / key).resolve()
    try:
        path.relative_to(root)
    except ValueError as exc:
        raise StorageError(f"Chave de armazenamento invalida: {key}") from exc
    return path


def save_file(tenant_id: str, key: str, content: bytes) -> str:
    path = _resolve(tenant_id, key)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(content)
    return key


def read_file(tenant_id: str, key: str) -> bytes:
    path = _resolve(tenant_id, key)
    if not path.is_file():
        raise StorageError(f"Arquivo nao encontrado: {key}")
    return path.read_bytes()


def delete_file(tenant_id: str, key: str) -> bool:
    path = _resolve(tenant_id, key)
    if not path.exists():
        return False
    path.unlink()
    return True
