"""Item/file store interface and a file-backed implementation."""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime, timezone
import json
import logging
from pathlib import Path
import re
import threading
from typing import Any, Mapping
from uuid import uuid4

from .errors import NotFoundError, StoreError


logger = logging.getLogger(__name__)

_COLLECTION_RE = re.compile(r"^[a-zA-Z0-9_-]+$")


class ItemStore(ABC):
    """Operations the knowledge base core needs from the external store.

    Record filters are equality matches on top-level fields. Folder lookups
    treat ``None`` as "any value" for both ``name`` and ``parent``.
    """

    @abstractmethod
    def create_item(self, collection: str, data: Mapping[str, Any]) -> dict[str, Any]:
        ...

    @abstractmethod
    def read_item(self, collection: str, item_id: str) -> dict[str, Any] | None:
        ...

    @abstractmethod
    def read_items(
        self,
        collection: str,
        *,
        filter: Mapping[str, Any] | None = None,
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        ...

    @abstractmethod
    def update_item(self, collection: str, item_id: str, data: Mapping[str, Any]) -> dict[str, Any]:
        ...

    @abstractmethod
    def delete_item(self, collection: str, item_id: str) -> bool:
        """Delete a record, returning ``False`` when it was already absent."""

    @abstractmethod
    def upload_file(
        self,
        folder_id: str,
        filename: str,
        data: bytes,
        content_type: str | None = None,
    ) -> dict[str, Any]:
        ...

    @abstractmethod
    def list_files(self, folder_id: str) -> list[dict[str, Any]]:
        ...

    @abstractmethod
    def delete_file(self, file_id: str) -> bool:
        """Delete a file, returning ``False`` when it was already absent."""

    @abstractmethod
    def list_folders(self, *, name: str | None = None, parent: str | None = None) -> list[dict[str, Any]]:
        ...

    @abstractmethod
    def create_folder(self, name: str, parent: str | None = None) -> dict[str, Any]:
        ...

    def close(self) -> None:  # pragma: no cover - nothing to release by default
        return None


class LocalItemStore(ItemStore):
    """File-based store keeping records, folders and blobs under one directory."""

    def __init__(self, root: Path) -> None:
        self._root = Path(root)
        self._items_dir = self._root / "items"
        self._blobs_dir = self._root / "files"
        self._files_index = self._root / "files.json"
        self._folders_file = self._root / "folders.json"
        self._lock = threading.RLock()
        try:
            self._items_dir.mkdir(parents=True, exist_ok=True)
            self._blobs_dir.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise StoreError(f"Cannot initialise store at {self._root}: {exc}") from exc

    @property
    def root(self) -> Path:
        return self._root

    # Records ------------------------------------------------------------------

    def create_item(self, collection: str, data: Mapping[str, Any]) -> dict[str, Any]:
        with self._lock:
            items = self._read_collection(collection)
            record = dict(data)
            record.setdefault("id", uuid4().hex)
            record["date_created"] = self._now()
            items.append(record)
            self._write_json(self._collection_path(collection), items)
        logger.debug("store.item.created collection=%s id=%s", collection, record["id"])
        return dict(record)

    def read_item(self, collection: str, item_id: str) -> dict[str, Any] | None:
        with self._lock:
            for item in self._read_collection(collection):
                if str(item.get("id")) == str(item_id):
                    return dict(item)
        return None

    def read_items(
        self,
        collection: str,
        *,
        filter: Mapping[str, Any] | None = None,
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        with self._lock:
            items = self._read_collection(collection)
        matches = [dict(item) for item in items if self._matches(item, filter)]
        if limit is not None and limit >= 0:
            matches = matches[:limit]
        return matches

    def update_item(self, collection: str, item_id: str, data: Mapping[str, Any]) -> dict[str, Any]:
        with self._lock:
            items = self._read_collection(collection)
            for item in items:
                if str(item.get("id")) != str(item_id):
                    continue
                item.update(data)
                item["id"] = item.get("id", item_id)
                item["date_updated"] = self._now()
                self._write_json(self._collection_path(collection), items)
                return dict(item)
        raise NotFoundError(f"{collection} item {item_id} not found")

    def delete_item(self, collection: str, item_id: str) -> bool:
        with self._lock:
            items = self._read_collection(collection)
            remaining = [item for item in items if str(item.get("id")) != str(item_id)]
            if len(remaining) == len(items):
                return False
            self._write_json(self._collection_path(collection), remaining)
        logger.debug("store.item.deleted collection=%s id=%s", collection, item_id)
        return True

    # Files --------------------------------------------------------------------

    def upload_file(
        self,
        folder_id: str,
        filename: str,
        data: bytes,
        content_type: str | None = None,
    ) -> dict[str, Any]:
        file_id = uuid4().hex
        record = {
            "id": file_id,
            "title": filename,
            "filename_download": filename,
            "filesize": len(data),
            "type": content_type or "application/octet-stream",
            "folder": folder_id,
            "uploaded_on": self._now(),
        }
        with self._lock:
            if not any(str(folder.get("id")) == str(folder_id) for folder in self._read_folders()):
                raise NotFoundError(f"Folder {folder_id} not found")
            blob_path = self._blobs_dir / file_id
            try:
                blob_path.write_bytes(data)
            except OSError as exc:
                raise StoreError(f"Failed to store file {filename}: {exc}") from exc
            try:
                files = self._read_json(self._files_index, [])
                files.append(record)
                self._write_json(self._files_index, files)
            except StoreError:
                blob_path.unlink(missing_ok=True)
                raise
        logger.debug("store.file.uploaded folder=%s id=%s size=%s", folder_id, file_id, len(data))
        return dict(record)

    def list_files(self, folder_id: str) -> list[dict[str, Any]]:
        with self._lock:
            files = self._read_json(self._files_index, [])
        matches = [dict(item) for item in files if str(item.get("folder")) == str(folder_id)]
        return sorted(matches, key=lambda item: item.get("uploaded_on") or "", reverse=True)

    def read_file(self, file_id: str) -> bytes:
        path = self._blobs_dir / file_id
        if not path.exists():
            raise NotFoundError(f"File {file_id} not found")
        try:
            return path.read_bytes()
        except OSError as exc:
            raise StoreError(f"Failed to read file {file_id}: {exc}") from exc

    def delete_file(self, file_id: str) -> bool:
        with self._lock:
            files = self._read_json(self._files_index, [])
            remaining = [item for item in files if str(item.get("id")) != str(file_id)]
            if len(remaining) == len(files):
                return False
            self._write_json(self._files_index, remaining)
            try:
                (self._blobs_dir / file_id).unlink(missing_ok=True)
            except OSError as exc:
                raise StoreError(f"Failed to remove file {file_id}: {exc}") from exc
        logger.debug("store.file.deleted id=%s", file_id)
        return True

    # Folders ------------------------------------------------------------------

    def list_folders(self, *, name: str | None = None, parent: str | None = None) -> list[dict[str, Any]]:
        with self._lock:
            folders = self._read_folders()
        results = []
        for folder in folders:
            if name is not None and folder.get("name") != name:
                continue
            if parent is not None and str(folder.get("parent")) != str(parent):
                continue
            results.append(dict(folder))
        return results

    def create_folder(self, name: str, parent: str | None = None) -> dict[str, Any]:
        folder = {"id": uuid4().hex, "name": name, "parent": parent}
        with self._lock:
            folders = self._read_folders()
            folders.append(folder)
            self._write_json(self._folders_file, folders)
        logger.info("store.folder.created name=%s parent=%s id=%s", name, parent, folder["id"])
        return dict(folder)

    def ensure_folder(self, name: str, parent: str | None = None) -> dict[str, Any]:
        """Return the folder ``name`` under ``parent``, creating it when missing."""

        with self._lock:
            for folder in self._read_folders():
                if folder.get("name") == name and folder.get("parent") == parent:
                    return dict(folder)
            return self.create_folder(name, parent)

    # Helpers ------------------------------------------------------------------

    @staticmethod
    def _matches(item: Mapping[str, Any], filter: Mapping[str, Any] | None) -> bool:
        if not filter:
            return True
        for key, expected in filter.items():
            value = item.get(key)
            if isinstance(value, Mapping):
                value = value.get("id")
            if value is None or str(value) != str(expected):
                return False
        return True

    def _collection_path(self, collection: str) -> Path:
        if not _COLLECTION_RE.match(collection):
            raise ValueError(f"Invalid collection name '{collection}'")
        return self._items_dir / f"{collection}.json"

    def _read_collection(self, collection: str) -> list[dict[str, Any]]:
        return self._read_json(self._collection_path(collection), [])

    def _read_folders(self) -> list[dict[str, Any]]:
        return self._read_json(self._folders_file, [])

    @staticmethod
    def _read_json(path: Path, default: Any) -> Any:
        if not path.exists():
            return default
        try:
            with path.open("r", encoding="utf-8") as handle:
                return json.load(handle)
        except json.JSONDecodeError as exc:
            logger.warning("store.decode_failed path=%s error=%s", path, exc)
            raise StoreError(f"Corrupt store file {path.name}") from exc
        except OSError as exc:
            raise StoreError(f"Failed to read {path.name}: {exc}") from exc

    @staticmethod
    def _write_json(path: Path, payload: Any) -> None:
        tmp_path = path.with_suffix(".tmp")
        try:
            with tmp_path.open("w", encoding="utf-8") as handle:
                json.dump(payload, handle, indent=2)
            tmp_path.replace(path)
        except OSError as exc:
            raise StoreError(f"Failed to write {path.name}: {exc}") from exc

    @staticmethod
    def _now() -> str:
        return datetime.now(timezone.utc).isoformat()


__all__ = ["ItemStore", "LocalItemStore"]
