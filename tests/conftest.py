from __future__ import annotations

import logging
from pathlib import Path

import pytest

from botkb.errors import StoreError
from botkb.models import PROFILE_COLLECTION, Chatbot
from botkb.service import KnowledgeBase
from botkb.store import LocalItemStore


class FlakyStore(LocalItemStore):
    """Local store that records calls and raises on demand."""

    def __init__(self, root: Path) -> None:
        super().__init__(root)
        self.calls: list[tuple[str, str | None]] = []
        self._failures: dict[tuple[str, str | None], Exception] = {}

    def fail(self, method: str, key: str | None = None, exc: Exception | None = None) -> None:
        self._failures[(method, key)] = exc or StoreError(f"{method} failed")

    def heal(self) -> None:
        self._failures.clear()

    def writes(self, collection: str) -> list[tuple[str, str | None]]:
        return [call for call in self.calls if call == ("update_item", collection)]

    def _check(self, method: str, *keys: str | None) -> None:
        self.calls.append((method, keys[0] if keys else None))
        for key in (*keys, None):
            exc = self._failures.get((method, key))
            if exc is not None:
                raise exc

    def create_item(self, collection, data):
        self._check("create_item", collection)
        return super().create_item(collection, data)

    def read_item(self, collection, item_id):
        self._check("read_item", collection, item_id)
        return super().read_item(collection, item_id)

    def read_items(self, collection, *, filter=None, limit=None):
        self._check("read_items", collection)
        return super().read_items(collection, filter=filter, limit=limit)

    def update_item(self, collection, item_id, data):
        self._check("update_item", collection, item_id)
        return super().update_item(collection, item_id, data)

    def delete_item(self, collection, item_id):
        self._check("delete_item", collection, item_id)
        return super().delete_item(collection, item_id)

    def upload_file(self, folder_id, filename, data, content_type=None):
        self._check("upload_file", filename)
        return super().upload_file(folder_id, filename, data, content_type)

    def list_files(self, folder_id):
        self._check("list_files", folder_id)
        return super().list_files(folder_id)

    def delete_file(self, file_id):
        self._check("delete_file", file_id)
        return super().delete_file(file_id)

    def list_folders(self, *, name=None, parent=None):
        self._check("list_folders", name)
        return super().list_folders(name=name, parent=parent)

    def create_folder(self, name, parent=None):
        self._check("create_folder", name)
        return super().create_folder(name, parent)


@pytest.fixture(autouse=True)
def _propagate_package_logs():
    package_logger = logging.getLogger("botkb")
    previous = package_logger.propagate
    package_logger.propagate = True
    yield
    package_logger.propagate = previous


@pytest.fixture()
def store(tmp_path: Path) -> FlakyStore:
    store = FlakyStore(tmp_path / "store")
    store.ensure_folder("llm")
    return store


@pytest.fixture()
def profile(store: FlakyStore) -> dict:
    return store.create_item(
        PROFILE_COLLECTION,
        {
            "user_created": "user-1",
            "profile_chatbots": 0,
            "profile_llm": 0,
            "profile_messages": 0,
            "profile_storages": 0,
        },
    )


@pytest.fixture()
def knowledge_base(store: FlakyStore) -> KnowledgeBase:
    return KnowledgeBase(store)


@pytest.fixture()
def chatbot(knowledge_base: KnowledgeBase, profile: dict) -> Chatbot:
    return knowledge_base.create_chatbot("user-1", "Acme Support", "acme")
