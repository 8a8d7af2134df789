"""Resolve the storage folder that holds a chatbot's source files."""

from __future__ import annotations

import logging

from .errors import ConfigError, NotFoundError, StoreError
from .models import CHATBOT_COLLECTION, DEFAULT_ROOT_FOLDER, Chatbot, FolderRef
from .observability import MetricsRecorder
from .store import ItemStore

logger = logging.getLogger(__name__)


class StorageResolver:
    """Map a chatbot to ``<root>/<slug>`` and cache the folder id on the chatbot.

    Resolution never creates folders; use :class:`botkb.chatbots.ChatbotService`
    to provision one.
    """

    def __init__(
        self,
        store: ItemStore,
        *,
        root_folder: str = DEFAULT_ROOT_FOLDER,
        metrics: MetricsRecorder | None = None,
    ) -> None:
        self._store = store
        self._root_folder = root_folder
        self._metrics = metrics

    @property
    def root_folder(self) -> str:
        return self._root_folder

    def find_root(self) -> dict | None:
        folders = self._store.list_folders(name=self._root_folder)
        return folders[0] if folders else None

    def resolve(self, chatbot: Chatbot, *, persist: bool = True) -> FolderRef:
        if chatbot.folder is not None:
            return chatbot.folder

        slug = (chatbot.slug or "").strip()
        if not slug:
            raise ConfigError(f"Chatbot {chatbot.id} has no slug configured")

        root = self.find_root()
        if root is None:
            logger.warning("resolver.root_missing chatbot=%s root=%s", chatbot.id, self._root_folder)
            self._count("missing_root")
            raise NotFoundError(f"Root '{self._root_folder}' folder not found")

        children = self._store.list_folders(name=slug, parent=str(root["id"]))
        match = next((folder for folder in children if folder.get("name") == slug), None)
        path = f"{self._root_folder}/{slug}"
        if match is None:
            logger.warning("resolver.folder_missing chatbot=%s path=%s", chatbot.id, path)
            self._count("missing_folder")
            raise NotFoundError(f"Bot-specific folder ({path}) not found")

        folder = FolderRef(id=str(match["id"]), path=path)
        if persist:
            try:
                self._store.update_item(CHATBOT_COLLECTION, chatbot.id, {"chatbot_folder": folder.id})
            except (StoreError, NotFoundError) as exc:
                logger.warning("resolver.persist_failed chatbot=%s folder=%s error=%s", chatbot.id, folder.id, exc)
        chatbot.folder = folder
        logger.info("resolver.resolved chatbot=%s folder=%s path=%s", chatbot.id, folder.id, path)
        self._count("resolved")
        return folder

    def _count(self, outcome: str) -> None:
        if self._metrics is not None:
            self._metrics.increment("resolver.lookups", outcome=outcome)


__all__ = ["StorageResolver"]
