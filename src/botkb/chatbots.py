"""Create chatbot records and provision their storage folders."""

from __future__ import annotations

import logging
import re

from .errors import ConfigError, KnowledgeBaseError, NotFoundError
from .models import CHATBOT_COLLECTION, Chatbot, FolderRef
from .resolver import StorageResolver
from .store import ItemStore

logger = logging.getLogger(__name__)

_SLUG_RE = re.compile(r"^[a-z0-9][a-z0-9_-]*$")


class ChatbotService:
    """Read and create chatbot records.

    ``create_chatbot`` writes zeroed counters and then tries to create the
    ``<root>/<slug>`` folder; a provisioning failure is logged and the chatbot
    is still returned so the folder can be provisioned later.
    """

    def __init__(self, store: ItemStore, resolver: StorageResolver) -> None:
        self._store = store
        self._resolver = resolver

    def get_chatbot(self, chatbot_id: str) -> Chatbot:
        record = self._store.read_item(CHATBOT_COLLECTION, chatbot_id)
        if record is None:
            raise NotFoundError(f"Chatbot {chatbot_id} not found")
        return Chatbot.from_record(record, root_folder=self._resolver.root_folder)

    def list_chatbots(self, owner: str | None = None) -> list[Chatbot]:
        filter = {"user_created": owner} if owner else None
        records = self._store.read_items(CHATBOT_COLLECTION, filter=filter)
        return [Chatbot.from_record(record, root_folder=self._resolver.root_folder) for record in records]

    def create_chatbot(
        self,
        owner: str | None,
        name: str,
        slug: str,
        business: str | None = None,
    ) -> Chatbot:
        slug = (slug or "").strip()
        name = (name or "").strip()
        if not name:
            raise ConfigError("Chatbot name must not be empty")
        if not _SLUG_RE.match(slug):
            raise ConfigError(f"Invalid chatbot slug '{slug}'")

        record = self._store.create_item(
            CHATBOT_COLLECTION,
            {
                "chatbot_name": name,
                "chabot_title": f"AI Assistant for {name}",
                "chatbot_slug": slug,
                "chatbot_business": business,
                "chatbot_active": False,
                "status": "published",
                "chatbot_messages": 0,
                "chatbot_storage": 0,
                "chatbot_llm": 0,
                "user_created": owner,
            },
        )
        chatbot = Chatbot.from_record(record, root_folder=self._resolver.root_folder)
        logger.info("chatbots.created chatbot=%s slug=%s owner=%s", chatbot.id, slug, owner)
        self.provision_folder(chatbot)
        return chatbot

    def provision_folder(self, chatbot: Chatbot) -> FolderRef | None:
        """Create ``<root>/<slug>`` if needed and store it on the chatbot record."""

        if chatbot.folder is not None:
            return chatbot.folder
        path = f"{self._resolver.root_folder}/{chatbot.slug}"
        try:
            root = self._resolver.find_root()
            if root is None:
                logger.warning("chatbots.provision.root_missing chatbot=%s root=%s", chatbot.id, self._resolver.root_folder)
                return None
            existing = self._store.list_folders(name=chatbot.slug, parent=str(root["id"]))
            folder = existing[0] if existing else self._store.create_folder(chatbot.slug, str(root["id"]))
            self._store.update_item(CHATBOT_COLLECTION, chatbot.id, {"chatbot_folder": str(folder["id"])})
        except KnowledgeBaseError as exc:
            logger.warning("chatbots.provision.failed chatbot=%s path=%s error=%s", chatbot.id, path, exc)
            return None
        chatbot.folder = FolderRef(id=str(folder["id"]), path=path)
        logger.info("chatbots.provisioned chatbot=%s folder=%s path=%s", chatbot.id, chatbot.folder.id, path)
        return chatbot.folder


__all__ = ["ChatbotService"]
