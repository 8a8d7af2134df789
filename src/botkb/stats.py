"""Recompute per-chatbot and per-account usage counters from ground truth."""

from __future__ import annotations

import logging

from .errors import NotFoundError
from .models import (
    CHATBOT_COLLECTION,
    PROFILE_COLLECTION,
    AccountProfile,
    Chatbot,
    SourceFile,
)
from .observability import MetricsRecorder
from .resolver import StorageResolver
from .store import ItemStore

logger = logging.getLogger(__name__)

BYTES_PER_MEGABYTE = 1024 * 1024


def bytes_to_megabytes(total_bytes: int) -> int:
    """Convert bytes to whole megabytes, rounding any remainder up."""

    if total_bytes <= 0:
        return 0
    return -(-total_bytes // BYTES_PER_MEGABYTE)


class StatsReconciler:
    """Write counters back only when they drift from what the store holds.

    Reconciliation never increments; repeating it is always safe.
    """

    def __init__(
        self,
        store: ItemStore,
        resolver: StorageResolver,
        *,
        metrics: MetricsRecorder | None = None,
    ) -> None:
        self._store = store
        self._resolver = resolver
        self._metrics = metrics

    def measure(self, chatbot: Chatbot) -> tuple[int, int]:
        folder = self._resolver.resolve(chatbot)
        files = [SourceFile.from_record(record) for record in self._store.list_files(folder.id)]
        total_bytes = sum(max(file.size, 0) for file in files)
        return len(files), bytes_to_megabytes(total_bytes)

    def reconcile(self, chatbot: Chatbot, *, cascade: bool = True) -> Chatbot:
        file_count, storage_mb = self.measure(chatbot)
        if file_count == chatbot.file_count and storage_mb == chatbot.storage_mb:
            logger.debug("stats.chatbot.unchanged chatbot=%s files=%s storage_mb=%s", chatbot.id, file_count, storage_mb)
            return chatbot

        self._store.update_item(
            CHATBOT_COLLECTION,
            chatbot.id,
            {"chatbot_llm": file_count, "chatbot_storage": storage_mb},
        )
        logger.info(
            "stats.chatbot.updated chatbot=%s files=%s->%s storage_mb=%s->%s",
            chatbot.id,
            chatbot.file_count,
            file_count,
            chatbot.storage_mb,
            storage_mb,
        )
        chatbot.file_count = file_count
        chatbot.storage_mb = storage_mb
        if self._metrics is not None:
            self._metrics.increment("stats.writes", scope="chatbot")

        if cascade and chatbot.owner:
            self.reconcile_account(chatbot.owner)
        return chatbot

    def reconcile_account(self, owner: str) -> AccountProfile | None:
        records = self._store.read_items(CHATBOT_COLLECTION, filter={"user_created": owner})
        chatbots = [Chatbot.from_record(record, root_folder=self._resolver.root_folder) for record in records]
        expected = {
            "profile_chatbots": len(chatbots),
            "profile_llm": sum(bot.file_count for bot in chatbots),
            "profile_messages": sum(bot.message_count for bot in chatbots),
            "profile_storages": sum(bot.storage_mb for bot in chatbots),
        }

        profiles = self._store.read_items(PROFILE_COLLECTION, filter={"user_created": owner}, limit=1)
        if not profiles:
            logger.warning("stats.profile.missing owner=%s", owner)
            return None
        profile = AccountProfile.from_record(profiles[0])
        if profile.totals() == expected:
            logger.debug("stats.profile.unchanged owner=%s profile=%s", owner, profile.id)
            return profile

        try:
            record = self._store.update_item(PROFILE_COLLECTION, profile.id, expected)
        except NotFoundError:
            logger.warning("stats.profile.vanished owner=%s profile=%s", owner, profile.id)
            return None
        logger.info("stats.profile.updated owner=%s profile=%s totals=%s", owner, profile.id, expected)
        if self._metrics is not None:
            self._metrics.increment("stats.writes", scope="account")
        return AccountProfile.from_record({**profiles[0], **(record or {}), **expected})


__all__ = ["BYTES_PER_MEGABYTE", "bytes_to_megabytes", "StatsReconciler"]
