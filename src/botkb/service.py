"""Facade wiring the resolver, tracker, uploads, stats and purge together."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Iterable

from .chatbots import ChatbotService
from .errors import KnowledgeBaseError, NotFoundError, NotReadyError
from .jobs import BuildJobTracker, KnowledgeView
from .models import AccountProfile, BuildJob, BuildStatus, Chatbot, SourceFile, TrackedFile
from .observability import MetricsRecorder
from .purge import PurgeCoordinator, PurgeReport
from .resolver import StorageResolver
from .stats import StatsReconciler
from .store import ItemStore
from .uploads import UploadCoordinator

if TYPE_CHECKING:  # pragma: no cover
    from .config import Settings

logger = logging.getLogger(__name__)


def summarize(files: Iterable[TrackedFile]) -> dict[str, int]:
    """Count files per status group and add up their sizes."""

    summary = {"total": 0, "ready": 0, "processing": 0, "completed": 0, "error": 0, "bytes": 0}
    for item in files:
        if item.pending:
            continue
        summary["total"] += 1
        summary["bytes"] += max(item.file.size, 0)
        status = item.status
        if status in (BuildStatus.READY, BuildStatus.IDLE):
            summary["ready"] += 1
        elif status.in_flight:
            summary["processing"] += 1
        elif status is BuildStatus.COMPLETED:
            summary["completed"] += 1
        else:
            summary["error"] += 1
    return summary


class KnowledgeBase:
    """Synchronous entry point for everything done to a chatbot knowledge base.

    Operations that change the file set reconcile usage statistics afterwards;
    a failed reconciliation there is logged and left to the backstop scheduler.
    """

    def __init__(
        self,
        store: ItemStore,
        *,
        root_folder: str = "llm",
        tabular_suffixes: Iterable[str] = (".csv",),
        metrics: MetricsRecorder | None = None,
    ) -> None:
        self.store = store
        self.metrics = metrics
        self.resolver = StorageResolver(store, root_folder=root_folder, metrics=metrics)
        self.chatbots = ChatbotService(store, self.resolver)
        self.tracker = BuildJobTracker(
            store,
            self.resolver,
            tabular_suffixes=tuple(tabular_suffixes),
            metrics=metrics,
        )
        self.uploads = UploadCoordinator(store, metrics=metrics, tracker=self.tracker)
        self.reconciler = StatsReconciler(store, self.resolver, metrics=metrics)
        self.purger = PurgeCoordinator(store, self.tracker, self.resolver, metrics=metrics)

    def chatbot(self, chatbot_id: str) -> Chatbot:
        return self.chatbots.get_chatbot(chatbot_id)

    def create_chatbot(self, owner: str | None, name: str, slug: str, business: str | None = None) -> Chatbot:
        chatbot = self.chatbots.create_chatbot(owner, name, slug, business)
        if owner:
            self._reconcile_account_quietly(owner)
        return chatbot

    def view(self, chatbot_id: str) -> KnowledgeView:
        return self.tracker.open_view(self.chatbot(chatbot_id))

    def list_files(self, chatbot_id: str) -> list[TrackedFile]:
        return self.tracker.list_files(self.chatbot(chatbot_id))

    def summary(self, chatbot_id: str) -> dict[str, int]:
        return summarize(self.list_files(chatbot_id))

    def upload(
        self,
        chatbot_id: str,
        *,
        filename: str,
        data: bytes,
        content_type: str | None = None,
    ) -> tuple[SourceFile, BuildJob]:
        chatbot = self.chatbot(chatbot_id)
        try:
            self.resolver.resolve(chatbot)
        except NotFoundError as exc:
            raise NotReadyError(f"Storage folder for chatbot {chatbot.id} is not available: {exc}") from exc
        result = self.uploads.upload(
            chatbot,
            filename=filename,
            data=data,
            content_type=content_type,
            view=self.tracker.view(chatbot.id),
        )
        self._reconcile_quietly(chatbot)
        return result

    def build(self, chatbot_id: str, file_id: str) -> BuildJob:
        return self.tracker.request_build(self.chatbot(chatbot_id), file_id)

    def pause(self, chatbot_id: str, file_id: str) -> BuildJob | None:
        return self.tracker.request_pause(self.chatbot(chatbot_id), file_id)

    def delete(self, chatbot_id: str, file_id: str) -> bool:
        chatbot = self.chatbot(chatbot_id)
        removed = self.tracker.delete_file(chatbot, file_id)
        self._reconcile_quietly(chatbot)
        return removed

    def purge(self, chatbot_id: str) -> PurgeReport:
        chatbot = self.chatbot(chatbot_id)
        try:
            return self.purger.purge(chatbot)
        finally:
            self._reconcile_quietly(chatbot)

    def reconcile(self, chatbot_id: str) -> Chatbot:
        return self.reconciler.reconcile(self.chatbot(chatbot_id))

    def reconcile_account(self, owner: str) -> AccountProfile | None:
        return self.reconciler.reconcile_account(owner)

    def _reconcile_quietly(self, chatbot: Chatbot) -> None:
        try:
            self.reconciler.reconcile(chatbot)
        except KnowledgeBaseError as exc:
            logger.warning("service.reconcile_failed chatbot=%s error=%s", chatbot.id, exc)

    def _reconcile_account_quietly(self, owner: str) -> None:
        try:
            self.reconciler.reconcile_account(owner)
        except KnowledgeBaseError as exc:
            logger.warning("service.reconcile_account_failed owner=%s error=%s", owner, exc)


def build_knowledge_base(
    settings: "Settings",
    store: ItemStore | None = None,
    *,
    metrics: MetricsRecorder | None = None,
) -> KnowledgeBase:
    return KnowledgeBase(
        store if store is not None else settings.build_store(),
        root_folder=settings.root_folder,
        tabular_suffixes=settings.tabular_suffixes,
        metrics=metrics if metrics is not None else settings.build_metrics_recorder(),
    )


__all__ = ["KnowledgeBase", "build_knowledge_base", "summarize"]
