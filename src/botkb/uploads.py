"""Store uploaded source files and register a build job for each one."""

from __future__ import annotations

from contextlib import nullcontext
import logging
import mimetypes

from .errors import NotReadyError, StoreError
from .jobs import BuildJobTracker, KnowledgeView
from .models import JOB_COLLECTION, BuildJob, BuildStatus, Chatbot, SourceFile
from .observability import MetricsRecorder
from .store import ItemStore

logger = logging.getLogger(__name__)


class UploadCoordinator:
    def __init__(
        self,
        store: ItemStore,
        *,
        metrics: MetricsRecorder | None = None,
        tracker: BuildJobTracker | None = None,
    ) -> None:
        self._store = store
        self._metrics = metrics
        self._tracker = tracker

    def upload(
        self,
        chatbot: Chatbot,
        *,
        filename: str,
        data: bytes,
        content_type: str | None = None,
        view: KnowledgeView | None = None,
    ) -> tuple[SourceFile, BuildJob]:
        """Upload ``data`` into the chatbot folder and create its ``ready`` job.

        When ``view`` is given a pending placeholder is shown until the upload
        settles. If the job cannot be written the stored file is removed again,
        so a failed upload never leaves an orphan behind.
        """

        if chatbot.folder is None:
            raise NotReadyError(f"Storage folder for chatbot {chatbot.id} is not resolved")
        if not data:
            raise ValueError("Uploaded file is empty")
        filename = (filename or "").strip() or "upload"
        if content_type is None:
            content_type = mimetypes.guess_type(filename)[0]

        placeholder = view.add_placeholder(filename, len(data), content_type) if view is not None else None
        try:
            with self._track("uploads.duration"):
                file = SourceFile.from_record(
                    self._store.upload_file(chatbot.folder.id, filename, data, content_type)
                )
                job = self._create_job(chatbot, file)
        except Exception:
            if placeholder is not None:
                view.drop_placeholder(placeholder)
            self._count("uploads.failed")
            raise

        if placeholder is not None:
            view.resolve_placeholder(placeholder, file, job)
        logger.info(
            "uploads.completed chatbot=%s file=%s job=%s size=%s",
            chatbot.id,
            file.id,
            job.id,
            file.size,
        )
        self._count("uploads.completed")
        return file, job

    def _create_job(self, chatbot: Chatbot, file: SourceFile) -> BuildJob:
        try:
            with self._job_lock(chatbot, file):
                existing = self._tracker.find_job(chatbot.id, file.id) if self._tracker is not None else None
                if existing is not None:
                    logger.info("uploads.job_exists chatbot=%s file=%s job=%s", chatbot.id, file.id, existing.id)
                    return existing
                record = self._store.create_item(
                    JOB_COLLECTION,
                    {
                        "llm_chatbot": chatbot.id,
                        "llm_file": file.id,
                        "llm_status": BuildStatus.READY.value,
                    },
                )
                return BuildJob.from_record(record)
        except (StoreError, ValueError, KeyError) as exc:
            logger.warning(
                "uploads.job_create_failed chatbot=%s file=%s error=%s",
                chatbot.id,
                file.id,
                exc,
            )
            try:
                self._store.delete_file(file.id)
            except StoreError as cleanup_exc:
                logger.error(
                    "uploads.compensation_failed chatbot=%s file=%s error=%s",
                    chatbot.id,
                    file.id,
                    cleanup_exc,
                )
            if isinstance(exc, StoreError):
                raise
            raise StoreError(f"Store returned an invalid job record for file {file.id}") from exc

    def _job_lock(self, chatbot: Chatbot, file: SourceFile):
        if self._tracker is None:
            return nullcontext()
        return self._tracker.file_lock(chatbot.id, file.id)

    def _track(self, metric: str):
        if self._metrics is None:
            return nullcontext()
        return self._metrics.track_timing(metric)

    def _count(self, metric: str) -> None:
        if self._metrics is not None:
            self._metrics.increment(metric)


__all__ = ["UploadCoordinator"]
