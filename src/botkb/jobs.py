"""Build job state machine and the in-memory file index for a chatbot."""

from __future__ import annotations

from contextlib import contextmanager
from enum import Enum
import logging
import threading
from typing import Iterable, Iterator, Sequence
from uuid import uuid4

from .errors import ConflictError, NotFoundError
from .models import (
    JOB_COLLECTION,
    BuildJob,
    BuildStatus,
    Chatbot,
    FolderRef,
    SourceFile,
    TrackedFile,
)
from .observability import MetricsRecorder
from .resolver import StorageResolver
from .store import ItemStore

logger = logging.getLogger(__name__)

DEFAULT_TABULAR_SUFFIXES: tuple[str, ...] = (".csv",)

_BUILDABLE = {BuildStatus.IDLE, BuildStatus.READY, BuildStatus.ERROR}


class BuildInFlightError(ConflictError):
    """A build was requested for a job the worker already owns."""


class FileAction(str, Enum):
    BUILD = "build"
    RETRY = "retry"
    PAUSE = "pause"
    DELETE = "delete"
    IMPORT = "import"
    REIMPORT = "reimport"


def check_build(status: BuildStatus, *, tabular: bool = False) -> BuildStatus:
    """Return the status a build request moves to, or raise when refused."""

    if status.in_flight:
        raise BuildInFlightError(f"Build already {status.value}")
    if tabular:
        raise ConflictError("Tabular files are imported, not built")
    if status not in _BUILDABLE:
        raise ConflictError(f"Cannot build from status '{status.value}'")
    return BuildStatus.START


def available_actions(file: TrackedFile, *, tabular: bool = False) -> tuple[FileAction, ...]:
    if file.pending:
        return ()
    status = file.status
    if status in (BuildStatus.IDLE, BuildStatus.READY):
        return (FileAction.IMPORT if tabular else FileAction.BUILD, FileAction.DELETE)
    if status.in_flight:
        return (FileAction.PAUSE,)
    if status is BuildStatus.COMPLETED:
        return (FileAction.REIMPORT, FileAction.DELETE) if tabular else (FileAction.DELETE,)
    if tabular:
        return (FileAction.DELETE,)
    return (FileAction.RETRY, FileAction.DELETE)


def _index_jobs(jobs: Iterable[BuildJob]) -> dict[str, BuildJob]:
    indexed: dict[str, BuildJob] = {}
    for job in jobs:
        existing = indexed.get(job.file_id)
        if existing is None:
            indexed[job.file_id] = job
            continue
        # Keep the most recently written job when the store holds duplicates.
        if (job.updated_at or "") >= (existing.updated_at or ""):
            kept, dropped = job, existing
        else:
            kept, dropped = existing, job
        logger.warning("jobs.duplicate file=%s kept=%s dropped=%s", job.file_id, kept.id, dropped.id)
        indexed[job.file_id] = kept
    return indexed


class KnowledgeView:
    """Authoritative in-memory index of one chatbot's files and jobs.

    Every poll takes a sequence number from :meth:`issue_sequence` before it
    talks to the store; its result is only applied when that number is newer
    than the last applied one. Local mutations advance both counters so a poll
    issued before them cannot roll them back.
    """

    def __init__(self, chatbot: Chatbot, folder: FolderRef) -> None:
        self.chatbot = chatbot
        self.folder = folder
        self._lock = threading.Lock()
        self._files: dict[str, SourceFile] = {}
        self._jobs: dict[str, BuildJob] = {}
        self._placeholders: dict[str, SourceFile] = {}
        self._issued = 0
        self._applied = 0

    @property
    def chatbot_id(self) -> str:
        return self.chatbot.id

    @property
    def applied_sequence(self) -> int:
        with self._lock:
            return self._applied

    def issue_sequence(self) -> int:
        with self._lock:
            self._issued += 1
            return self._issued

    def apply_jobs(self, sequence: int, jobs: Sequence[BuildJob]) -> bool:
        with self._lock:
            if sequence <= self._applied:
                logger.debug(
                    "jobs.view.stale_discarded chatbot=%s sequence=%s applied=%s",
                    self.chatbot_id,
                    sequence,
                    self._applied,
                )
                return False
            self._jobs = _index_jobs(jobs)
            self._applied = sequence
            return True

    def apply_snapshot(self, sequence: int, files: Sequence[SourceFile], jobs: Sequence[BuildJob]) -> bool:
        with self._lock:
            if sequence <= self._applied:
                return False
            self._files = {file.id: file for file in files}
            self._jobs = _index_jobs(jobs)
            self._applied = sequence
            return True

    def put_job(self, job: BuildJob) -> None:
        with self._lock:
            self._jobs[job.file_id] = job
            self._advance_locked()

    def put_file(self, file: SourceFile) -> None:
        with self._lock:
            self._files[file.id] = file
            self._advance_locked()

    def remove_file(self, file_id: str) -> None:
        with self._lock:
            self._files.pop(file_id, None)
            self._jobs.pop(file_id, None)
            self._advance_locked()

    def add_placeholder(self, name: str, size: int, content_type: str | None = None) -> str:
        key = f"uploading-{uuid4().hex}"
        with self._lock:
            self._placeholders[key] = SourceFile(
                id=key,
                name=name,
                size=size,
                content_type=content_type,
                folder_id=self.folder.id,
            )
        return key

    def resolve_placeholder(self, key: str, file: SourceFile, job: BuildJob) -> None:
        with self._lock:
            self._placeholders.pop(key, None)
            self._files[file.id] = file
            self._jobs[file.id] = job
            self._advance_locked()

    def drop_placeholder(self, key: str) -> None:
        with self._lock:
            self._placeholders.pop(key, None)

    def file(self, file_id: str) -> SourceFile | None:
        with self._lock:
            return self._files.get(file_id)

    def job_for(self, file_id: str) -> BuildJob | None:
        with self._lock:
            return self._jobs.get(file_id)

    def files(self) -> list[TrackedFile]:
        with self._lock:
            pending = [TrackedFile(file=file, pending=True) for file in self._placeholders.values()]
            stored = sorted(self._files.values(), key=lambda item: item.uploaded_on or "", reverse=True)
            merged = [TrackedFile(file=file, job=self._jobs.get(file.id)) for file in stored]
        return pending + merged

    def _advance_locked(self) -> None:
        self._issued += 1
        self._applied = self._issued


class BuildJobTracker:
    """Issue build, pause and delete transitions and keep open views current."""

    def __init__(
        self,
        store: ItemStore,
        resolver: StorageResolver,
        *,
        tabular_suffixes: Sequence[str] = DEFAULT_TABULAR_SUFFIXES,
        metrics: MetricsRecorder | None = None,
    ) -> None:
        self._store = store
        self._resolver = resolver
        self._tabular_suffixes = tuple(tabular_suffixes)
        self._metrics = metrics
        self._views: dict[str, KnowledgeView] = {}
        self._views_lock = threading.Lock()
        self._file_locks: dict[tuple[str, str], threading.Lock] = {}
        self._file_locks_guard = threading.Lock()

    def is_tabular(self, file: SourceFile) -> bool:
        return file.has_suffix(self._tabular_suffixes)

    @contextmanager
    def file_lock(self, chatbot_id: str, file_id: str) -> Iterator[None]:
        """Serialize job reads and writes for one file within this process."""

        key = (str(chatbot_id), str(file_id))
        with self._file_locks_guard:
            lock = self._file_locks.setdefault(key, threading.Lock())
        with lock:
            yield

    # Views --------------------------------------------------------------------

    def open_view(self, chatbot: Chatbot) -> KnowledgeView:
        with self._views_lock:
            view = self._views.get(chatbot.id)
        if view is not None:
            return view
        folder = self._resolver.resolve(chatbot)
        view = KnowledgeView(chatbot, folder)
        self.load(view)
        with self._views_lock:
            view = self._views.setdefault(chatbot.id, view)
        logger.info("jobs.view.opened chatbot=%s folder=%s", chatbot.id, folder.id)
        return view

    def view(self, chatbot_id: str) -> KnowledgeView | None:
        with self._views_lock:
            return self._views.get(chatbot_id)

    def close_view(self, chatbot_id: str) -> None:
        with self._views_lock:
            removed = self._views.pop(chatbot_id, None)
        if removed is not None:
            logger.info("jobs.view.closed chatbot=%s", chatbot_id)

    def load(self, view: KnowledgeView) -> bool:
        sequence = view.issue_sequence()
        files = [SourceFile.from_record(record) for record in self._store.list_files(view.folder.id)]
        jobs = self.list_jobs(view.chatbot_id)
        return view.apply_snapshot(sequence, files, jobs)

    def poll(self, view: KnowledgeView) -> bool:
        sequence = view.issue_sequence()
        jobs = self.list_jobs(view.chatbot_id)
        return view.apply_jobs(sequence, jobs)

    # Queries ------------------------------------------------------------------

    def list_jobs(self, chatbot_id: str) -> list[BuildJob]:
        jobs: list[BuildJob] = []
        for record in self._store.read_items(JOB_COLLECTION, filter={"llm_chatbot": chatbot_id}):
            try:
                jobs.append(BuildJob.from_record(record))
            except (KeyError, ValueError) as exc:
                logger.warning("jobs.record_skipped chatbot=%s id=%s error=%s", chatbot_id, record.get("id"), exc)
        return jobs

    def list_files(self, chatbot: Chatbot) -> list[TrackedFile]:
        view = self.view(chatbot.id)
        if view is None:
            folder = self._resolver.resolve(chatbot)
            view = KnowledgeView(chatbot, folder)
        self.load(view)
        return view.files()

    def find_job(self, chatbot_id: str, file_id: str) -> BuildJob | None:
        records = self._store.read_items(
            JOB_COLLECTION,
            filter={"llm_chatbot": chatbot_id, "llm_file": file_id},
        )
        jobs = []
        for record in records:
            try:
                jobs.append(BuildJob.from_record(record))
            except (KeyError, ValueError) as exc:
                logger.warning("jobs.record_skipped chatbot=%s id=%s error=%s", chatbot_id, record.get("id"), exc)
        return _index_jobs(jobs).get(file_id)

    def find_file(self, chatbot: Chatbot, file_id: str) -> SourceFile:
        view = self.view(chatbot.id)
        if view is not None:
            cached = view.file(file_id)
            if cached is not None:
                return cached
        folder = self._resolver.resolve(chatbot)
        for record in self._store.list_files(folder.id):
            if str(record.get("id")) == str(file_id):
                return SourceFile.from_record(record)
        raise NotFoundError(f"File {file_id} not found in {folder.path}")

    # Transitions --------------------------------------------------------------

    def request_build(self, chatbot: Chatbot, file_id: str) -> BuildJob:
        file = self.find_file(chatbot, file_id)
        with self.file_lock(chatbot.id, file_id):
            return self._build_locked(chatbot, file)

    def _build_locked(self, chatbot: Chatbot, file: SourceFile) -> BuildJob:
        file_id = file.id
        job = self.find_job(chatbot.id, file_id)
        status = job.status if job is not None else BuildStatus.IDLE
        try:
            target = check_build(status, tabular=self.is_tabular(file))
        except BuildInFlightError:
            logger.info("jobs.build.noop chatbot=%s file=%s status=%s", chatbot.id, file_id, status.value)
            self._count("jobs.build_requests", outcome="noop")
            assert job is not None
            return job

        if job is None:
            record = self._store.create_item(
                JOB_COLLECTION,
                {"llm_chatbot": chatbot.id, "llm_file": file_id, "llm_status": target.value},
            )
        else:
            record = self._store.update_item(
                JOB_COLLECTION,
                job.id,
                {"llm_status": target.value, "llm_error": None},
            )
        updated = BuildJob.from_record(record)
        self._remember(chatbot.id, updated)
        logger.info(
            "jobs.build.requested chatbot=%s file=%s job=%s from=%s",
            chatbot.id,
            file_id,
            updated.id,
            status.value,
        )
        self._count("jobs.build_requests", outcome="retry" if status is BuildStatus.ERROR else "started")
        return updated

    def request_pause(self, chatbot: Chatbot, file_id: str) -> BuildJob | None:
        with self.file_lock(chatbot.id, file_id):
            return self._pause_locked(chatbot, file_id)

    def _pause_locked(self, chatbot: Chatbot, file_id: str) -> BuildJob | None:
        job = self.find_job(chatbot.id, file_id)
        if job is None or not job.status.in_flight:
            logger.info(
                "jobs.pause.noop chatbot=%s file=%s status=%s",
                chatbot.id,
                file_id,
                job.status.value if job is not None else BuildStatus.IDLE.value,
            )
            self._count("jobs.pause_requests", outcome="noop")
            return job
        record = self._store.update_item(JOB_COLLECTION, job.id, {"llm_status": BuildStatus.READY.value})
        updated = BuildJob.from_record(record)
        self._remember(chatbot.id, updated)
        logger.info("jobs.pause.requested chatbot=%s file=%s job=%s", chatbot.id, file_id, job.id)
        self._count("jobs.pause_requests", outcome="paused")
        return updated

    def delete_file(self, chatbot: Chatbot, file_id: str) -> bool:
        """Remove the file's job (if any) and then the file itself.

        Returns ``False`` when the file was already gone from the store.
        """

        with self.file_lock(chatbot.id, file_id):
            job = self.find_job(chatbot.id, file_id)
            if job is not None and not self._store.delete_item(JOB_COLLECTION, job.id):
                logger.info("jobs.delete.job_absent chatbot=%s job=%s", chatbot.id, job.id)
            removed = self._store.delete_file(file_id)
        if not removed:
            logger.info("jobs.delete.file_absent chatbot=%s file=%s", chatbot.id, file_id)
        view = self.view(chatbot.id)
        if view is not None:
            view.remove_file(file_id)
        logger.info("jobs.delete.completed chatbot=%s file=%s job=%s", chatbot.id, file_id, job.id if job else None)
        self._count("jobs.delete_requests", outcome="deleted" if removed else "absent")
        return removed

    def _remember(self, chatbot_id: str, job: BuildJob) -> None:
        view = self.view(chatbot_id)
        if view is not None:
            view.put_job(job)

    def _count(self, metric: str, **tags) -> None:
        if self._metrics is not None:
            self._metrics.increment(metric, **tags)


__all__ = [
    "DEFAULT_TABULAR_SUFFIXES",
    "BuildInFlightError",
    "FileAction",
    "check_build",
    "available_actions",
    "KnowledgeView",
    "BuildJobTracker",
]
