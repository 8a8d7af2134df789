"""Bulk removal of a chatbot's build jobs and source files."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
import logging
import threading
from typing import TYPE_CHECKING, Dict, List
from uuid import uuid4

from .errors import ConflictError, DeleteFailure, KnowledgeBaseError, PurgeError, StoreError
from .jobs import BuildJobTracker
from .models import JOB_COLLECTION, Chatbot, SourceFile
from .observability import MetricsRecorder
from .resolver import StorageResolver
from .store import ItemStore

if TYPE_CHECKING:  # pragma: no cover - type checking only
    from .stats import StatsReconciler

logger = logging.getLogger(__name__)

_PURGE_STEPS: List[tuple[str, str]] = [
    ("delete_jobs", "Build jobs"),
    ("delete_files", "Source files"),
    ("reconcile_stats", "Usage statistics"),
]


def _now() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds")


@dataclass(slots=True)
class PurgeReport:
    chatbot_id: str
    jobs_deleted: int = 0
    jobs_absent: int = 0
    files_deleted: int = 0
    files_absent: int = 0
    failures: list[DeleteFailure] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failures

    def to_dict(self) -> dict:
        return {
            "chatbot_id": self.chatbot_id,
            "jobs_deleted": self.jobs_deleted,
            "jobs_absent": self.jobs_absent,
            "files_deleted": self.files_deleted,
            "files_absent": self.files_absent,
            "failures": [failure.to_dict() for failure in self.failures],
        }


class PurgeCoordinator:
    """Delete every job of a chatbot, then every file in its folder.

    Each delete tolerates an already-absent id. Failures are collected and
    raised together as :class:`PurgeError` once every item was attempted. The
    folder itself is kept.
    """

    def __init__(
        self,
        store: ItemStore,
        tracker: BuildJobTracker,
        resolver: StorageResolver,
        *,
        metrics: MetricsRecorder | None = None,
    ) -> None:
        self._store = store
        self._tracker = tracker
        self._resolver = resolver
        self._metrics = metrics

    def delete_jobs(self, chatbot: Chatbot, report: PurgeReport) -> set[str]:
        """Delete all jobs and return the file ids whose job could not be removed."""

        blocked: set[str] = set()
        for job in self._tracker.list_jobs(chatbot.id):
            try:
                removed = self._store.delete_item(JOB_COLLECTION, job.id)
            except StoreError as exc:
                logger.warning("purge.job_failed chatbot=%s job=%s error=%s", chatbot.id, job.id, exc)
                report.failures.append(DeleteFailure(kind="job", item_id=job.id, error=str(exc)))
                blocked.add(job.file_id)
                continue
            if removed:
                report.jobs_deleted += 1
            else:
                report.jobs_absent += 1
        return blocked

    def delete_files(self, chatbot: Chatbot, report: PurgeReport, *, skip: set[str] | None = None) -> None:
        folder = self._resolver.resolve(chatbot)
        skip = skip or set()
        for record in self._store.list_files(folder.id):
            file = SourceFile.from_record(record)
            if file.id in skip:
                report.failures.append(
                    DeleteFailure(kind="file", item_id=file.id, error="build job could not be deleted")
                )
                continue
            try:
                removed = self._store.delete_file(file.id)
            except StoreError as exc:
                logger.warning("purge.file_failed chatbot=%s file=%s error=%s", chatbot.id, file.id, exc)
                report.failures.append(DeleteFailure(kind="file", item_id=file.id, error=str(exc)))
                continue
            if removed:
                report.files_deleted += 1
            else:
                report.files_absent += 1

    def purge(self, chatbot: Chatbot) -> PurgeReport:
        report = PurgeReport(chatbot_id=chatbot.id)
        blocked = self.delete_jobs(chatbot, report)
        self.delete_files(chatbot, report, skip=blocked)
        self.finish(chatbot, report)
        if report.failures:
            raise PurgeError(chatbot.id, report.failures)
        return report

    def finish(self, chatbot: Chatbot, report: PurgeReport) -> None:
        view = self._tracker.view(chatbot.id)
        if view is not None:
            try:
                self._tracker.load(view)
            except KnowledgeBaseError as exc:
                logger.warning("purge.view_refresh_failed chatbot=%s error=%s", chatbot.id, exc)
        logger.info(
            "purge.completed chatbot=%s jobs=%s files=%s failures=%s",
            chatbot.id,
            report.jobs_deleted,
            report.files_deleted,
            len(report.failures),
        )
        if self._metrics is not None:
            self._metrics.increment("purge.deleted", value=report.jobs_deleted, kind="job")
            self._metrics.increment("purge.deleted", value=report.files_deleted, kind="file")
            if report.failures:
                self._metrics.increment("purge.failures", value=len(report.failures))


@dataclass
class PurgeJobStep:
    name: str
    label: str
    status: str = "pending"
    error: str | None = None
    details: str | None = None
    started_at: str | None = None
    finished_at: str | None = None

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "label": self.label,
            "status": self.status,
            "error": self.error,
            "details": self.details,
            "started_at": self.started_at,
            "finished_at": self.finished_at,
        }


@dataclass
class PurgeJob:
    id: str
    chatbot_id: str
    status: str
    created_at: str
    updated_at: str
    error: str | None = None
    report: PurgeReport | None = None
    steps: list[PurgeJobStep] = field(default_factory=list)

    @property
    def active(self) -> bool:
        return self.status in {"queued", "running"}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "chatbot_id": self.chatbot_id,
            "status": self.status,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
            "error": self.error,
            "report": self.report.to_dict() if self.report is not None else None,
            "steps": [step.to_dict() for step in self.steps],
        }

    def get_step(self, name: str) -> PurgeJobStep | None:
        return next((step for step in self.steps if step.name == name), None)


class PurgeJobManager:
    """Track background purges; a chatbot has at most one active purge."""

    def __init__(self) -> None:
        self._jobs: Dict[str, PurgeJob] = {}
        self._chatbot_jobs: Dict[str, list[str]] = {}
        self._lock = threading.Lock()

    def create_job(self, chatbot_id: str) -> PurgeJob:
        with self._lock:
            for job_id in self._chatbot_jobs.get(chatbot_id, ()):
                if self._jobs[job_id].active:
                    raise ConflictError(f"Purge already running for chatbot {chatbot_id}")
            now = _now()
            job = PurgeJob(
                id=uuid4().hex,
                chatbot_id=chatbot_id,
                status="queued",
                created_at=now,
                updated_at=now,
                steps=[PurgeJobStep(name=name, label=label) for name, label in _PURGE_STEPS],
            )
            self._jobs[job.id] = job
            self._chatbot_jobs.setdefault(chatbot_id, []).insert(0, job.id)
            return job

    def get(self, job_id: str) -> PurgeJob | None:
        with self._lock:
            return self._jobs.get(job_id)

    def list_for_chatbot(self, chatbot_id: str) -> list[PurgeJob]:
        with self._lock:
            return [self._jobs[job_id] for job_id in self._chatbot_jobs.get(chatbot_id, ())]

    def mark_running(self, job_id: str) -> None:
        self._update(job_id, status="running")

    def mark_completed(self, job_id: str, report: PurgeReport) -> None:
        self._update(job_id, status="completed", report=report)

    def mark_failed(self, job_id: str, error: str, report: PurgeReport | None = None) -> None:
        self._update(job_id, status="failed", error=error, report=report)

    def mark_step(self, job_id: str, step_name: str, status: str, *, error: str | None = None, details: str | None = None) -> None:
        with self._lock:
            job = self._jobs.get(job_id)
            step = job.get_step(step_name) if job else None
            if job is None or step is None:
                return
            now = _now()
            step.status = status
            if status == "running" and not step.started_at:
                step.started_at = now
            if status in {"completed", "failed"}:
                step.finished_at = now
                step.error = error
                step.details = details
            job.updated_at = now

    def _update(self, job_id: str, **changes) -> None:
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None:
                return
            for key, value in changes.items():
                setattr(job, key, value)
            job.updated_at = _now()


def run_purge_job(
    manager: PurgeJobManager,
    job_id: str,
    chatbot: Chatbot,
    coordinator: PurgeCoordinator,
    reconciler: "StatsReconciler",
) -> None:
    """Run the purge steps in order, recording progress on ``manager``."""

    report = PurgeReport(chatbot_id=chatbot.id)
    try:
        _run_purge_steps(manager, job_id, chatbot, coordinator, reconciler, report)
    except Exception as exc:
        logger.exception("purge.job.unexpected_error chatbot=%s job=%s", chatbot.id, job_id)
        job = manager.get(job_id)
        for step in job.steps if job is not None else ():
            if step.status == "running":
                manager.mark_step(job_id, step.name, "failed", error=str(exc))
        manager.mark_failed(job_id, f"Unexpected purge failure: {exc}", report)


def _run_purge_steps(
    manager: PurgeJobManager,
    job_id: str,
    chatbot: Chatbot,
    coordinator: PurgeCoordinator,
    reconciler: "StatsReconciler",
    report: PurgeReport,
) -> None:
    manager.mark_running(job_id)
    logger.info("purge.job.started chatbot=%s job=%s", chatbot.id, job_id)

    manager.mark_step(job_id, "delete_jobs", "running")
    try:
        blocked = coordinator.delete_jobs(chatbot, report)
    except KnowledgeBaseError as exc:
        logger.warning("purge.job.list_jobs_failed chatbot=%s job=%s error=%s", chatbot.id, job_id, exc)
        manager.mark_step(job_id, "delete_jobs", "failed", error=str(exc))
        manager.mark_failed(job_id, f"Listing build jobs failed: {exc}", report)
        return
    manager.mark_step(job_id, "delete_jobs", "completed", details=f"{report.jobs_deleted} deleted")

    manager.mark_step(job_id, "delete_files", "running")
    try:
        coordinator.delete_files(chatbot, report, skip=blocked)
    except KnowledgeBaseError as exc:
        logger.warning("purge.job.list_files_failed chatbot=%s job=%s error=%s", chatbot.id, job_id, exc)
        manager.mark_step(job_id, "delete_files", "failed", error=str(exc))
        manager.mark_failed(job_id, f"Listing source files failed: {exc}", report)
        return
    manager.mark_step(job_id, "delete_files", "completed", details=f"{report.files_deleted} deleted")

    manager.mark_step(job_id, "reconcile_stats", "running")
    try:
        reconciler.reconcile(chatbot)
    except KnowledgeBaseError as exc:
        logger.warning("purge.job.reconcile_failed chatbot=%s job=%s error=%s", chatbot.id, job_id, exc)
        manager.mark_step(job_id, "reconcile_stats", "failed", error=str(exc))
    else:
        manager.mark_step(job_id, "reconcile_stats", "completed")

    coordinator.finish(chatbot, report)
    if report.failures:
        manager.mark_failed(job_id, str(PurgeError(chatbot.id, report.failures)), report)
        return
    manager.mark_completed(job_id, report)
    logger.info("purge.job.completed chatbot=%s job=%s", chatbot.id, job_id)


__all__ = [
    "PurgeReport",
    "PurgeCoordinator",
    "PurgeJob",
    "PurgeJobStep",
    "PurgeJobManager",
    "run_purge_job",
]
