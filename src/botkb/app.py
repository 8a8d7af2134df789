"""FastAPI application exposing the chatbot knowledge base operations."""

from __future__ import annotations

import asyncio
import logging

from fastapi import BackgroundTasks, Depends, FastAPI, File, HTTPException, Request, UploadFile
from fastapi.responses import JSONResponse, Response

from .config import Settings
from .errors import (
    ConfigError,
    ConflictError,
    KnowledgeBaseError,
    NotFoundError,
    NotReadyError,
    PurgeError,
    StoreError,
)
from .jobs import BuildJobTracker, available_actions
from .models import AccountProfile, Chatbot, TrackedFile
from .observability import MetricsRecorder
from .polling import JobPoller, ReconcileScheduler
from .purge import PurgeJobManager, run_purge_job
from .service import KnowledgeBase, build_knowledge_base
from .store import ItemStore

logger = logging.getLogger(__name__)

_ERROR_STATUS: dict[type[KnowledgeBaseError], int] = {
    ConfigError: 400,
    NotFoundError: 404,
    NotReadyError: 409,
    ConflictError: 409,
    StoreError: 502,
    PurgeError: 502,
}

_LOGGING_CONFIGURED = False


def _ensure_logging() -> None:
    global _LOGGING_CONFIGURED
    if _LOGGING_CONFIGURED:
        return

    package_logger = logging.getLogger("botkb")
    uvicorn_logger = logging.getLogger("uvicorn.error")

    handlers = list(uvicorn_logger.handlers)
    if handlers:
        package_logger.handlers = list(handlers)
    else:
        handler = logging.StreamHandler()
        handler.setLevel(logging.INFO)
        handler.setFormatter(logging.Formatter("%(asctime)s | %(levelname)s | %(name)s | %(message)s"))
        package_logger.addHandler(handler)

    if package_logger.level == logging.NOTSET or package_logger.level > logging.INFO:
        package_logger.setLevel(logging.INFO)
    package_logger.propagate = False
    _LOGGING_CONFIGURED = True


def _status_for(exc: KnowledgeBaseError) -> int:
    for exc_type in type(exc).__mro__:
        status = _ERROR_STATUS.get(exc_type)
        if status is not None:
            return status
    return 500


def _serialize_chatbot(chatbot: Chatbot) -> dict:
    return {
        "id": chatbot.id,
        "slug": chatbot.slug,
        "name": chatbot.name,
        "owner": chatbot.owner,
        "folder": {"id": chatbot.folder.id, "path": chatbot.folder.path} if chatbot.folder else None,
        "file_count": chatbot.file_count,
        "storage_mb": chatbot.storage_mb,
        "message_count": chatbot.message_count,
    }


def _serialize_file(item: TrackedFile, tracker: BuildJobTracker) -> dict:
    payload = item.to_dict()
    tabular = tracker.is_tabular(item.file)
    payload["tabular"] = tabular
    payload["actions"] = [action.value for action in available_actions(item, tabular=tabular)]
    return payload


def _serialize_profile(profile: AccountProfile | None) -> dict | None:
    return profile.to_dict() if profile is not None else None


class ApplicationState:
    """Container for runtime dependencies used by the FastAPI app."""

    def __init__(
        self,
        *,
        settings: Settings,
        knowledge_base: KnowledgeBase,
        poller: JobPoller,
        scheduler: ReconcileScheduler,
        purge_jobs: PurgeJobManager,
        metrics: MetricsRecorder | None,
    ) -> None:
        self.settings = settings
        self.knowledge_base = knowledge_base
        self.poller = poller
        self.scheduler = scheduler
        self.purge_jobs = purge_jobs
        self.metrics = metrics


def create_app(
    *,
    settings: Settings | None = None,
    store: ItemStore | None = None,
    knowledge_base: KnowledgeBase | None = None,
    metrics: MetricsRecorder | None = None,
    purge_jobs: PurgeJobManager | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application."""

    _ensure_logging()

    settings = settings or Settings.from_env()
    metrics = metrics or settings.build_metrics_recorder()
    knowledge_base = knowledge_base or build_knowledge_base(settings, store, metrics=metrics)
    poller = JobPoller(knowledge_base.tracker, interval=settings.poll_interval, metrics=metrics)
    scheduler = ReconcileScheduler(
        knowledge_base.chatbots,
        knowledge_base.reconciler,
        interval=settings.reconcile_interval,
    )
    purge_jobs = purge_jobs or PurgeJobManager()
    logger.info(
        "app.start store_backend=%s root_folder=%s poll_interval=%s",
        settings.store_backend,
        settings.root_folder,
        settings.poll_interval,
    )

    app = FastAPI(title="botkb")
    app.state.services = ApplicationState(
        settings=settings,
        knowledge_base=knowledge_base,
        poller=poller,
        scheduler=scheduler,
        purge_jobs=purge_jobs,
        metrics=metrics,
    )

    @app.on_event("startup")
    async def _start_reconcile_scheduler() -> None:
        scheduler.start()

    @app.on_event("shutdown")
    async def _shutdown_background_tasks() -> None:
        await poller.shutdown()
        await scheduler.shutdown()
        knowledge_base.store.close()

    @app.exception_handler(KnowledgeBaseError)
    async def _knowledge_base_error(request: Request, exc: KnowledgeBaseError) -> JSONResponse:
        status = _status_for(exc)
        logger.warning(
            "api.error path=%s status=%s type=%s detail=%s",
            request.url.path,
            status,
            type(exc).__name__,
            exc,
        )
        content: dict = {"detail": str(exc)}
        if isinstance(exc, PurgeError):
            content["failures"] = [failure.to_dict() for failure in exc.failures]
        return JSONResponse(status_code=status, content=content)

    def get_state(request: Request) -> ApplicationState:
        return request.app.state.services

    def get_knowledge_base(request: Request) -> KnowledgeBase:
        return request.app.state.services.knowledge_base

    def get_poller(request: Request) -> JobPoller:
        return request.app.state.services.poller

    def get_purge_jobs(request: Request) -> PurgeJobManager:
        return request.app.state.services.purge_jobs

    def get_metrics(request: Request) -> MetricsRecorder | None:
        return request.app.state.services.metrics

    @app.get("/health")
    def health(state: ApplicationState = Depends(get_state)) -> dict:
        return {"status": "ok", "store_backend": state.settings.store_backend}

    @app.post("/chatbots", status_code=201)
    async def create_chatbot(request: Request, kb: KnowledgeBase = Depends(get_knowledge_base)) -> dict:
        try:
            payload = await request.json()
        except ValueError as exc:
            raise HTTPException(status_code=400, detail="Invalid JSON payload") from exc
        if not isinstance(payload, dict):
            raise HTTPException(status_code=400, detail="Invalid payload")
        chatbot = await asyncio.to_thread(
            kb.create_chatbot,
            payload.get("owner"),
            str(payload.get("name") or ""),
            str(payload.get("slug") or ""),
            payload.get("business"),
        )
        return _serialize_chatbot(chatbot)

    @app.get("/chatbots/{chatbot_id}")
    def get_chatbot(chatbot_id: str, kb: KnowledgeBase = Depends(get_knowledge_base)) -> dict:
        return _serialize_chatbot(kb.chatbot(chatbot_id))

    @app.get("/chatbots/{chatbot_id}/files")
    def list_files(chatbot_id: str, kb: KnowledgeBase = Depends(get_knowledge_base)) -> dict:
        files = kb.list_files(chatbot_id)
        return {"chatbot_id": chatbot_id, "files": [_serialize_file(item, kb.tracker) for item in files]}

    @app.post("/chatbots/{chatbot_id}/files", status_code=201)
    async def upload_file(
        chatbot_id: str,
        file: UploadFile = File(...),
        kb: KnowledgeBase = Depends(get_knowledge_base),
    ) -> dict:
        if not file.filename:
            raise HTTPException(status_code=400, detail="File name is required")
        data = await file.read()
        try:
            source, job = await asyncio.to_thread(
                kb.upload,
                chatbot_id,
                filename=file.filename,
                data=data,
                content_type=file.content_type,
            )
        except ValueError as exc:
            logger.warning("api.upload.rejected chatbot=%s file=%s error=%s", chatbot_id, file.filename, exc)
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        return {
            "file": {
                "id": source.id,
                "name": source.name,
                "size": source.size,
                "uploaded_on": source.uploaded_on,
                "type": source.content_type,
            },
            "job": job.to_dict(),
        }

    @app.post("/chatbots/{chatbot_id}/files/{file_id}/build")
    def build_file(chatbot_id: str, file_id: str, kb: KnowledgeBase = Depends(get_knowledge_base)) -> dict:
        return {"job": kb.build(chatbot_id, file_id).to_dict()}

    @app.post("/chatbots/{chatbot_id}/files/{file_id}/pause")
    def pause_file(chatbot_id: str, file_id: str, kb: KnowledgeBase = Depends(get_knowledge_base)) -> dict:
        job = kb.pause(chatbot_id, file_id)
        return {"job": job.to_dict() if job is not None else None}

    @app.delete("/chatbots/{chatbot_id}/files/{file_id}")
    def delete_file(chatbot_id: str, file_id: str, kb: KnowledgeBase = Depends(get_knowledge_base)) -> dict:
        removed = kb.delete(chatbot_id, file_id)
        return {"file_id": file_id, "deleted": removed}

    @app.get("/chatbots/{chatbot_id}/summary")
    def summary(chatbot_id: str, kb: KnowledgeBase = Depends(get_knowledge_base)) -> dict:
        return {"chatbot_id": chatbot_id, **kb.summary(chatbot_id)}

    @app.post("/chatbots/{chatbot_id}/purge", status_code=202)
    def purge_chatbot(
        chatbot_id: str,
        background_tasks: BackgroundTasks,
        kb: KnowledgeBase = Depends(get_knowledge_base),
        purge_jobs: PurgeJobManager = Depends(get_purge_jobs),
    ) -> dict:
        chatbot = kb.chatbot(chatbot_id)
        job = purge_jobs.create_job(chatbot.id)
        background_tasks.add_task(run_purge_job, purge_jobs, job.id, chatbot, kb.purger, kb.reconciler)
        logger.info("api.purge.queued chatbot=%s job=%s", chatbot.id, job.id)
        return job.to_dict()

    @app.get("/chatbots/{chatbot_id}/purge/{job_id}")
    def purge_status(
        chatbot_id: str,
        job_id: str,
        purge_jobs: PurgeJobManager = Depends(get_purge_jobs),
    ) -> dict:
        job = purge_jobs.get(job_id)
        if job is None or job.chatbot_id != chatbot_id:
            raise HTTPException(status_code=404, detail="Purge job not found")
        return job.to_dict()

    @app.post("/chatbots/{chatbot_id}/reconcile")
    def reconcile_chatbot(chatbot_id: str, kb: KnowledgeBase = Depends(get_knowledge_base)) -> dict:
        return _serialize_chatbot(kb.reconcile(chatbot_id))

    @app.post("/accounts/{owner}/reconcile")
    def reconcile_account(owner: str, kb: KnowledgeBase = Depends(get_knowledge_base)) -> dict:
        profile = kb.reconcile_account(owner)
        return {"owner": owner, "profile": _serialize_profile(profile)}

    @app.post("/chatbots/{chatbot_id}/watch")
    async def watch_chatbot(
        chatbot_id: str,
        kb: KnowledgeBase = Depends(get_knowledge_base),
        poller: JobPoller = Depends(get_poller),
    ) -> dict:
        view = await asyncio.to_thread(kb.view, chatbot_id)
        poller.watch(view)
        return {"chatbot_id": chatbot_id, "watching": True, "interval": poller.interval}

    @app.delete("/chatbots/{chatbot_id}/watch")
    async def unwatch_chatbot(
        chatbot_id: str,
        kb: KnowledgeBase = Depends(get_knowledge_base),
        poller: JobPoller = Depends(get_poller),
    ) -> dict:
        stopped = await poller.unwatch(chatbot_id)
        kb.tracker.close_view(chatbot_id)
        return {"chatbot_id": chatbot_id, "watching": False, "stopped": stopped}

    @app.get("/metrics")
    async def metrics_endpoint(metrics: MetricsRecorder | None = Depends(get_metrics)) -> Response:
        if metrics is None or not metrics.prometheus_enabled:
            raise HTTPException(status_code=404, detail="Metrics export disabled")
        return Response(content=metrics.render_prometheus(), media_type=metrics.prometheus_content_type)

    return app


__all__ = ["ApplicationState", "create_app"]
