"""Background tasks: per-chatbot job polling and the stats backstop."""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Dict, Sequence

from .chatbots import ChatbotService
from .errors import KnowledgeBaseError
from .jobs import BuildJobTracker, KnowledgeView
from .models import BuildJob
from .observability import MetricsRecorder
from .stats import StatsReconciler

logger = logging.getLogger(__name__)

JobFetcher = Callable[[KnowledgeView], Awaitable[Sequence[BuildJob]]]


class JobPoller:
    """Re-list a watched chatbot's jobs on a fixed interval.

    Each watched view owns one task; results are applied through the view's
    sequence check so a slow poll never overwrites a newer state.
    """

    def __init__(
        self,
        tracker: BuildJobTracker,
        *,
        interval: float = 5.0,
        metrics: MetricsRecorder | None = None,
        fetch_jobs: JobFetcher | None = None,
    ) -> None:
        self._tracker = tracker
        self._interval = max(float(interval), 0.0)
        self._metrics = metrics
        self._fetch_jobs = fetch_jobs or self._fetch_from_store
        self._tasks: Dict[str, asyncio.Task] = {}

    @property
    def interval(self) -> float:
        return self._interval

    def is_watching(self, chatbot_id: str) -> bool:
        task = self._tasks.get(chatbot_id)
        return task is not None and not task.done()

    def watch(self, view: KnowledgeView) -> asyncio.Task:
        existing = self._tasks.get(view.chatbot_id)
        if existing is not None and not existing.done():
            return existing
        task = asyncio.create_task(self._run(view), name=f"botkb-poll-{view.chatbot_id}")
        self._tasks[view.chatbot_id] = task
        logger.info("polling.watch.started chatbot=%s interval=%s", view.chatbot_id, self._interval)
        return task

    async def unwatch(self, chatbot_id: str) -> bool:
        task = self._tasks.pop(chatbot_id, None)
        if task is None:
            return False
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)
        logger.info("polling.watch.stopped chatbot=%s", chatbot_id)
        return True

    async def shutdown(self) -> None:
        tasks = list(self._tasks.values())
        self._tasks.clear()
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    async def poll_once(self, view: KnowledgeView) -> bool:
        """Fetch and apply one job listing; return whether it was applied."""

        sequence = view.issue_sequence()
        try:
            jobs = await self._fetch_jobs(view)
        except Exception as exc:
            logger.warning("polling.poll.failed chatbot=%s sequence=%s error=%s", view.chatbot_id, sequence, exc)
            self._count("polling.failures")
            return False
        applied = view.apply_jobs(sequence, jobs)
        self._count("polling.cycles", outcome="applied" if applied else "stale")
        return applied

    async def _run(self, view: KnowledgeView) -> None:
        while True:
            await self.poll_once(view)
            await asyncio.sleep(self._interval)

    async def _fetch_from_store(self, view: KnowledgeView) -> Sequence[BuildJob]:
        return await asyncio.to_thread(self._tracker.list_jobs, view.chatbot_id)

    def _count(self, metric: str, **tags) -> None:
        if self._metrics is not None:
            self._metrics.increment(metric, **tags)


class ReconcileScheduler:
    """Periodically reconcile every chatbot and then every account once."""

    def __init__(
        self,
        chatbots: ChatbotService,
        reconciler: StatsReconciler,
        *,
        interval: float = 300.0,
    ) -> None:
        self._chatbots = chatbots
        self._reconciler = reconciler
        self._interval = float(interval)
        self._task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self._interval <= 0 or self.running:
            return
        self._task = asyncio.create_task(self._run(), name="botkb-reconcile")
        logger.info("stats.scheduler.started interval=%s", self._interval)

    async def shutdown(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)

    def run_once(self) -> int:
        """Reconcile all chatbots, then each owning account; return failures."""

        failures = 0
        owners: set[str] = set()
        for chatbot in self._chatbots.list_chatbots():
            if chatbot.owner:
                owners.add(chatbot.owner)
            try:
                self._reconciler.reconcile(chatbot, cascade=False)
            except KnowledgeBaseError as exc:
                failures += 1
                logger.warning("stats.scheduler.chatbot_failed chatbot=%s error=%s", chatbot.id, exc)
        for owner in sorted(owners):
            try:
                self._reconciler.reconcile_account(owner)
            except KnowledgeBaseError as exc:
                failures += 1
                logger.warning("stats.scheduler.account_failed owner=%s error=%s", owner, exc)
        logger.info("stats.scheduler.pass accounts=%s failures=%s", len(owners), failures)
        return failures

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self._interval)
            try:
                await asyncio.to_thread(self.run_once)
            except Exception:
                logger.exception("stats.scheduler.pass_failed interval=%s", self._interval)


__all__ = ["JobPoller", "ReconcileScheduler"]
