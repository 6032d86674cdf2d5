"""Run the generate, plan, reconcile and bind phases for every target."""

from __future__ import annotations

import asyncio
import logging
from contextlib import suppress
from dataclasses import asdict, dataclass, field
from typing import Any, Literal, Sequence

import httpx
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..config import Settings
from ..models import LibraryTarget, ReconcileResult, VirtualLibraryEntry
from ..utils import slugify
from .channels import (
    CandidatePipeline,
    ChannelNotFoundError,
    ChannelRecord,
    ChannelRepository,
    WatchHistoryStore,
)
from .library_binder import ExternalLibraryBinder
from .media_server import MediaServerProvider
from .planner import ArtifactPlanner, list_media_siblings
from .progress import JobProgress, JobRegistry, RunCancelled
from .reconciler import LibraryReconciler
from .runs import RunRecord, RunStore
from .sampler import DiversitySampler
from .similarity import SimilarityStore

logger = logging.getLogger(__name__)

TargetState = Literal["completed", "failed", "skipped", "cancelled"]


class SyncAlreadyRunningError(RuntimeError):
    """Raised when a pass is requested while another one is in flight."""


@dataclass(slots=True)
class TargetOutcome:
    channel_id: str
    owner_key: str | None = None
    state: TargetState = "failed"
    run_id: str | None = None
    created: int = 0
    updated: int = 0
    deleted: int = 0
    failed_artifacts: int = 0
    library_id: str | None = None
    error: str | None = None


@dataclass(slots=True)
class SyncSummary:
    success: int = 0
    failed: int = 0
    skipped: int = 0
    cancelled: bool = False
    job_id: str | None = None
    outcomes: list[TargetOutcome] = field(default_factory=list)

    def record(self, outcome: TargetOutcome) -> None:
        self.outcomes.append(outcome)
        if outcome.state == "completed":
            self.success += 1
        elif outcome.state == "failed":
            self.failed += 1
        elif outcome.state == "skipped":
            self.skipped += 1

    def to_payload(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "failed": self.failed,
            "skipped": self.skipped,
            "cancelled": self.cancelled,
            "jobId": self.job_id,
            "targets": [asdict(outcome) for outcome in self.outcomes],
        }


def owner_key_for(provider_user_id: str, channel_id: str) -> str:
    return f"{slugify(provider_user_id)}-{slugify(channel_id)}"


class SyncOrchestrator:
    """Sequential sync loop over channels with per-owner reconciliation locks."""

    def __init__(
        self,
        settings: Settings,
        session_factory: async_sessionmaker[AsyncSession],
        provider: MediaServerProvider,
        http_client: httpx.AsyncClient | None = None,
        *,
        registry: JobRegistry | None = None,
        sampler: DiversitySampler | None = None,
    ):
        self._settings = settings
        self._provider = provider
        self._registry = registry or JobRegistry()
        self._channels = ChannelRepository(session_factory)
        self._runs = RunStore(session_factory)
        self._pipeline = CandidatePipeline(
            settings,
            self._channels,
            SimilarityStore(session_factory),
            WatchHistoryStore(session_factory),
            sampler,
        )
        self._reconciler = LibraryReconciler(
            settings.strm_root,
            http_client,
            file_batch_size=settings.file_batch_size,
            image_batch_size=settings.image_batch_size,
        )
        self._binder = ExternalLibraryBinder(provider, session_factory)
        self._owner_locks: dict[str, asyncio.Lock] = {}
        self._pass_lock = asyncio.Lock()
        self._sync_task: asyncio.Task[None] | None = None
        self._background_jobs: set[asyncio.Task[None]] = set()

    @property
    def registry(self) -> JobRegistry:
        return self._registry

    @property
    def is_running(self) -> bool:
        return self._pass_lock.locked() or self._registry.active() is not None

    async def start(self) -> None:
        """Launch the periodic sync loop unless it is disabled."""

        if self._settings.sync_interval_seconds <= 0:
            logger.info("Periodic sync disabled")
            return
        if self._sync_task is None:
            self._sync_task = asyncio.create_task(self._sync_loop())

    async def stop(self) -> None:
        """Stop the loop and any pass started through the API."""

        tasks = list(self._background_jobs)
        if self._sync_task is not None:
            tasks.append(self._sync_task)
        for task in tasks:
            task.cancel()
        for task in tasks:
            with suppress(asyncio.CancelledError):
                await task
        self._sync_task = None
        self._background_jobs.clear()

    async def _sync_loop(self) -> None:
        while True:
            await asyncio.sleep(self._settings.sync_interval_seconds)
            if self.is_running:
                logger.info("Skipping scheduled sync; a pass is already running")
                continue
            try:
                summary = await self.run_all()
                logger.info(
                    "Scheduled sync finished: %d succeeded, %d failed",
                    summary.success,
                    summary.failed,
                )
            except Exception as exc:  # pragma: no cover - background safety net
                logger.exception("Scheduled sync failed: %s", exc)

    def start_background_pass(
        self, *, regenerate: bool = True, channel_id: str | None = None
    ) -> JobProgress:
        """Start a pass as a task and return its job handle immediately."""

        if self.is_running:
            raise SyncAlreadyRunningError("A sync pass is already running")
        job = self._registry.create_run("sync", 1)

        async def _runner() -> None:
            try:
                if channel_id:
                    await self.run_channel(channel_id, job=job, regenerate=regenerate)
                else:
                    await self.run_all(job=job, regenerate=regenerate)
            except Exception as exc:  # pragma: no cover - background safety net
                logger.exception("Sync job %s failed: %s", job.id, exc)
                job.fail(str(exc))

        task = asyncio.create_task(_runner())
        self._background_jobs.add(task)
        task.add_done_callback(self._background_jobs.discard)
        return job

    async def run_all(
        self, job: JobProgress | None = None, regenerate: bool = True
    ) -> SyncSummary:
        async with self._pass_lock:
            records = await self._channels.list_active()
            return await self._run(records, job, regenerate)

    async def run_channel(
        self,
        channel_id: str,
        job: JobProgress | None = None,
        regenerate: bool = True,
    ) -> SyncSummary:
        async with self._pass_lock:
            try:
                record = await self._channels.load(channel_id)
            except ChannelNotFoundError as exc:
                job = job or self._registry.create_run("sync", 1)
                summary = SyncSummary(job_id=job.id)
                summary.record(TargetOutcome(channel_id=channel_id, error=str(exc)))
                job.fail(str(exc))
                return summary
            return await self._run([record], job, regenerate)

    async def _run(
        self,
        records: list[ChannelRecord],
        job: JobProgress | None,
        regenerate: bool,
    ) -> SyncSummary:
        job = job or self._registry.create_run("sync", len(records))
        job.total_steps = max(len(records), 1)
        summary = SyncSummary(job_id=job.id)
        job.add_log("info", f"Syncing {len(records)} channel(s)")

        for index, record in enumerate(records):
            target = self.target_for(record)
            job.set_step(index, f"{target.display_name} / {target.channel_name}")
            try:
                outcome = await self._sync_target(record, target, job, regenerate)
            except RunCancelled:
                summary.cancelled = True
                summary.record(
                    TargetOutcome(
                        channel_id=target.channel_id,
                        owner_key=target.owner_key,
                        state="cancelled",
                    )
                )
                job.add_log("warning", "Sync cancelled")
                job.mark_cancelled()
                break
            summary.record(outcome)

        if not summary.cancelled:
            job.add_log(
                "info",
                f"Sync finished: {summary.success} succeeded, {summary.failed} failed, "
                f"{summary.skipped} skipped",
            )
            job.complete(summary.to_payload())
        else:
            job.result = summary.to_payload()
        return summary

    def target_for(self, record: ChannelRecord) -> LibraryTarget:
        taste = record.taste
        return LibraryTarget(
            owner_key=owner_key_for(record.provider_user_id, taste.channel_id),
            channel_id=taste.channel_id,
            channel_name=taste.name,
            owner_id=taste.owner_id,
            provider_user_id=record.provider_user_id,
            display_name=record.owner_display_name,
            media_type=taste.media_type,
            library_name=record.library_name,
        )

    def library_name(self, target: LibraryTarget) -> str:
        if target.library_name:
            return target.library_name
        return (
            f"{self._settings.library_name_prefix}"
            f"{target.display_name} - {target.channel_name}"
        )

    def library_path(self, target: LibraryTarget) -> str:
        return f"{self._settings.library_path_prefix.rstrip('/')}/{target.owner_key}"

    def planner(self) -> ArtifactPlanner:
        return ArtifactPlanner(
            stream_url=self._provider.get_stream_url if self._provider.has_api_key else None,
            use_streaming_url=self._settings.use_streaming_url,
            download_images=self._settings.download_images,
            interval_seconds=self._settings.date_added_interval_seconds,
            use_symlinks=self._settings.use_symlinks,
            list_siblings=list_media_siblings if self._settings.use_symlinks else None,
        )

    async def reconcile_locked(
        self,
        owner_key: str,
        entries: Sequence[VirtualLibraryEntry],
        job: JobProgress | None = None,
    ) -> ReconcileResult:
        """Reconcile one target while holding its owner's lock."""

        lock = self._owner_locks.setdefault(owner_key, asyncio.Lock())
        async with lock:
            return await self._reconciler.reconcile(owner_key, entries, progress=job)

    async def _sync_target(
        self,
        record: ChannelRecord,
        target: LibraryTarget,
        job: JobProgress,
        regenerate: bool,
    ) -> TargetOutcome:
        outcome = TargetOutcome(channel_id=target.channel_id, owner_key=target.owner_key)
        run: RunRecord | None = None
        try:
            if regenerate:
                run = await self._runs.create(record.taste)
                outcome.run_id = run.id
                job.raise_if_cancelled()
                try:
                    selected = await self._pipeline.generate(target.channel_id)
                except Exception as exc:
                    await self._runs.fail(run.id, str(exc))
                    raise
                await self._runs.complete(run.id, selected)
                job.add_log(
                    "info", f"Generated {len(selected)} picks for {target.channel_name}"
                )
            job.raise_if_cancelled()

            selection = await self._runs.latest_selection(target.channel_id)
            if selection is None:
                job.add_log(
                    "warning",
                    f"No completed run for {target.channel_name}; leaving library untouched",
                )
                outcome.state = "skipped"
                return outcome
            outcome.run_id = selection.run_id

            # Sibling discovery for symlinked movies touches the filesystem.
            entries = await asyncio.to_thread(
                self.planner().plan,
                target.owner_key,
                selection.candidates,
                selection.metadata,
                anchor=selection.created_at,
            )
            result = await self.reconcile_locked(target.owner_key, entries, job)
            outcome.created = result.created
            outcome.updated = result.updated
            outcome.deleted = result.deleted
            outcome.failed_artifacts = result.failed
            job.raise_if_cancelled()

            handle = await self._binder.ensure_bound(
                target, self.library_name(target), self.library_path(target)
            )
            outcome.library_id = handle.library_id
            outcome.state = "completed"
            job.add_log(
                "info",
                f"{target.channel_name}: {result.created} created, {result.updated} updated, "
                f"{result.deleted} deleted, {result.failed} failed",
            )
        except RunCancelled:
            if run is not None:
                await self._runs.cancel(run.id)
            raise
        except Exception as exc:
            logger.exception("Sync failed for channel %s", target.channel_id)
            outcome.state = "failed"
            outcome.error = str(exc)
            job.add_log("error", f"{target.channel_name}: {exc}")
        return outcome
