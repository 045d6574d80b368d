"""Job ledger: lifecycle owner for every generation request.

Each submitted job runs in its own asyncio task. All job mutation happens on
the event loop; blocking disk work (reference normalization, output writes,
activity snapshots) runs in the default thread executor and its results are
applied back on the loop.
"""

import asyncio
import logging
from typing import Dict, List, Optional, Set, Tuple

from imageforge.batch.orchestrator import BatchOrchestrator
from imageforge.errors import GenerationError, InvalidTransition, NoOutputError
from imageforge.jobs.models import Job, JobEvent, JobStatus
from imageforge.models.catalog import ModelCatalog, build_input
from imageforge.models.options import GenerationRequest
from imageforge.predictions.models import Prediction
from imageforge.storage.activity import ActivityLog, merge_activity
from imageforge.storage.assets import AssetStore, Provenance, StoredReference
from imageforge.storage.imaging import normalize_png

logger = logging.getLogger(__name__)


class JobLedger:
    """Tracks jobs, drives them through the orchestrator, persists outcomes."""

    def __init__(
        self,
        orchestrator: BatchOrchestrator,
        store: AssetStore,
        activity: Optional[ActivityLog] = None,
    ):
        self.orchestrator = orchestrator
        self.client = orchestrator.client
        self.catalog: ModelCatalog = orchestrator.catalog
        self.store = store
        self.activity = activity
        self._jobs: List[Job] = []
        self._tasks: Dict[str, asyncio.Task] = {}
        self._background: Set[asyncio.Task] = set()
        self._subscribers: List[asyncio.Queue] = []
        self._save_lock = asyncio.Lock()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        loop = asyncio.get_running_loop()
        reclaimed = await loop.run_in_executor(None, self.store.reclaim_orphans)
        if reclaimed:
            logger.info("Reclaimed %d orphaned sidecar(s)", len(reclaimed))
        await self.load_activity()

    async def stop(self) -> None:
        handles = [
            handle for job in self._jobs if job.is_active for handle in job.cancel_handles
        ]
        if handles:
            logger.info("Cancelling %d remote prediction(s) before shutdown", len(handles))
            await asyncio.gather(
                *(self.client.cancel(handle) for handle in handles), return_exceptions=True
            )

        tasks = list(self._tasks.values())
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        if self._background:
            await asyncio.gather(*self._background, return_exceptions=True)
        await self.save_activity()
        await self.client.aclose()

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def list_jobs(self) -> List[Job]:
        return list(self._jobs)

    def get(self, job_id: str) -> Optional[Job]:
        for job in self._jobs:
            if job.id == job_id:
                return job
        return None

    @property
    def running_job_count(self) -> int:
        return sum(1 for job in self._jobs if job.is_active)

    def estimated_duration(self, model_id: str) -> Optional[float]:
        """Mean seconds a completed job for this model took, if any finished."""
        durations = [
            job.elapsed_seconds for job in self._jobs
            if job.model_id == model_id
            and job.status == JobStatus.COMPLETED
            and job.started_at is not None
            and job.completed_at is not None
        ]
        if not durations:
            return None
        return sum(durations) / len(durations)

    async def wait(self, job_id: str) -> Optional[Job]:
        """Wait for a job's task to finish and return the job."""
        task = self._tasks.get(job_id)
        if task is not None:
            await asyncio.gather(task, return_exceptions=True)
        return self.get(job_id)

    # ------------------------------------------------------------------
    # Subscriptions
    # ------------------------------------------------------------------

    def subscribe(self) -> asyncio.Queue:
        queue: asyncio.Queue = asyncio.Queue()
        self._subscribers.append(queue)
        return queue

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def unsubscribe(self, queue: asyncio.Queue) -> None:
        if queue in self._subscribers:
            self._subscribers.remove(queue)

    def _publish(self, job: Job) -> None:
        event = JobEvent(job_id=job.id, status=job.status, error=job.error)
        for queue in self._subscribers:
            queue.put_nowait(event)

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    async def submit(self, request: GenerationRequest) -> Job:
        """Register a new job and start driving it in the background.

        Raises UnknownModel or InvalidRequest before anything is recorded.
        """
        request = self.catalog.normalize(request)
        job = Job(
            model_id=request.model_id,
            prompt=request.prompt,
            aspect_ratio=request.aspect_ratio,
            image_count=request.image_count,
            options=request.options,
        )
        self._jobs.insert(0, job)
        self._publish(job)
        logger.info("Job %s submitted (%s, %s)", job.id, job.model_id, job.settings_summary)

        task = asyncio.create_task(self._run(job, request))
        self._tasks[job.id] = task
        task.add_done_callback(lambda _: self._tasks.pop(job.id, None))
        return job

    def cancel_job(self, job_id: str) -> Job:
        """Mark a job cancelled now; cancel its remote predictions in the background."""
        job = self._require(job_id)
        if not job.is_active:
            raise InvalidTransition(job.status.value, JobStatus.CANCELLED.value)

        job.mark_cancelled()
        self._publish(job)
        logger.info("Job %s cancelled with %d remote prediction(s)", job.id, len(job.cancel_handles))

        for handle in list(job.cancel_handles):
            self._spawn(self.client.cancel(handle))
        self._spawn(self.save_activity())
        return job

    async def remove_job(self, job_id: str) -> None:
        job = self._require(job_id)
        if job.is_active:
            self.cancel_job(job_id)
        self._jobs = [j for j in self._jobs if j.id != job_id]
        await self.save_activity()

    # ------------------------------------------------------------------
    # Activity persistence
    # ------------------------------------------------------------------

    async def load_activity(self) -> None:
        if self.activity is None:
            return
        loop = asyncio.get_running_loop()
        loaded = await loop.run_in_executor(None, self.activity.load)
        self._jobs = merge_activity(self._jobs, loaded)
        logger.info("Loaded %d job(s) from activity history", len(loaded))

    async def save_activity(self) -> None:
        if self.activity is None:
            return
        loop = asyncio.get_running_loop()
        async with self._save_lock:
            snapshot = [job.model_copy(deep=True) for job in self._jobs if job.is_terminal]
            await loop.run_in_executor(None, self.activity.save, snapshot)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _require(self, job_id: str) -> Job:
        job = self.get(job_id)
        if job is None:
            raise KeyError(job_id)
        return job

    def _spawn(self, coro) -> None:
        task = asyncio.create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    def _register_handle(self, job: Job, prediction: Prediction) -> None:
        job.cancel_handles.append(prediction)
        if job.status == JobStatus.CANCELLED:
            # Created after the user cancelled; stop it right away.
            self._spawn(self.client.cancel(prediction))

    def _store_references(self, images: List[bytes]) -> List[Tuple[bytes, StoredReference]]:
        stored = []
        for data in images:
            png = normalize_png(data)
            stored.append((png, self.store.store_reference(png)))
        return stored

    async def _run(self, job: Job, request: GenerationRequest) -> None:
        loop = asyncio.get_running_loop()
        spec = self.catalog.get(job.model_id)
        try:
            refs: List[StoredReference] = []
            if request.reference_images:
                stored = await loop.run_in_executor(
                    None, self._store_references, request.reference_images
                )
                refs = [ref for _, ref in stored]
                job.reference_paths = [ref.path for ref in refs]
                job.reference_hashes = [ref.sha256 for ref in refs]
                request = request.model_copy(update={"reference_images": [png for png, _ in stored]})

            if job.is_terminal:
                return
            job.mark_running()
            self._publish(job)
            job.request_params = build_input(
                spec, request, request.image_count, references=job.reference_paths
            )

            images = await self.orchestrator.run(
                request, on_created=lambda p: self._register_handle(job, p)
            )
            if not images:
                raise NoOutputError()
            if job.is_terminal:
                logger.info("Discarding late result for %s job %s", job.status.value, job.id)
                return

            provenance = Provenance(
                prompt=job.prompt,
                model_id=job.model_id,
                aspect_ratio=job.aspect_ratio.value,
                image_count=job.image_count,
                options=job.options.model_dump(),
                reference_hashes=job.reference_hashes,
            )
            saved = await loop.run_in_executor(None, self.store.store_outputs, images, provenance)
            if job.is_terminal:
                logger.info("Job %s ended while saving; removing its outputs", job.id)
                await loop.run_in_executor(None, self.store.delete_outputs, saved.output_paths)
                return

            job.mark_completed(saved.output_paths, saved.thumbnail_paths)
            self._publish(job)
            logger.info("Job %s completed with %d image(s)", job.id, len(saved.output_paths))
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            if job.is_terminal:
                logger.info("Discarding late failure for %s job %s: %s", job.status.value, job.id, exc)
                return
            if isinstance(exc, GenerationError):
                logger.warning("Job %s failed: %s", job.id, exc)
                message = str(exc)
            else:
                logger.exception("Job %s failed unexpectedly", job.id)
                message = f"{type(exc).__name__}: {exc}"
            job.mark_failed(message)
            self._publish(job)
        finally:
            if job.is_terminal:
                job.cancel_handles.clear()
                await self.save_activity()
