import asyncio
import logging
from pathlib import Path
from typing import Any, Callable, Optional, Tuple

from config import (
    TMP_DIR, OUTPUT_EXTENSION, FETCH_TIMEOUT_SECONDS,
    DEADLINE_FLOOR_SECONDS, DEADLINE_MULTIPLIER,
    STALL_SAMPLE_INTERVAL, STALL_SAMPLE_LIMIT, SEEK_TOLERANCE_SECONDS,
)
from core.artifacts import ensure_temp_dir, is_usable_artifact, remove_artifact
from core.errors import (
    CleanupError, FetchError, JobTimeoutError, PipelineError, UploadError, WorkerError,
)
from core.media_processor import TranscodeWorker, parse_timemark
from core.watchers import DeadlineTimer, StallDetector, compute_deadline
from schemas.models import (
    Job, JobState, TerminationReason, Trigger, WorkerEvent, WorkerEventKind,
)

logger = logging.getLogger(__name__)


class Arbiter:
    """Commit-once guard: the first trigger resolves the transcode, later ones are dropped."""

    def __init__(self):
        self._outcome: asyncio.Future = asyncio.get_running_loop().create_future()

    @property
    def resolved(self) -> bool:
        return self._outcome.done()

    def commit(self, trigger: Trigger, detail: Any = None) -> bool:
        if self._outcome.done():
            logger.debug(f"Ignoring late trigger {trigger.value}")
            return False
        self._outcome.set_result((trigger, detail))
        return True

    async def wait(self) -> Tuple[Trigger, Any]:
        return await self._outcome


class _TranscodeRun:
    """Per-job wiring of one worker, the deadline timer and the stall detector."""

    def __init__(self, manager: "JobManager", job: Job):
        self.job = job
        self.arbiter = Arbiter()
        self.position: Optional[float] = None
        self.stop_position = job.start_offset + job.duration - manager.seek_tolerance
        self.worker = manager.worker_factory(
            job.artifact_path, job.start_offset, job.duration, self.on_event,
        )
        self.deadline = DeadlineTimer(
            compute_deadline(job.duration, manager.deadline_floor, manager.deadline_multiplier),
            lambda: self._force_terminate(TerminationReason.DEADLINE),
        )
        self.stall = StallDetector(
            lambda: self.position,
            lambda: self._force_terminate(TerminationReason.STALLED),
            interval=manager.stall_interval,
            limit=manager.stall_limit,
        )

    def on_event(self, event: WorkerEvent) -> None:
        if event.kind is WorkerEventKind.PROGRESS:
            position = parse_timemark(event.timemark or "")
            if position is None:
                return
            if self.position is None or position > self.position:
                self.position = position
            if position >= self.stop_position:
                self._force_terminate(TerminationReason.TARGET_REACHED)
        elif event.kind is WorkerEventKind.END:
            self.arbiter.commit(Trigger.COMPLETED)
        elif event.kind is WorkerEventKind.ERROR:
            logger.error(f"FFmpeg error for job {self.job.id}: {event.error}")
            self.arbiter.commit(Trigger.WORKER_ERROR, event.error)

    def _force_terminate(self, reason: TerminationReason) -> None:
        """Shared path for deadline, stall and early stop."""
        if not self.arbiter.commit(Trigger.FORCED, reason):
            return
        self.job.termination_reason = reason
        log = logger.info if reason is TerminationReason.TARGET_REACHED else logger.warning
        log(f"Job {self.job.id}: stopping worker ({reason.value}, position={self.position})")
        self.worker.stop()

    def _on_worker_exit(self, task: asyncio.Task) -> None:
        if task.cancelled() or self.arbiter.resolved:
            return
        error = task.exception() or WorkerError("Worker exited without reporting an outcome")
        self.arbiter.commit(Trigger.WORKER_ERROR, error)

    async def execute(self, chunks) -> Tuple[Trigger, Any]:
        worker_task = asyncio.create_task(self.worker.run(chunks))
        worker_task.add_done_callback(self._on_worker_exit)
        self.deadline.start()
        self.stall.start()
        try:
            return await self.arbiter.wait()
        finally:
            self.deadline.cancel()
            self.stall.cancel()
            if not worker_task.done():
                self.worker.stop()
            await asyncio.gather(worker_task, return_exceptions=True)


class JobManager:
    """
    Runs one bounded extraction per call to run(): fetch, transcode under a
    deadline and stall watch, salvage, upload, and always clean up.
    """

    def __init__(
        self,
        fetcher,
        uploader,
        worker_factory: Callable[..., TranscodeWorker] = TranscodeWorker,
        temp_dir: Path = TMP_DIR,
        *,
        fetch_timeout: float = FETCH_TIMEOUT_SECONDS,
        deadline_floor: float = DEADLINE_FLOOR_SECONDS,
        deadline_multiplier: float = DEADLINE_MULTIPLIER,
        stall_interval: float = STALL_SAMPLE_INTERVAL,
        stall_limit: int = STALL_SAMPLE_LIMIT,
        seek_tolerance: float = SEEK_TOLERANCE_SECONDS,
    ):
        self.fetcher = fetcher
        self.uploader = uploader
        self.worker_factory = worker_factory
        self.temp_dir = temp_dir
        self.fetch_timeout = fetch_timeout
        self.deadline_floor = deadline_floor
        self.deadline_multiplier = deadline_multiplier
        self.stall_interval = stall_interval
        self.stall_limit = stall_limit
        self.seek_tolerance = seek_tolerance

    def create_job(self, source_url: str, start: int, end: int) -> Job:
        if start < 0 or end <= start:
            raise ValueError(f"Invalid chunk range [{start}, {end})")
        job = Job(source_url=source_url, start_offset=start, end_offset=end)
        job.artifact_path = self.temp_dir / f"{job.id}{OUTPUT_EXTENSION}"
        return job

    async def run(self, job: Job) -> str:
        """Returns the durable reference of the uploaded chunk or raises a PipelineError."""
        ensure_temp_dir(self.temp_dir)
        try:
            await self._extract(job)
            return await self._handoff(job)
        except PipelineError as e:
            job.error = str(e)
            raise
        finally:
            self._cleanup(job)

    def _transition(self, job: Job, state: JobState) -> None:
        job.state = state
        job.history.append(state)
        logger.info(f"Job {job.id}: {state.value}")

    async def _open_source(self, job: Job):
        try:
            return await asyncio.wait_for(self.fetcher.open(job.source_url), self.fetch_timeout)
        except FetchError:
            raise
        except asyncio.TimeoutError as e:
            raise FetchError(f"Source did not answer within {self.fetch_timeout}s") from e
        except Exception as e:
            raise FetchError(f"Source fetch failed: {e}") from e

    async def _extract(self, job: Job) -> None:
        self._transition(job, JobState.FETCHING)
        try:
            source = await self._open_source(job)
        except FetchError:
            self._transition(job, JobState.FAILED)
            raise
        job.title = source.title

        self._transition(job, JobState.TRANSCODING)
        try:
            try:
                run = _TranscodeRun(self, job)
            except Exception as e:
                self._transition(job, JobState.FAILED)
                raise WorkerError(f"Could not start transcode: {e}") from e
            trigger, detail = await run.execute(source.iter_bytes())
        finally:
            try:
                await source.aclose()
            except Exception as e:
                logger.warning(f"Error closing source stream for job {job.id}: {e}")

        self._settle(job, trigger, detail)

    def _settle(self, job: Job, trigger: Trigger, detail: Any) -> None:
        """Salvage decision for whichever trigger won."""
        if trigger is Trigger.COMPLETED:
            self._transition(job, JobState.COMPLETED)
            return

        if is_usable_artifact(job.artifact_path):
            if detail is TerminationReason.TARGET_REACHED:
                self._transition(job, JobState.COMPLETED)
            else:
                logger.info(f"Job {job.id}: salvaging partial artifact after {trigger.value}")
                self._transition(job, JobState.PARTIALLY_COMPLETED)
            return

        self._transition(job, JobState.FAILED)
        if trigger is Trigger.WORKER_ERROR:
            cause = detail if isinstance(detail, BaseException) else None
            raise WorkerError(f"Transcode failed with no usable output: {detail}") from cause
        raise JobTimeoutError(f"Transcode stopped ({detail.value}) with no usable output")

    async def _handoff(self, job: Job) -> str:
        self._transition(job, JobState.UPLOADING)
        try:
            reference = await self.uploader.upload(job.artifact_path)
        except UploadError:
            self._transition(job, JobState.UPLOAD_FAILED)
            raise
        except Exception as e:
            self._transition(job, JobState.UPLOAD_FAILED)
            raise UploadError(f"Upload failed: {e}") from e
        self._transition(job, JobState.UPLOADED)
        return reference

    def _cleanup(self, job: Job) -> None:
        if job.artifact_path is not None:
            try:
                remove_artifact(job.artifact_path)
            except CleanupError as e:
                logger.error(f"{e}")
        self._transition(job, JobState.CLEANED)
