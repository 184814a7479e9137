"""
Job manager: runs evaluations off the calling thread.

Each submitted job moves through

    queued -> running -> succeeded | failed | timed_out | cancelled

and its future settles exactly once, on the first terminal transition.
Completed evaluations (including ones with syntax or runtime errors)
resolve to an EvaluationResponse; timeouts, cancellation, kernel
initialization failures and worker crashes reject with the matching
JobError subclass.

Usage:
    with JobManager() as jobs:
        handle = jobs.submit("cube(10);", timeout=5000)
        response = handle.result()
        print(response.geometry.face_count)
"""

import logging
import random
import threading
import time
from concurrent.futures import Future
from enum import Enum
from typing import Callable, Dict, List, Optional

from .messages import (
    EvaluationRequest, EvaluationResponse, MessageType, ProgressEvent, WorkerMessage,
)
from .worker import InlineWorker, ThreadWorker
from ..config import Settings, get_settings
from ..dsl.errors import (
    JobError, error_cancelled, error_timeout, error_worker_crashed,
)
from ..dsl.runtime import CancellationToken

logger = logging.getLogger(__name__)


class JobState(Enum):
    QUEUED = "queued"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    TIMED_OUT = "timed_out"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self not in (JobState.QUEUED, JobState.RUNNING)


def new_job_id() -> str:
    """job_<millis>_<random>"""
    return f"job_{int(time.time() * 1000)}_{random.randrange(16 ** 8):08x}"


class JobHandle:
    """Caller-side view of one job."""

    def __init__(self, manager: "JobManager", job_id: str, request: EvaluationRequest,
                 timeout_ms: int, on_progress: Optional[Callable[[ProgressEvent], None]]):
        self._manager = manager
        self.id = job_id
        self.request = request
        self.timeout_ms = timeout_ms
        self.on_progress = on_progress
        self.future: Future = Future()
        self.token = CancellationToken()
        self.state = JobState.QUEUED
        self.progress: List[ProgressEvent] = []
        self._timer: Optional[threading.Timer] = None

    def result(self, timeout: Optional[float] = None) -> EvaluationResponse:
        """Wait for the response; raises the JobError the job was rejected with."""
        return self.future.result(timeout)

    def exception(self, timeout: Optional[float] = None) -> Optional[BaseException]:
        return self.future.exception(timeout)

    def cancel(self) -> bool:
        """Cancel this job; False if it had already settled."""
        return self._manager.cancel(self.id) > 0

    def done(self) -> bool:
        return self.future.done()

    def __repr__(self) -> str:
        return f"JobHandle({self.id}, {self.state.value})"


class JobManager:
    """
    Accepts evaluation requests and runs them on a single worker.

    Args:
        settings: Limits and defaults; the process settings when omitted
        use_worker: Run on a background thread (default from settings);
            False runs each job synchronously inside submit()
        worker_factory: Builds the worker from a message callback, for
            substituting the execution context
    """

    def __init__(self, settings: Optional[Settings] = None, use_worker: Optional[bool] = None,
                 worker_factory: Optional[Callable] = None):
        self.settings = settings or get_settings()
        self.use_worker = self.settings.use_worker if use_worker is None else use_worker
        self._worker_factory = worker_factory
        self._worker = None
        self._jobs: Dict[str, JobHandle] = {}
        self._lock = threading.RLock()
        self._pings: Dict[str, threading.Event] = {}
        self._closed = False

    # =========================================================================
    # Submission
    # =========================================================================

    def submit(self, source: str, language: str = "scad", t: float = 0.0,
               timeout: Optional[float] = None,
               on_progress: Optional[Callable[[ProgressEvent], None]] = None,
               progress_detail: bool = False) -> JobHandle:
        """Queue an evaluation; `timeout` is in milliseconds."""
        if self._closed:
            raise RuntimeError("job manager is shut down")
        timeout_ms = self.settings.clamp_timeout(timeout)
        request = EvaluationRequest(source, language, float(t), timeout_ms, progress_detail)
        job = JobHandle(self, new_job_id(), request, timeout_ms, on_progress)

        with self._lock:
            self._jobs[job.id] = job
            worker = self._ensure_worker()
            job._timer = threading.Timer(timeout_ms / 1000.0, self._on_timeout, [job.id])
            job._timer.daemon = True
            job._timer.start()
        logger.info("job %s queued (%s, timeout %d ms)", job.id, language, timeout_ms)

        worker.send(WorkerMessage(MessageType.EVALUATE, job.id, {
            "request": request,
            "settings": self.settings,
            "token": job.token,
        }))
        return job

    def _ensure_worker(self):
        if self._worker is not None and self._worker.is_alive:
            return self._worker
        factory = self._worker_factory
        if factory is None:
            factory = ThreadWorker if self.use_worker else InlineWorker
        try:
            worker = factory(self._on_message)
            worker.start()
        except RuntimeError as e:
            if not self.settings.allow_fallback or factory is InlineWorker:
                raise
            logger.warning("worker could not start (%s); running jobs inline", e)
            worker = InlineWorker(self._on_message)
            worker.start()
        logger.info("created %s worker", worker.name)
        self._worker = worker
        return worker

    # =========================================================================
    # Settlement
    # =========================================================================

    def _settle(self, job: JobHandle, state: JobState,
                response: Optional[EvaluationResponse] = None,
                error: Optional[JobError] = None) -> bool:
        """Move a job to a terminal state; only the first call has any effect."""
        with self._lock:
            if job.state.is_terminal:
                return False
            job.state = state
            self._jobs.pop(job.id, None)
        if job._timer is not None:
            job._timer.cancel()
        if error is not None:
            if state in (JobState.TIMED_OUT, JobState.CANCELLED):
                job.token.cancel(error)
            job.future.set_exception(error)
        else:
            job.future.set_result(response)
        logger.info("job %s %s", job.id, state.value)
        return True

    def _on_timeout(self, job_id: str) -> None:
        job = self._jobs.get(job_id)
        if job is not None:
            self._settle(job, JobState.TIMED_OUT, error=error_timeout(job.timeout_ms))

    def cancel(self, job_id: Optional[str] = None) -> int:
        """Cancel one job, or every unsettled job; returns how many were cancelled."""
        with self._lock:
            if job_id is None:
                targets = list(self._jobs.values())
            else:
                job = self._jobs.get(job_id)
                targets = [job] if job is not None else []
        return sum(1 for job in targets
                   if self._settle(job, JobState.CANCELLED, error=error_cancelled()))

    # =========================================================================
    # Worker messages
    # =========================================================================

    def _on_message(self, message: WorkerMessage) -> None:
        kind = message.type
        if kind == MessageType.PONG:
            event = self._pings.pop(message.payload, None)
            if event is not None:
                event.set()
            return
        if kind == MessageType.CRASHED:
            self._on_crash(str(message.payload))
            return
        if kind == MessageType.STOPPED:
            logger.debug("worker stopped")
            return

        job = self._jobs.get(message.job_id)
        if job is None:
            return  # already settled
        if kind == MessageType.STARTED:
            with self._lock:
                if job.state == JobState.QUEUED:
                    job.state = JobState.RUNNING
            logger.debug("job %s running", job.id)
        elif kind == MessageType.PROGRESS:
            self._relay_progress(job, message.payload)
        elif kind == MessageType.RESULT:
            response: EvaluationResponse = message.payload
            state = JobState.SUCCEEDED if response.success else JobState.FAILED
            self._settle(job, state, response=response)
        elif kind == MessageType.ERROR:
            error: JobError = message.payload
            state = {"E501": JobState.TIMED_OUT, "E502": JobState.CANCELLED}.get(
                error.code, JobState.FAILED)
            self._settle(job, state, error=error)

    def _relay_progress(self, job: JobHandle, event: ProgressEvent) -> None:
        """Forward progress in stage order; stale stages are dropped."""
        if job.progress and event.stage.order < job.progress[-1].stage.order:
            return
        job.progress.append(event)
        if job.on_progress is not None:
            try:
                job.on_progress(event)
            except Exception:
                logger.exception("progress callback for job %s failed", job.id)

    def _on_crash(self, detail: str) -> None:
        logger.error("worker crashed: %s", detail)
        with self._lock:
            self._worker = None
            in_flight = list(self._jobs.values())
        for job in in_flight:
            self._settle(job, JobState.FAILED, error=error_worker_crashed(detail))

    # =========================================================================
    # Health and lifecycle
    # =========================================================================

    def ping(self, timeout: float = 1.0) -> bool:
        """True if the worker answers a PING within `timeout` seconds."""
        token = new_job_id().replace("job_", "ping_")
        event = threading.Event()
        self._pings[token] = event
        with self._lock:
            worker = self._ensure_worker()
        worker.send(WorkerMessage(MessageType.PING, payload=token))
        answered = event.wait(timeout)
        self._pings.pop(token, None)
        return answered

    def pending_count(self) -> int:
        """Jobs that have not settled yet."""
        with self._lock:
            return len(self._jobs)

    def shutdown(self, wait: bool = True, cancel_pending: bool = True) -> None:
        """Stop accepting work, cancel what is left and stop the worker."""
        self._closed = True
        if cancel_pending:
            self.cancel()
        with self._lock:
            worker, self._worker = self._worker, None
        if worker is not None:
            worker.stop(5.0 if wait else None)

    def __enter__(self) -> "JobManager":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.shutdown()
