"""
scadkit jobs - off-thread evaluation with timeout, cancellation and progress.

This module provides:
- JobManager: Accepts requests and runs them on a single worker
- JobHandle / JobState: Caller-side view of one job
- EvaluationRequest / EvaluationResponse / ProgressEvent: Message payloads
- run_pipeline: The parse -> evaluate -> mesh pipeline, callable directly
"""

from .messages import (
    EvaluationRequest,
    EvaluationResponse,
    ProgressEvent,
    Stage,
    MessageType,
    WorkerMessage,
)
from .pipeline import run_pipeline
from .worker import InlineWorker, ThreadWorker
from .manager import JobHandle, JobManager, JobState, new_job_id

__all__ = [
    "EvaluationRequest", "EvaluationResponse", "ProgressEvent", "Stage",
    "MessageType", "WorkerMessage", "run_pipeline",
    "InlineWorker", "ThreadWorker",
    "JobHandle", "JobManager", "JobState", "new_job_id",
]
