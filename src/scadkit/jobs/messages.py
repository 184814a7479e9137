"""
Request, response and worker-protocol messages.

The manager and its worker exchange :class:`WorkerMessage` objects over
``queue.Queue`` channels. Requests flow in (EVALUATE, PING, SHUTDOWN);
replies flow out (STARTED, PROGRESS, RESULT, ERROR, PONG, STOPPED,
CRASHED). The inline fallback speaks the same protocol through direct
calls.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from ..kernel import MeshData

LANGUAGES = ("scad", "script")


class Stage(Enum):
    """Pipeline stages, in the order progress is reported."""
    INITIALIZING = "initializing"
    PARSING = "parsing"
    EVALUATING = "evaluating"
    MESHING = "meshing"
    COMPLETE = "complete"

    @property
    def order(self) -> int:
        return _STAGE_ORDER[self]


_STAGE_ORDER = {stage: i for i, stage in enumerate(Stage)}


@dataclass
class EvaluationRequest:
    """One unit of work: source text plus how to run it."""
    code: str
    language: str = "scad"
    t: float = 0.0
    timeout_ms: Optional[int] = None
    progress_detail: bool = False

    def __post_init__(self):
        if self.language not in LANGUAGES:
            raise ValueError(f"language must be one of {LANGUAGES}, got {self.language!r}")


@dataclass
class ProgressEvent:
    stage: Stage
    progress: float
    message: str = ""
    details: Optional[Dict[str, Any]] = None

    def to_dict(self) -> dict:
        result = {"stage": self.stage.value, "progress": self.progress, "message": self.message}
        if self.details is not None:
            result["details"] = self.details
        return result


@dataclass
class EvaluationResponse:
    """
    Outcome of an evaluation that ran to completion.

    `success` is False when syntax or runtime errors were reported; the
    geometry is then None and `errors` is non-empty.
    """
    success: bool
    geometry: Optional[MeshData] = None
    errors: List[dict] = field(default_factory=list)
    execution_time: float = 0.0   # milliseconds
    echoes: List[str] = field(default_factory=list)
    tagged: List[MeshData] = field(default_factory=list)

    def to_dict(self, include_geometry: bool = True) -> dict:
        return {
            "success": self.success,
            "geometry": (self.geometry.to_dict()
                         if include_geometry and self.geometry is not None else None),
            "errors": list(self.errors),
            "executionTime": self.execution_time,
            "echoes": list(self.echoes),
        }


class MessageType(Enum):
    # manager -> worker
    EVALUATE = "evaluate"
    PING = "ping"
    SHUTDOWN = "shutdown"
    # worker -> manager
    STARTED = "started"
    PROGRESS = "progress"
    RESULT = "result"
    ERROR = "error"
    PONG = "pong"
    STOPPED = "stopped"
    CRASHED = "crashed"


@dataclass
class WorkerMessage:
    type: MessageType
    job_id: Optional[str] = None
    payload: Any = None
