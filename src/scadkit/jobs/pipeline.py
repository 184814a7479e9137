"""
The evaluation pipeline run for every job.

initializing -> parsing -> evaluating -> meshing -> complete

Syntax, runtime and script errors end the pipeline early with a failed
:class:`EvaluationResponse`. System failures (kernel initialization,
cancellation, timeout) are raised as :class:`JobError` subclasses.
"""

import logging
import time
from typing import Callable, List, Optional

from .messages import EvaluationRequest, EvaluationResponse, ProgressEvent, Stage
from ..config import Settings, get_settings
from ..dsl.errors import Diagnostic, ErrorSeverity, EvaluationError, ScriptProtocolError
from ..dsl.lexer import tokenize
from ..dsl.parser import parse
from ..dsl.runtime import CancellationToken, Interpreter, create_context
from ..kernel import ensure_initialized
from ..script.runtime import compile_script

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[ProgressEvent], None]

# Share of overall progress at which each stage starts
_STAGE_START = {
    Stage.INITIALIZING: 0.0,
    Stage.PARSING: 0.1,
    Stage.EVALUATING: 0.2,
    Stage.MESHING: 0.9,
    Stage.COMPLETE: 1.0,
}


def _errors(diagnostics: List[Diagnostic]) -> List[dict]:
    return [d.to_dict() for d in diagnostics if d.severity == ErrorSeverity.ERROR]


def run_pipeline(request: EvaluationRequest, settings: Optional[Settings] = None,
                 cancel_token: Optional[CancellationToken] = None,
                 on_progress: Optional[ProgressCallback] = None) -> EvaluationResponse:
    """Run one request to completion in the calling thread."""
    settings = settings or get_settings()
    started = time.perf_counter()

    def report(stage: Stage, message: str = "", fraction: float = 0.0, details=None):
        if on_progress is None:
            return
        start = _STAGE_START[stage]
        end = min((_STAGE_START[s] for s in Stage if s.order == stage.order + 1), default=1.0)
        on_progress(ProgressEvent(stage, start + (end - start) * fraction, message, details))

    def check():
        if cancel_token is not None:
            cancel_token.check()

    def failed(diagnostics: List[Diagnostic]) -> EvaluationResponse:
        return EvaluationResponse(
            success=False,
            errors=_errors(diagnostics),
            execution_time=(time.perf_counter() - started) * 1000.0,
        )

    check()
    report(Stage.INITIALIZING, f"initializing {settings.kernel} kernel")
    kernel = ensure_initialized(settings.kernel)

    check()
    report(Stage.PARSING, f"parsing {request.language} source")
    ctx = create_context(request.code, t=request.t, max_call_depth=settings.max_call_depth,
                         max_errors=settings.max_errors, cancel_token=cancel_token)
    parse_diagnostics: List[Diagnostic] = []
    if request.language == "scad":
        parsed = parse(tokenize(request.code), source=request.code, max_errors=settings.max_errors)
        parse_diagnostics = list(parsed.diagnostics)
        if not parsed.success:
            return failed(parse_diagnostics)
        statements = parsed.statements
    else:
        try:
            statements = compile_script(request.code, request.t, cancel_token)
        except (EvaluationError, ScriptProtocolError) as e:
            return failed([e.diagnostic])

    check()
    report(Stage.EVALUATING, f"evaluating {len(statements)} statement(s)")
    if request.progress_detail:
        def relay(fraction: float, message: str) -> None:
            report(Stage.EVALUATING, message, fraction, {"statements": len(statements)})
        ctx.on_progress = relay
    result = Interpreter(ctx, kernel).run(statements)
    if not result.success:
        return failed(parse_diagnostics + result.diagnostics)

    check()
    report(Stage.MESHING, "extracting mesh")
    mesh = kernel.to_mesh(result.geometry) if result.geometry is not None else None
    tagged = [kernel.to_mesh(g) for g in result.tagged]

    elapsed = (time.perf_counter() - started) * 1000.0
    details = None
    if request.progress_detail and mesh is not None:
        details = {"vertexCount": mesh.vertex_count, "faceCount": mesh.face_count}
    report(Stage.COMPLETE, "done", 1.0, details)
    logger.debug("pipeline finished in %.1f ms", elapsed)
    return EvaluationResponse(
        success=True,
        geometry=mesh,
        errors=[],
        execution_time=elapsed,
        echoes=result.echoes,
        tagged=tagged,
    )
