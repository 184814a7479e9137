"""
Tests for the job manager, its workers and the evaluation pipeline.
"""

import threading

import pytest

from scadkit.config import Settings
from scadkit.dsl.errors import (
    JobCancelledError, JobTimeoutError, KernelInitError, WorkerCrashedError,
)
from scadkit.jobs import (
    EvaluationRequest, InlineWorker, JobManager, JobState, MessageType, Stage,
    WorkerMessage, new_job_id, run_pipeline,
)

SLOW = "x = [for (i = [0:10000000]) i * 2];"


@pytest.fixture
def inline():
    with JobManager(Settings(use_worker=False)) as jobs:
        yield jobs


@pytest.fixture
def threaded():
    with JobManager(Settings(use_worker=True)) as jobs:
        yield jobs


class CrashingWorker(InlineWorker):
    """Reports a crash instead of evaluating."""

    def send(self, message):
        if message.type == MessageType.EVALUATE:
            self._alive = False
            self.on_message(WorkerMessage(MessageType.CRASHED, payload="RuntimeError: boom"))
            return
        super().send(message)


# --- Pipeline Tests ---

class TestPipeline:
    """Test the pipeline on its own."""

    def test_success(self):
        response = run_pipeline(EvaluationRequest("cube(2);"), Settings())
        assert response.success
        assert response.geometry.volume == pytest.approx(8)
        assert response.errors == []
        assert response.execution_time >= 0

    def test_syntax_error_is_a_failed_response(self):
        response = run_pipeline(EvaluationRequest("cube(;"), Settings())
        assert not response.success
        assert response.geometry is None
        assert response.errors[0]["code"].startswith("E1")

    def test_runtime_error(self):
        response = run_pipeline(EvaluationRequest("nosuch();"), Settings())
        assert [e["code"] for e in response.errors] == ["E403"]

    def test_no_geometry(self):
        """A program that only echoes succeeds with no geometry."""
        response = run_pipeline(EvaluationRequest('echo("hi");'), Settings())
        assert response.success
        assert response.geometry is None
        assert response.echoes == ['"hi"']

    def test_script_language(self):
        request = EvaluationRequest("result = Shape.cube(3)", language="script")
        response = run_pipeline(request, Settings())
        assert response.geometry.volume == pytest.approx(27)

    def test_script_protocol_error(self):
        request = EvaluationRequest("x = 1", language="script")
        response = run_pipeline(request, Settings())
        assert [e["code"] for e in response.errors] == ["E505"]

    def test_unknown_language(self):
        with pytest.raises(ValueError):
            EvaluationRequest("cube(1);", language="stl")

    def test_unknown_kernel(self):
        with pytest.raises(KernelInitError) as info:
            run_pipeline(EvaluationRequest("cube(1);"), Settings(kernel="nosuch"))
        assert info.value.code == "E503"

    def test_progress_order(self):
        """Stages are reported in pipeline order, ending with COMPLETE."""
        events = []
        run_pipeline(EvaluationRequest("cube(1);"), Settings(), on_progress=events.append)
        orders = [e.stage.order for e in events]
        assert orders == sorted(orders)
        assert events[0].stage == Stage.INITIALIZING
        assert events[-1].stage == Stage.COMPLETE
        assert events[-1].progress == pytest.approx(1.0)

    def test_progress_detail(self):
        events = []
        request = EvaluationRequest("cube(1); sphere(1);", progress_detail=True)
        run_pipeline(request, Settings(), on_progress=events.append)
        assert events[-1].details["faceCount"] > 0
        assert any(e.stage == Stage.EVALUATING and e.details for e in events)


# --- Manager Tests ---

class TestInlineManager:
    """Test the manager with in-thread evaluation."""

    def test_settles_synchronously(self, inline):
        handle = inline.submit("cube(1);")
        assert handle.done()
        assert handle.state == JobState.SUCCEEDED
        assert handle.result().geometry.face_count == 12

    def test_failed_evaluation_resolves(self, inline):
        """Syntax errors resolve the future rather than rejecting it."""
        handle = inline.submit("cube(;")
        response = handle.result()
        assert not response.success
        assert handle.state == JobState.FAILED

    def test_progress_recorded(self, inline):
        seen = []
        handle = inline.submit("cube(1);", on_progress=seen.append)
        assert [e.stage for e in handle.progress] == [e.stage for e in seen]
        assert seen[-1].stage == Stage.COMPLETE

    def test_unknown_kernel_rejects(self):
        with JobManager(Settings(kernel="nosuch", use_worker=False)) as jobs:
            handle = jobs.submit("cube(1);")
            assert isinstance(handle.exception(), KernelInitError)
            assert handle.state == JobState.FAILED

    def test_timeout_is_clamped(self):
        settings = Settings(use_worker=False, min_timeout_ms=10, max_timeout_ms=1000)
        with JobManager(settings) as jobs:
            assert jobs.submit("cube(1);", timeout=5).timeout_ms == 10
            assert jobs.submit("cube(1);", timeout=10 ** 9).timeout_ms == 1000
            assert jobs.submit("cube(1);").timeout_ms == 1000

    def test_ping(self, inline):
        assert inline.ping()

    def test_shutdown_rejects_new_work(self):
        jobs = JobManager(Settings(use_worker=False))
        jobs.shutdown()
        with pytest.raises(RuntimeError):
            jobs.submit("cube(1);")


class TestThreadedManager:
    """Test the manager with a worker thread."""

    def test_result(self, threaded):
        handle = threaded.submit("sphere(5, $fn=16);", timeout=30000)
        response = handle.result(timeout=30)
        assert response.success
        assert handle.state == JobState.SUCCEEDED

    def test_jobs_run_in_order(self, threaded):
        handles = [threaded.submit(f"cube({i + 1});", timeout=30000) for i in range(3)]
        volumes = [h.result(timeout=30).geometry.volume for h in handles]
        assert volumes == pytest.approx([1, 8, 27])
        assert threaded.pending_count() == 0

    def test_timeout(self, threaded):
        handle = threaded.submit(SLOW, timeout=5)
        with pytest.raises(JobTimeoutError) as info:
            handle.result(timeout=30)
        assert info.value.code == "E501"
        assert handle.state == JobState.TIMED_OUT

    def test_cancel(self, threaded):
        handle = threaded.submit(SLOW, timeout=60000)
        assert threaded.cancel(handle.id) == 1
        assert threaded.cancel(handle.id) == 0
        assert not handle.cancel()
        with pytest.raises(JobCancelledError) as info:
            handle.result(timeout=30)
        assert info.value.code == "E502"
        assert handle.state == JobState.CANCELLED

    def test_cancel_all(self, threaded):
        handles = [threaded.submit(SLOW, timeout=60000) for _ in range(3)]
        assert threaded.cancel() == 3
        assert all(h.state == JobState.CANCELLED for h in handles)
        assert threaded.pending_count() == 0

    def test_worker_survives_cancellation(self, threaded):
        threaded.submit(SLOW, timeout=60000).cancel()
        response = threaded.submit("cube(2);", timeout=30000).result(timeout=30)
        assert response.geometry.volume == pytest.approx(8)

    def test_numeric_errors_fail_only_their_job(self, threaded):
        """Non-finite input gives a failed response; the worker keeps serving."""
        bad = [
            "x = (1 / 0) % 2; y = [0:1e-20:1][0];",
            "module m() children(1 / 0); m() cube(1);",
        ]
        handles = [threaded.submit(source, timeout=30000) for source in bad]
        after = threaded.submit("cube(2);", timeout=30000)
        first, second = (h.result(timeout=30) for h in handles)
        assert [e["code"] for e in first.errors] == ["E407"]
        assert [e["code"] for e in second.errors] == ["E412"]
        assert all(h.state == JobState.FAILED for h in handles)
        assert after.result(timeout=30).geometry.volume == pytest.approx(8)

    def test_ping(self, threaded):
        assert threaded.ping(timeout=5)

    def test_shutdown_joins_worker_threads(self):
        jobs = JobManager(Settings(use_worker=True))
        jobs.submit("cube(1);", timeout=30000).result(timeout=30)
        worker = jobs._worker
        jobs.shutdown()
        assert not worker._serve_thread.is_alive()
        assert not worker._relay_thread.is_alive()

    def test_progress_callback_thread(self, threaded):
        done = threading.Event()
        seen = []

        def on_progress(event):
            seen.append(event)
            if event.stage == Stage.COMPLETE:
                done.set()

        threaded.submit("cube(1);", timeout=30000, on_progress=on_progress).result(timeout=30)
        assert done.wait(5)
        orders = [e.stage.order for e in seen]
        assert orders == sorted(orders)


class TestWorkerCrash:
    """Test recovery from a failed worker."""

    def test_crash_fails_in_flight_jobs(self):
        built = []

        def factory(on_message):
            worker = CrashingWorker(on_message)
            built.append(worker)
            return worker

        with JobManager(Settings(use_worker=False), worker_factory=factory) as jobs:
            first = jobs.submit("cube(1);")
            error = first.exception()
            assert isinstance(error, WorkerCrashedError)
            assert error.code == "E504"
            assert first.state == JobState.FAILED

            second = jobs.submit("cube(1);")
            assert isinstance(second.exception(), WorkerCrashedError)
            assert len(built) == 2


class TestJobIds:
    def test_format(self):
        parts = new_job_id().split("_")
        assert parts[0] == "job"
        assert parts[1].isdigit()
        assert len(parts[2]) == 8
