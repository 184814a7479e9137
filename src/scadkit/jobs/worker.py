"""
Execution contexts for the job manager.

:class:`ThreadWorker` runs the pipeline on one background thread. The
manager posts requests on its ``requests`` queue; replies come back on
its ``responses`` queue and a relay thread hands them to the manager's
callback. :class:`InlineWorker` serves the same messages synchronously
in the submitting thread.

If the serving loop itself fails, the worker posts CRASHED and stops;
the manager then fails everything in flight and builds a new worker on
the next submit.
"""

import logging
import queue
import threading
from typing import Callable, Optional

from .messages import MessageType, WorkerMessage
from .pipeline import run_pipeline
from ..dsl.errors import JobError

logger = logging.getLogger(__name__)

MessageHandler = Callable[[WorkerMessage], None]


def serve(message: WorkerMessage, emit: MessageHandler) -> bool:
    """
    Handle one request, emitting replies. Returns False on SHUTDOWN.

    EVALUATE payloads are dicts with `request`, `settings` and `token`.
    Job-level system errors are replied as ERROR; anything else escapes
    and is treated as a worker crash by the caller.
    """
    if message.type == MessageType.SHUTDOWN:
        return False
    if message.type == MessageType.PING:
        emit(WorkerMessage(MessageType.PONG, payload=message.payload))
        return True
    if message.type != MessageType.EVALUATE:
        raise ValueError(f"unexpected message {message.type.value}")

    job_id = message.job_id
    payload = message.payload
    token = payload["token"]
    if token.is_cancelled:
        # settled while queued
        emit(WorkerMessage(MessageType.ERROR, job_id, token.error))
        return True

    emit(WorkerMessage(MessageType.STARTED, job_id))

    def progress(event):
        emit(WorkerMessage(MessageType.PROGRESS, job_id, event))

    try:
        response = run_pipeline(payload["request"], payload["settings"], token, progress)
    except JobError as e:
        emit(WorkerMessage(MessageType.ERROR, job_id, e))
        return True
    emit(WorkerMessage(MessageType.RESULT, job_id, response))
    return True


class InlineWorker:
    """Runs requests synchronously in the caller's thread."""

    name = "inline"

    def __init__(self, on_message: MessageHandler):
        self.on_message = on_message
        self._alive = False

    def start(self) -> None:
        self._alive = True

    @property
    def is_alive(self) -> bool:
        return self._alive

    def send(self, message: WorkerMessage) -> None:
        try:
            if not serve(message, self.on_message):
                self._alive = False
                self.on_message(WorkerMessage(MessageType.STOPPED))
        except Exception as e:
            logger.exception("inline worker failed")
            self._alive = False
            self.on_message(WorkerMessage(MessageType.CRASHED, payload=f"{type(e).__name__}: {e}"))

    def stop(self, timeout: Optional[float] = None) -> None:
        if self._alive:
            self.send(WorkerMessage(MessageType.SHUTDOWN))


class ThreadWorker:
    """One background thread serving requests in FIFO order."""

    name = "thread"

    def __init__(self, on_message: MessageHandler):
        self.on_message = on_message
        self.requests: "queue.Queue[WorkerMessage]" = queue.Queue()
        self.responses: "queue.Queue[WorkerMessage]" = queue.Queue()
        self._serve_thread = threading.Thread(target=self._serve_loop,
                                              name="scadkit-worker", daemon=True)
        self._relay_thread = threading.Thread(target=self._relay_loop,
                                              name="scadkit-relay", daemon=True)

    def start(self) -> None:
        self._relay_thread.start()
        self._serve_thread.start()
        logger.debug("worker thread started")

    @property
    def is_alive(self) -> bool:
        return self._serve_thread.is_alive()

    def send(self, message: WorkerMessage) -> None:
        self.requests.put(message)

    def stop(self, timeout: Optional[float] = None) -> None:
        """Ask the worker to exit after the current request.

        With a timeout, also wait for both threads; the relay thread exits
        once it has passed STOPPED on.
        """
        self.requests.put(WorkerMessage(MessageType.SHUTDOWN))
        if timeout is None:
            return
        current = threading.current_thread()
        for thread in (self._serve_thread, self._relay_thread):
            if thread is not current and thread.is_alive():
                thread.join(timeout)

    def _serve_loop(self) -> None:
        try:
            while True:
                message = self.requests.get()
                if not serve(message, self.responses.put):
                    break
        except Exception as e:
            logger.exception("worker loop crashed")
            self.responses.put(WorkerMessage(MessageType.CRASHED, payload=f"{type(e).__name__}: {e}"))
            return
        self.responses.put(WorkerMessage(MessageType.STOPPED))

    def _relay_loop(self) -> None:
        while True:
            message = self.responses.get()
            try:
                self.on_message(message)
            except Exception:
                logger.exception("error handling %s from worker", message.type.value)
            if message.type in (MessageType.STOPPED, MessageType.CRASHED):
                return
