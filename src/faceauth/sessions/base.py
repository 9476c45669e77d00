from __future__ import annotations

import logging
from concurrent.futures import Executor, Future
from typing import Any, Callable, List, Optional, Sequence

from faceauth.core.errors import DetectionError
from faceauth.core.models import Detection, Frame, SessionEvent
from faceauth.sessions.worker import SessionWorker

log = logging.getLogger(__name__)

Listener = Callable[[SessionEvent], None]


class Session:
    """
    Shared plumbing for the enrollment, authentication and liveness sessions.

    State is only mutated from the session's worker thread (or the caller's
    thread when no worker is given). Background work goes to `executor` and
    its completion is posted back to the worker, where it is dropped if the
    session was closed or re-armed in the meantime.
    """

    name = "session"

    def __init__(
        self,
        worker: Optional[SessionWorker] = None,
        executor: Optional[Executor] = None,
        detector: Any = None,
    ):
        self.worker = worker
        self.executor = executor
        self.detector = detector
        self.result: Future = Future()
        self._listeners: List[Listener] = []
        self._alive = True
        self._generation = 0

        if self.worker is not None:
            self.worker.start(self._handle_frame)

    # ----- public API -------------------------------------------------

    @property
    def alive(self) -> bool:
        return self._alive

    def add_listener(self, listener: Listener) -> None:
        self._listeners.append(listener)

    def submit_frame(self, frame: Frame) -> None:
        if not self._alive:
            return
        if self.worker is not None:
            self.worker.submit_frame(frame)
        else:
            self._handle_frame(frame)

    def close(self) -> None:
        """Tear the session down. Late completions are ignored from here on."""
        if not self._alive:
            return
        self._alive = False
        self.result.cancel()
        if self.worker is not None:
            self.worker.close()
        log.info("%s closed", self.name)

    # ----- hooks ------------------------------------------------------

    def on_frame(self, frame: Frame, detections: Sequence[Detection]) -> None:
        raise NotImplementedError

    def on_detection_error(self, exc: DetectionError) -> None:
        raise NotImplementedError

    def wants_frames(self) -> bool:
        """False while the state machine ignores frames; the detector is not run then."""
        return True

    # ----- helpers ----------------------------------------------------

    def _handle_frame(self, frame: Frame) -> None:
        if not self._alive or frame is None or not self.wants_frames():
            return
        try:
            detections = self._detect(frame)
        except DetectionError as e:
            self.on_detection_error(e)
            return
        self.on_frame(frame, detections)

    def _detect(self, frame: Frame) -> Sequence[Detection]:
        if self.detector is None:
            return frame.detections
        try:
            return list(self.detector.detect(frame.image) or [])
        except DetectionError:
            raise
        except Exception as e:
            raise DetectionError(str(e), where=f"{self.name}.detect") from e

    def _emit(self, state: str, reason: Optional[str] = None, detail: Any = None) -> None:
        event = SessionEvent(state=state, reason=reason, detail=detail)
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                log.exception("%s listener failed on %s", self.name, state)

    def _post(self, task: Callable[[], None]) -> None:
        if self.worker is not None and not self.worker.on_worker_thread():
            self.worker.post(task)
        else:
            task()

    def _finish(self, value: Any) -> None:
        if not self.result.done():
            self.result.set_result(value)

    def _run_background(self, job: Callable[[], Any], on_done: Callable[[Future], None]) -> None:
        """
        Run `job` on the executor (inline without one) and deliver its future
        to `on_done` on the session thread, unless the session went away or
        was re-armed first.
        """
        generation = self._generation

        def deliver(fut: Future) -> None:
            def guarded() -> None:
                if not self._alive or generation != self._generation:
                    log.info("%s dropped stale background result (gen %d != %d)", self.name, generation, self._generation)
                    return
                on_done(fut)
            self._post(guarded)

        if self.executor is None:
            fut: Future = Future()
            try:
                fut.set_result(job())
            except Exception as e:
                fut.set_exception(e)
            deliver(fut)
            return

        self.executor.submit(job).add_done_callback(deliver)
