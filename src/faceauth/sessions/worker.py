import logging
import threading
from collections import deque
from typing import Any, Callable, Optional

log = logging.getLogger(__name__)


class SessionWorker:
    """
    One thread per session. Frames are handled strictly one at a time and only
    the newest pending frame is kept; control tasks posted with post() run on
    the same thread before the next frame.
    """

    def __init__(self, name: str = "faceauth-session"):
        self.name = name
        self.dropped_frames = 0
        self._cond = threading.Condition()
        self._tasks: deque = deque()
        self._pending_frame: Any = None
        self._has_frame = False
        self._closed = False
        self._handler: Optional[Callable[[Any], None]] = None
        self._thread: Optional[threading.Thread] = None

    def start(self, frame_handler: Callable[[Any], None]) -> None:
        with self._cond:
            if self._thread is not None:
                raise RuntimeError(f"SessionWorker '{self.name}' already started")
            self._handler = frame_handler
            self._thread = threading.Thread(target=self._run, name=self.name, daemon=True)
            self._thread.start()
        log.debug("SessionWorker '%s' started", self.name)

    @property
    def is_closed(self) -> bool:
        return self._closed

    def on_worker_thread(self) -> bool:
        return self._thread is not None and threading.current_thread() is self._thread

    def submit_frame(self, frame: Any) -> bool:
        """Queue a frame, replacing any frame still waiting. False once closed."""
        with self._cond:
            if self._closed:
                return False
            if self._has_frame:
                self.dropped_frames += 1
            self._pending_frame = frame
            self._has_frame = True
            self._cond.notify()
        return True

    def post(self, task: Callable[[], None]) -> bool:
        with self._cond:
            if self._closed:
                return False
            self._tasks.append(task)
            self._cond.notify()
        return True

    def close(self, timeout: float = 2.0) -> None:
        with self._cond:
            if self._closed:
                return
            self._closed = True
            self._tasks.clear()
            self._pending_frame = None
            self._has_frame = False
            self._cond.notify_all()

        t = self._thread
        if t is not None and t is not threading.current_thread():
            t.join(timeout)
            if t.is_alive():
                log.warning("SessionWorker '%s' did not stop within %.1fs", self.name, timeout)
        log.debug("SessionWorker '%s' closed (dropped_frames=%d)", self.name, self.dropped_frames)

    def _next_item(self):
        with self._cond:
            while not self._closed and not self._tasks and not self._has_frame:
                self._cond.wait()
            if self._closed:
                return None, None
            if self._tasks:
                return self._tasks.popleft(), None
            frame = self._pending_frame
            self._pending_frame = None
            self._has_frame = False
            return None, frame

    def _run(self) -> None:
        while True:
            task, frame = self._next_item()
            if task is None and frame is None and self._closed:
                break
            try:
                if task is not None:
                    task()
                elif self._handler is not None:
                    self._handler(frame)
            except Exception:
                # sessions convert their own failures; anything reaching here is a bug
                log.exception("Unhandled error on SessionWorker '%s'", self.name)
