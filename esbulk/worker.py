"""Worker threads that batch lines from a shared queue and index them in bulk."""
import logging
import queue
import threading
from dataclasses import dataclass
from typing import Any, Iterable, List, Optional

from esbulk.bulk import build_bulk_request
from esbulk.errors import DispatchCancelled, WorkerError
from esbulk.options import Options

logger = logging.getLogger(__name__)

_CLOSE = object()
POLL_INTERVAL_SEC = 0.1


@dataclass
class WorkerStats:
    name: str
    lines: int = 0
    flushes: int = 0
    failed: int = 0
    dropped: int = 0


class Worker(threading.Thread):
    """Collects lines into batches of options.batch_size and hands each batch to the dispatcher.

    A failed batch is reported once on the error queue and the worker moves on.
    """

    def __init__(
        self,
        name: str,
        options: Options,
        dispatcher: Any,
        lines: "queue.Queue[Any]",
        errors: "queue.Queue[WorkerError]",
        cancel: threading.Event,
        poll_interval: float = POLL_INTERVAL_SEC,
    ) -> None:
        super().__init__(name=name, daemon=True)
        self.options = options
        self.dispatcher = dispatcher
        self.lines = lines
        self.errors = errors
        self.cancel = cancel
        self.poll_interval = poll_interval
        self.stats = WorkerStats(name=name)

    def run(self) -> None:
        batch: List[str] = []
        while True:
            if self.cancel.is_set():
                self.stats.dropped += len(batch)
                return
            try:
                line = self.lines.get(timeout=self.poll_interval)
            except queue.Empty:
                continue
            if line is _CLOSE:
                break
            batch.append(line)
            self.stats.lines += 1
            if self.stats.lines % self.options.batch_size == 0:
                self.flush(batch)
                batch = []
        if batch:
            self.flush(batch)

    def flush(self, docs: List[str]) -> None:
        try:
            self.dispatcher.dispatch(build_bulk_request(docs, self.options))
        except DispatchCancelled:
            self.stats.dropped += len(docs)
            return
        except Exception as exc:
            self.stats.failed += 1
            self.errors.put(WorkerError(self.name, exc, len(docs)))
            logger.error("[%s] batch of %d docs failed: %s", self.name, len(docs), exc)
            return
        self.stats.flushes += 1
        if self.options.verbose:
            logger.info("[%s] @%d", self.name, self.stats.lines)


class WorkerPool:
    """A fixed number of workers fed from one bounded queue.

    submit() blocks while the queue is full. Errors from any worker are
    collected on a separate queue and returned by join().
    """

    def __init__(
        self,
        options: Options,
        dispatcher: Any,
        num_workers: int,
        cancel: Optional[threading.Event] = None,
        queue_size: Optional[int] = None,
        poll_interval: float = POLL_INTERVAL_SEC,
    ) -> None:
        self.options = options
        self.cancel = cancel or threading.Event()
        self.poll_interval = poll_interval
        self.lines: "queue.Queue[Any]" = queue.Queue(maxsize=queue_size or 4 * num_workers)
        self.errors: "queue.Queue[WorkerError]" = queue.Queue()
        self.workers = [
            Worker(f"worker-{i}", options, dispatcher, self.lines, self.errors, self.cancel, poll_interval)
            for i in range(num_workers)
        ]
        self._started = False

    def start(self) -> "WorkerPool":
        for worker in self.workers:
            worker.start()
        self._started = True
        if self.options.verbose:
            logger.info("started %d workers", len(self.workers))
        return self

    def _put(self, item: Any) -> bool:
        while not self.cancel.is_set():
            try:
                self.lines.put(item, timeout=self.poll_interval)
                return True
            except queue.Full:
                continue
        return False

    def submit(self, line: str) -> bool:
        """Queue one line. Returns False once the run has been cancelled."""
        return self._put(line)

    def close(self) -> None:
        for _ in self.workers:
            if not self._put(_CLOSE):
                return

    def join(self) -> List[WorkerError]:
        if self._started:
            for worker in self.workers:
                worker.join()
        errors: List[WorkerError] = []
        while True:
            try:
                errors.append(self.errors.get_nowait())
            except queue.Empty:
                return errors

    def run(self, lines: Iterable[str]) -> List[WorkerError]:
        """Start the workers, feed them every line, wait for them to finish."""
        self.start()
        try:
            for line in lines:
                if not self.submit(line):
                    break
        finally:
            self.close()
            errors = self.join()
        return errors

    @property
    def stats(self) -> List[WorkerStats]:
        return [worker.stats for worker in self.workers]
