import threading
import time
from typing import List

from esbulk.errors import DispatchCancelled, IdentifierError, WorkerError
from esbulk.options import Options
from esbulk.worker import WorkerPool


class RecordingDispatcher:
    def __init__(self, fail_on=()) -> None:
        self.requests: List = []
        self.fail_on = set(fail_on)
        self.lock = threading.Lock()

    def dispatch(self, request):
        with self.lock:
            call = len(self.requests)
            self.requests.append(request)
        if call in self.fail_on:
            raise RuntimeError(f"call {call} failed")
        return None


def _options(**kwargs) -> Options:
    kwargs.setdefault("servers", ("http://localhost:9200",))
    kwargs.setdefault("index", "books")
    return Options(**kwargs)


def _docs(n: int) -> List[str]:
    return ['{"a": %d}' % i for i in range(n)]


def test_single_worker_flushes_full_and_remaining_batches() -> None:
    dispatcher = RecordingDispatcher()
    pool = WorkerPool(_options(batch_size=3), dispatcher, num_workers=1)

    errors = pool.run(['{"a":1}', '{"a":2}', '{"a":3}', '{"a":4}'])

    assert errors == []
    assert [r.count for r in dispatcher.requests] == [3, 1]


def test_batches_keep_arrival_order_within_a_worker() -> None:
    dispatcher = RecordingDispatcher()
    pool = WorkerPool(_options(batch_size=2), dispatcher, num_workers=1)

    pool.run(_docs(5))

    sent = [line for r in dispatcher.requests for line in r.body.splitlines()[1::2]]
    assert sent == _docs(5)


def test_flush_counts_add_up_across_workers() -> None:
    dispatcher = RecordingDispatcher()
    batch_size = 4
    pool = WorkerPool(_options(batch_size=batch_size), dispatcher, num_workers=3)

    errors = pool.run(_docs(10 * batch_size))

    assert errors == []
    stats = pool.stats
    assert sum(s.lines for s in stats) == 40
    assert sum(r.count for r in dispatcher.requests) == 40
    for s in stats:
        full, rest = divmod(s.lines, batch_size)
        assert s.flushes == full + (1 if rest else 0)
    assert all(r.count <= batch_size for r in dispatcher.requests)


def test_failed_batch_is_reported_once_and_work_continues() -> None:
    dispatcher = RecordingDispatcher(fail_on={0})
    pool = WorkerPool(_options(batch_size=2), dispatcher, num_workers=1)

    errors = pool.run(_docs(6))

    assert len(errors) == 1
    assert isinstance(errors[0], WorkerError)
    assert errors[0].worker == "worker-0"
    assert errors[0].docs == 2
    assert len(dispatcher.requests) == 3
    assert pool.stats[0].failed == 1
    assert pool.stats[0].flushes == 2


def test_identifier_errors_are_batch_failures() -> None:
    dispatcher = RecordingDispatcher()
    pool = WorkerPool(_options(batch_size=2, id_field="id"), dispatcher, num_workers=1)

    errors = pool.run(['{"id": "1"}', '{"x": 1}', '{"id": "3"}'])

    assert len(errors) == 1
    assert isinstance(errors[0].cause, IdentifierError)
    assert [r.count for r in dispatcher.requests] == [1]


def test_immediate_cancellation_returns_quickly_without_dispatch() -> None:
    cancel = threading.Event()
    cancel.set()
    dispatcher = RecordingDispatcher()
    pool = WorkerPool(_options(batch_size=10), dispatcher, num_workers=4, cancel=cancel)

    start = time.monotonic()
    errors = pool.run(_docs(100))
    elapsed = time.monotonic() - start

    assert errors == []
    assert dispatcher.requests == []
    assert elapsed < 1.0


def test_cancellation_stops_accepting_lines() -> None:
    cancel = threading.Event()

    class CancellingDispatcher(RecordingDispatcher):
        def dispatch(self, request):
            cancel.set()
            return super().dispatch(request)

    dispatcher = CancellingDispatcher()
    pool = WorkerPool(_options(batch_size=2), dispatcher, num_workers=1, cancel=cancel, queue_size=2)

    errors = pool.run(_docs(1000))

    assert errors == []
    assert len(dispatcher.requests) == 1
    assert pool.stats[0].lines < 1000


def test_cancelled_dispatch_drops_batch_without_error() -> None:
    class Cancelled(RecordingDispatcher):
        def dispatch(self, request):
            super().dispatch(request)
            raise DispatchCancelled()

    pool = WorkerPool(_options(batch_size=2), Cancelled(), num_workers=1)

    errors = pool.run(_docs(3))

    assert errors == []
    assert pool.stats[0].dropped == 3
