"""One indexing run: prepare the index, feed the workers, restore the index."""
import contextlib
import logging
import os
import random
import threading
import time
from dataclasses import dataclass, field
from typing import IO, ContextManager, Iterable, List, Optional

from esbulk.admin import create_index, delete_index, put_mapping, read_body
from esbulk.dispatch import BulkDispatcher
from esbulk.errors import IndexingFailed, RestoreError, WorkerError
from esbulk.es_client import DEFAULT_SERVER, ClientFactory, ServerPool, get_client, prepend_scheme
from esbulk.lifecycle import FastIngest
from esbulk.lines import LineCounter, open_input
from esbulk.options import Options
from esbulk.worker import WorkerPool, WorkerStats

logger = logging.getLogger(__name__)


@dataclass
class RunResult:
    docs: int = 0
    skipped: int = 0
    elapsed: float = 0.0
    cancelled: bool = False
    stats: List[WorkerStats] = field(default_factory=list)

    @property
    def rate(self) -> float:
        return self.docs / max(self.elapsed, 0.1)

    @property
    def failed_batches(self) -> int:
        return sum(s.failed for s in self.stats)


@dataclass
class Runner:
    """Bundles the settings of a run. run() may be called once per instance."""

    index_name: str = ""
    servers: List[str] = field(default_factory=list)
    doc_type: str = ""
    op_type: str = "index"
    batch_size: int = 1000
    num_workers: int = field(default_factory=lambda: os.cpu_count() or 1)
    identifier_field: str = ""
    pipeline: str = ""
    username: str = ""
    password: str = ""
    insecure_skip_verify: bool = False
    include_type_name: bool = False
    purge: bool = False
    purge_pause: float = 1.0
    refresh_interval: str = "1s"
    zero_replica: bool = False
    skip_broken: bool = False
    verbose: bool = False
    config: str = ""
    mapping: str = ""
    file: str = "-"
    gzipped: Optional[bool] = None
    request_timeout: int = 30
    max_retries: int = 3
    retry_on_timeout: bool = True
    retry_backoff: float = 0.5
    queue_size: Optional[int] = None
    rng: Optional[random.Random] = None
    client_factory: ClientFactory = get_client

    def options(self) -> Options:
        """Build and validate the shared options; raises ConfigError without touching the network."""
        servers = tuple(prepend_scheme(s) for s in self.servers) or (DEFAULT_SERVER,)
        options = Options(
            servers=servers,
            index=self.index_name,
            doc_type=self.doc_type,
            op_type=self.op_type or "index",
            batch_size=self.batch_size,
            id_field=self.identifier_field,
            username=self.username,
            password=self.password,
            pipeline=self.pipeline,
            insecure_skip_verify=self.insecure_skip_verify,
            verbose=self.verbose,
            include_type_name=self.include_type_name,
            request_timeout=self.request_timeout,
            max_retries=self.max_retries,
            retry_on_timeout=self.retry_on_timeout,
            retry_backoff=self.retry_backoff,
        )
        options.validate(self.num_workers)
        return options

    def _open(self) -> ContextManager[IO[str]]:
        stream = open_input(self.file, self.gzipped)
        if self.file == "-":
            return contextlib.nullcontext(stream)
        return stream

    def run(self, stream: Optional[Iterable[str]] = None, cancel: Optional[threading.Event] = None) -> RunResult:
        """Index every line of stream (or of self.file) into the index.

        Raises IndexingFailed when at least one batch could not be indexed;
        batches that went through stay indexed. If restoring the index settings
        failed as well, the RestoreError is chained as its cause. A restore
        failure after a clean load raises RestoreError itself.
        """
        options = self.options()
        cancel = cancel or threading.Event()
        create_body = read_body(self.config) if self.config else None
        mapping = read_body(self.mapping) if self.mapping else None
        if cancel.is_set():
            return RunResult(cancelled=True)

        pool = ServerPool(options, rng=self.rng, client_factory=self.client_factory)
        if options.verbose:
            logger.info("using %d server(s)", len(pool))
            logger.info("%s", options)
        _, client = pool.choose()
        if self.purge:
            delete_index(client, options)
            if cancel.wait(self.purge_pause):
                return RunResult(cancelled=True)
        create_index(client, options, create_body)
        if mapping is not None:
            put_mapping(client, options, mapping)

        dispatcher = BulkDispatcher(pool, options, cancel)
        workers = WorkerPool(options, dispatcher, self.num_workers, cancel=cancel, queue_size=self.queue_size)
        errors: List[WorkerError] = []
        restore_error: Optional[RestoreError] = None
        start = time.monotonic()
        with contextlib.ExitStack() as stack:
            if stream is None:
                stream = stack.enter_context(self._open())
                if options.verbose:
                    logger.info("start reading from %s", self.file)
            lines = LineCounter(stream, skip_broken=self.skip_broken)
            try:
                with FastIngest(pool, options, self.refresh_interval, self.zero_replica):
                    errors = workers.run(lines)
            except RestoreError as e:
                restore_error = e

        result = RunResult(
            docs=lines.lines,
            skipped=lines.skipped,
            elapsed=time.monotonic() - start,
            cancelled=cancel.is_set(),
            stats=workers.stats,
        )
        if options.verbose:
            logger.info("%d docs in %0.2fs at %0.3f docs/s with %d workers",
                        result.docs, max(result.elapsed, 0.1), result.rate, self.num_workers)
        if errors:
            raise IndexingFailed(errors, result) from restore_error
        if restore_error is not None:
            raise restore_error
        return result
