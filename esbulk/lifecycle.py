"""Index settings for fast ingest, put back on every exit path."""
import logging
from dataclasses import dataclass
from typing import Any, List, Optional

from esbulk.admin import flush_index, get_number_of_replicas, put_index_settings
from esbulk.errors import RestoreError
from esbulk.es_client import ServerPool
from esbulk.options import Options

logger = logging.getLogger(__name__)

DISABLED_REFRESH = "-1"


@dataclass
class IndexState:
    server: str
    client: Any
    number_of_replicas: str


class FastIngest:
    """Context manager that disables refresh (and optionally replicas) while a load runs.

    On exit, for every server that was touched: refresh_interval is set to
    refresh_interval, number_of_replicas back to what it was before, then the
    index is flushed. This happens whether the body succeeded, raised or was
    cancelled.
    """

    def __init__(
        self,
        pool: ServerPool,
        options: Options,
        refresh_interval: str = "1s",
        zero_replica: bool = False,
    ) -> None:
        self.pool = pool
        self.options = options
        self.refresh_interval = refresh_interval
        self.zero_replica = zero_replica
        self.acquired: List[IndexState] = []

    def __enter__(self) -> "FastIngest":
        try:
            for server, client in self.pool.clients():
                replicas = get_number_of_replicas(client, self.options)
                self.acquired.append(IndexState(server, client, replicas))
                if self.options.verbose:
                    logger.info("on shutdown, number_of_replicas will be set back to %s", replicas)
                    logger.info("on shutdown, refresh_interval will be set back to %s", self.refresh_interval)
                put_index_settings(client, self.options, {"index": {"refresh_interval": DISABLED_REFRESH}})
                if self.zero_replica:
                    put_index_settings(client, self.options, {"index": {"number_of_replicas": 0}})
        except BaseException:
            self.restore()
            raise
        return self

    def __exit__(self, exc_type: Optional[type], exc: Optional[BaseException], tb: Any) -> bool:
        failures = self.restore()
        if failures and exc_type is None:
            raise RestoreError(f"could not restore index settings: {'; '.join(str(f) for f in failures)}")
        return False

    def restore(self) -> List[Exception]:
        """Restore every acquired server; returns the failures instead of stopping at the first."""
        failures: List[Exception] = []
        while self.acquired:
            state = self.acquired.pop(0)
            steps = (
                ("refresh_interval", lambda: put_index_settings(
                    state.client, self.options, {"index": {"refresh_interval": self.refresh_interval}})),
                ("number_of_replicas", lambda: put_index_settings(
                    state.client, self.options, {"index": {"number_of_replicas": state.number_of_replicas}})),
                ("flush", lambda: flush_index(state.client, self.options)),
            )
            for name, step in steps:
                try:
                    step()
                except Exception as e:
                    logger.error("restoring %s on %s failed: %s", name, state.server, e)
                    failures.append(e)
        return failures
