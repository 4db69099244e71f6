"""Elasticsearch clients for the configured servers, with defaults from the environment."""
import functools
import logging
import os
import random
import re
import warnings
from typing import Callable, Dict, Iterator, List, Optional, Sequence, Tuple

import urllib3
from dotenv import load_dotenv
from elasticsearch import Elasticsearch

from esbulk.errors import ConfigError
from esbulk.options import Options

load_dotenv()

logger = logging.getLogger(__name__)

DEFAULT_SERVER = "http://localhost:9200"


def _int_env(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, str(default)))
    except ValueError:
        return default


def _float_env(name: str, default: float) -> float:
    try:
        return float(os.getenv(name, str(default)))
    except ValueError:
        return default


def _bool_env(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("true", "1", "yes")


ES_SERVERS = os.getenv("ES_SERVERS", DEFAULT_SERVER)
ES_USER = os.getenv("ES_USER", "")
ES_PASSWORD = os.getenv("ES_PASSWORD", "")
ES_VERIFY_TLS = _bool_env("ES_VERIFY_TLS", True)
ES_REQUEST_TIMEOUT = _int_env("ES_REQUEST_TIMEOUT", 30)
ES_MAX_RETRIES = _int_env("ES_MAX_RETRIES", 3)
ES_RETRY_ON_TIMEOUT = _bool_env("ES_RETRY_ON_TIMEOUT", True)
ES_RETRY_BACKOFF = _float_env("ES_RETRY_BACKOFF", 0.5)


def prepend_scheme(server: str) -> str:
    """Return server with http:// in front unless it already names a scheme."""
    server = server.strip().rstrip("/")
    if not server.startswith("http"):
        return f"http://{server}"
    return server


def parse_servers(value: Optional[str]) -> List[str]:
    """Split a comma or space separated server list, e.g. from ES_SERVERS."""
    if not value:
        return []
    return [prepend_scheme(s) for s in re.split(r"[,\s]+", value) if s.strip()]


@functools.lru_cache(maxsize=32)
def get_client(server: str, options: Options) -> Elasticsearch:
    """Return a client bound to a single server (basic auth and verify_certs from options)."""
    if options.insecure_skip_verify:
        urllib3.disable_warnings(urllib3.exceptions.InsecureRequestWarning)
        warnings.filterwarnings("ignore", message="Connecting to .* using TLS with verify_certs=False is insecure")
    kwargs = {}
    if server.startswith("https"):
        kwargs["verify_certs"] = not options.insecure_skip_verify
        kwargs["ssl_show_warn"] = not options.insecure_skip_verify
    return Elasticsearch(
        server,
        basic_auth=options.credentials,
        node_class="requests",
        request_timeout=options.request_timeout,
        max_retries=options.max_retries,
        retry_on_timeout=options.retry_on_timeout,
        **kwargs,
    )


ClientFactory = Callable[[str, Options], Elasticsearch]


class ServerPool:
    """One client per configured server. choose() spreads requests uniformly over the pool."""

    def __init__(
        self,
        options: Options,
        rng: Optional[random.Random] = None,
        client_factory: ClientFactory = get_client,
    ) -> None:
        if not options.servers:
            raise ConfigError("no servers configured")
        self.servers: Sequence[str] = tuple(options.servers)
        self.rng = rng or random.Random()
        self._clients: Dict[str, Elasticsearch] = {s: client_factory(s, options) for s in self.servers}

    def __len__(self) -> int:
        return len(self.servers)

    def choose(self) -> Tuple[str, Elasticsearch]:
        server = self.rng.choice(self.servers)
        return server, self._clients[server]

    def clients(self) -> Iterator[Tuple[str, Elasticsearch]]:
        for server in self.servers:
            yield server, self._clients[server]
