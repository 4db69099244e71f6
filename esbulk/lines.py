"""Read trimmed, non-empty lines from plain or gzip-compressed input."""
import gzip
import io
import json
import logging
import sys
from typing import IO, Iterable, Iterator, Optional

logger = logging.getLogger(__name__)


def open_input(path: str, gzipped: Optional[bool] = None) -> IO[str]:
    """Open path as UTF-8 text; "-" is stdin. gzip is used when asked for or for a .gz suffix."""
    if gzipped is None:
        gzipped = path.lower().endswith(".gz")
    if path == "-":
        if gzipped:
            return io.TextIOWrapper(gzip.GzipFile(fileobj=sys.stdin.buffer), encoding="utf-8")
        return sys.stdin
    if gzipped:
        return gzip.open(path, "rt", encoding="utf-8")
    return open(path, "r", encoding="utf-8")


def is_json(text: str) -> bool:
    try:
        json.loads(text)
    except ValueError:
        return False
    return True


class LineCounter:
    """Iterate over the usable lines of a stream, counting what was kept and skipped."""

    def __init__(self, stream: Iterable[str], skip_broken: bool = False) -> None:
        self.stream = stream
        self.skip_broken = skip_broken
        self.lines = 0
        self.skipped = 0
        self._consumed = False

    def __iter__(self) -> Iterator[str]:
        if self._consumed:
            raise RuntimeError("line source can only be iterated once")
        self._consumed = True
        for raw in self.stream:
            if isinstance(raw, bytes):
                raw = raw.decode("utf-8")
            line = raw.strip()
            if not line:
                continue
            if self.skip_broken and not is_json(line):
                self.skipped += 1
                logger.debug("skipped line [%s]", line)
                continue
            self.lines += 1
            yield line


def iter_lines(stream: Iterable[str], skip_broken: bool = False) -> Iterator[str]:
    return iter(LineCounter(stream, skip_broken=skip_broken))
