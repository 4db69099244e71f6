"""Send bulk requests to a random server from the pool and check the outcome."""
import json
import logging
import threading
from dataclasses import dataclass, field
from http import HTTPStatus
from typing import Any, Dict, List, Mapping, Optional

from elasticsearch import ApiError, ConnectionTimeout
from elasticsearch import ConnectionError as ESConnectionError

from esbulk.bulk import BulkRequest
from esbulk.errors import BulkHTTPError, BulkItemErrors, DispatchCancelled
from esbulk.es_client import ServerPool
from esbulk.options import Options

logger = logging.getLogger(__name__)

# Retried with backoff, like connection errors.
RETRY_STATUSES = {429, 502, 503}
# Not retried; the body may still hold a bulk result worth reading.
TOLERATED_STATUSES = {504}
MAX_BACKOFF_SEC = 30.0
BULK_HEADERS = {"accept": "application/json", "content-type": "application/x-ndjson"}


@dataclass(frozen=True)
class BulkItem:
    action: str
    index: str = ""
    doc_type: str = ""
    id: str = ""
    status: int = 0
    error: Optional[Dict[str, Any]] = None

    @classmethod
    def from_dict(cls, item: Mapping[str, Any]) -> "BulkItem":
        action, result = next(iter(item.items()), ("", {}))
        result = result or {}
        error = result.get("error")
        if error is not None and not isinstance(error, dict):
            error = {"type": "", "reason": str(error)}
        return cls(
            action=action,
            index=str(result.get("_index", "")),
            doc_type=str(result.get("_type", "") or ""),
            id=str(result.get("_id", "") or ""),
            status=int(result.get("status", 0) or 0),
            error=error,
        )

    @property
    def failed(self) -> bool:
        return self.error is not None or self.status >= 400


@dataclass(frozen=True)
class BulkResponse:
    took: int = 0
    errors: bool = False
    items: List[BulkItem] = field(default_factory=list)

    @classmethod
    def from_dict(cls, body: Mapping[str, Any]) -> "BulkResponse":
        return cls(
            took=int(body.get("took", 0) or 0),
            errors=bool(body.get("errors", False)),
            items=[BulkItem.from_dict(item) for item in body.get("items") or []],
        )

    def failed_items(self) -> List[BulkItem]:
        return [item for item in self.items if item.failed]


def _body_text(body: Any) -> str:
    if isinstance(body, (dict, list)):
        return json.dumps(body)
    if isinstance(body, bytes):
        return body.decode("utf-8", errors="replace")
    return "" if body is None else str(body)


def _reason(status: int) -> str:
    try:
        return HTTPStatus(status).phrase
    except ValueError:
        return ""


def _is_bulk_result(body: Any) -> bool:
    return isinstance(body, dict) and "items" in body


class BulkDispatcher:
    """Posts BulkRequests with retries. One instance is shared by all workers."""

    def __init__(
        self,
        pool: ServerPool,
        options: Options,
        cancel: Optional[threading.Event] = None,
    ) -> None:
        self.pool = pool
        self.options = options
        self.cancel = cancel or threading.Event()

    def backoff(self, attempt: int) -> float:
        return min(self.options.retry_backoff * (2 ** attempt), MAX_BACKOFF_SEC)

    def _sleep(self, seconds: float) -> None:
        if self.cancel.wait(seconds):
            raise DispatchCancelled()

    def _post(self, request: BulkRequest) -> Any:
        attempt = 0
        while True:
            if self.cancel.is_set():
                raise DispatchCancelled()
            server, client = self.pool.choose()
            try:
                resp = client.options(max_retries=0).perform_request(
                    "POST",
                    "/_bulk",
                    params={"pipeline": request.pipeline} if request.pipeline else None,
                    headers=BULK_HEADERS,
                    body=request.body,
                )
                return getattr(resp, "body", resp)
            except (ESConnectionError, ConnectionTimeout) as exc:
                if attempt >= self.options.max_retries:
                    raise
                if isinstance(exc, ConnectionTimeout) and not self.options.retry_on_timeout:
                    raise
                delay = self.backoff(attempt)
                logger.warning("bulk request to %s failed: %s, retrying in %.1fs (attempt %d/%d)",
                               request.url(server), exc, delay, attempt + 1, self.options.max_retries)
            except ApiError as exc:
                status = exc.meta.status
                if status in TOLERATED_STATUSES and _is_bulk_result(exc.body):
                    logger.warning("bulk request to %s returned %d, reading bulk result anyway",
                                   request.url(server), status)
                    return exc.body
                if status not in RETRY_STATUSES or attempt >= self.options.max_retries:
                    raise BulkHTTPError(status, _reason(status), _body_text(exc.body)) from exc
                delay = self.backoff(attempt)
                logger.warning("bulk request to %s got HTTP %d, retrying in %.1fs (attempt %d/%d)",
                               request.url(server), status, delay, attempt + 1, self.options.max_retries)
            self._sleep(delay)
            attempt += 1

    def dispatch(self, request: BulkRequest) -> Optional[BulkResponse]:
        """Send one bulk request. Returns None for an empty request.

        Raises BulkHTTPError for HTTP errors, BulkItemErrors when the bulk
        result reports failed items, DispatchCancelled when cancelled while
        waiting to retry, and the client's connection errors once retries are
        exhausted.
        """
        if request.count == 0:
            return None
        if self.options.verbose:
            logger.info("message content-length will be %d", len(request.body))
        response = BulkResponse.from_dict(self._post(request))
        if response.errors:
            failed = response.failed_items()
            if self.options.verbose:
                logger.info("error details: ")
                for item in failed:
                    logger.info("  %s %s/%s: %s", item.action, item.index, item.id, item.error)
            logger.debug("request body: %s", request.body)
            raise BulkItemErrors(response)
        return response
