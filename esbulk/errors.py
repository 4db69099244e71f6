"""Exceptions raised by the loader. Everything derives from EsbulkError."""
from typing import Any, List, Optional


class EsbulkError(Exception):
    pass


class ConfigError(EsbulkError):
    """Invalid configuration, detected before any network activity."""


class IndexNameRequired(ConfigError):
    def __init__(self) -> None:
        super().__init__("index name required")


class NoWorkers(ConfigError):
    def __init__(self) -> None:
        super().__init__("no workers configured")


class InvalidBatchSize(ConfigError):
    def __init__(self) -> None:
        super().__init__("cannot use zero batch size")


class UnsupportedOpType(ConfigError):
    def __init__(self, op_type: str) -> None:
        super().__init__(f"unsupported operation type: {op_type!r}")
        self.op_type = op_type


class IdentifierError(EsbulkError):
    pass


class MissingIdField(IdentifierError):
    def __init__(self, field: str, doc: str) -> None:
        super().__init__(f"document has no ID field ({field}): {doc}")
        self.field = field
        self.doc = doc


class UnsupportedIdValue(IdentifierError):
    def __init__(self, field: str) -> None:
        super().__init__(f"cannot convert id value to string ({field})")
        self.field = field


class DispatchError(EsbulkError):
    pass


class BulkHTTPError(DispatchError):
    def __init__(self, status: int, reason: str, body: str) -> None:
        super().__init__(f"indexing failed with {status} {reason}: {body}")
        self.status = status
        self.body = body


class BulkItemErrors(DispatchError):
    def __init__(self, response: Any) -> None:
        super().__init__(
            "error during bulk operation, check error details; "
            "maybe try fewer workers (-w) or increase thread_pool.write.queue_size in your nodes"
        )
        self.response = response


class DispatchCancelled(DispatchError):
    def __init__(self) -> None:
        super().__init__("bulk request cancelled")


class IndexAdminError(EsbulkError):
    pass


class RestoreError(IndexAdminError):
    """Index settings could not be put back after the run."""


class WorkerError(EsbulkError):
    def __init__(self, worker: str, cause: BaseException, docs: int = 0) -> None:
        super().__init__(f"worker {worker}: bulk index operation failed ({docs} docs): {cause}")
        self.worker = worker
        self.cause = cause
        self.docs = docs


class IndexingFailed(EsbulkError):
    def __init__(self, errors: List[WorkerError], result: Optional[Any] = None) -> None:
        lost = sum(e.docs for e in errors)
        super().__init__(f"{len(errors)} batch(es) failed, {lost} document(s) not indexed; first error: {errors[0]}")
        self.errors = errors
        self.result = result
