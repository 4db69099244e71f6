"""Read-only options shared by the workers, the dispatcher and the index admin calls."""
from dataclasses import dataclass, field
from typing import Optional, Tuple

from esbulk.errors import IndexNameRequired, InvalidBatchSize, NoWorkers, UnsupportedOpType

OP_TYPES = ("index", "create", "update", "delete")


@dataclass(frozen=True)
class Options:
    servers: Tuple[str, ...] = field(default_factory=tuple)
    index: str = ""
    doc_type: str = ""
    op_type: str = "index"
    batch_size: int = 1000
    id_field: str = ""
    username: str = ""
    password: str = field(default="", repr=False)
    pipeline: str = ""
    insecure_skip_verify: bool = False
    verbose: bool = False
    include_type_name: bool = False
    request_timeout: int = 30
    max_retries: int = 3
    retry_on_timeout: bool = True
    retry_backoff: float = 0.5

    @property
    def credentials(self) -> Optional[Tuple[str, str]]:
        if self.username and self.password:
            return (self.username, self.password)
        return None

    def validate(self, num_workers: int = 1) -> None:
        """Raise a ConfigError for settings that would make a run pointless or broken."""
        if num_workers <= 0:
            raise NoWorkers()
        if self.batch_size <= 0:
            raise InvalidBatchSize()
        if not self.index:
            raise IndexNameRequired()
        if self.op_type not in OP_TYPES:
            raise UnsupportedOpType(self.op_type)
