"""Build bulk API request bodies from raw NDJSON documents."""
import json
from dataclasses import dataclass
from typing import Any, Dict, Optional, Sequence
from urllib.parse import quote

from esbulk.identifier import extract_document_id
from esbulk.options import Options


@dataclass(frozen=True)
class BulkRequest:
    body: str
    count: int
    pipeline: str = ""

    def url(self, server: str) -> str:
        link = f"{server.rstrip('/')}/_bulk"
        if self.pipeline:
            link = f"{link}?pipeline={quote(self.pipeline)}"
        return link

    def __len__(self) -> int:
        return len(self.body)


def action_header(options: Options, doc_id: Optional[str] = None) -> str:
    meta: Dict[str, Any] = {"_index": options.index}
    if options.doc_type:
        meta["_type"] = options.doc_type
    # present whenever an id field is configured, even when empty
    if doc_id is not None:
        meta["_id"] = doc_id
    return json.dumps({options.op_type: meta}, ensure_ascii=False)


def build_bulk_request(docs: Sequence[str], options: Options) -> BulkRequest:
    """Pair each non-blank document with its action header.

    Update actions get the document wrapped as an upsert. Delete actions carry
    no source line. Raises IdentifierError when an id cannot be resolved.
    """
    lines = []
    count = 0
    for doc in docs:
        if not doc.strip():
            continue
        doc_id = None
        if options.id_field:
            doc_id, updated = extract_document_id(doc, options.id_field)
            if updated is not None:
                doc = updated
        lines.append(action_header(options, doc_id))
        if options.op_type == "update":
            lines.append(f'{{"doc": {doc}, "doc_as_upsert": true}}')
        elif options.op_type != "delete":
            lines.append(doc)
        count += 1
    body = "".join(f"{line}\n" for line in lines)
    return BulkRequest(body=body, count=count, pipeline=options.pipeline)
