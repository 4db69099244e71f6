"""Derive bulk document ids from (possibly nested) fields of a JSON document.

An id field spec names one or more fields, separated by commas or spaces. A field
may address a nested value with dots, e.g. "user.id,tag". The resolved values are
concatenated in the listed order, without a separator.

Numbers are kept in their textual form, so that an id of 12345678901234567890 or
1.10 does not go through a float and come out different. For the same reason a
document is never re-encoded: removing "_id" copies the other members as written.
"""
import enum
import functools
import json
import re
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

from esbulk.errors import IdentifierError, MissingIdField, UnsupportedIdValue

RESERVED_ID = "_id"


class NumberLiteral(float):
    """A float that remembers the exact token it was decoded from."""

    literal: str

    def __new__(cls, literal: str) -> "NumberLiteral":
        obj = super().__new__(cls, literal)
        obj.literal = literal
        return obj


class IdKind(enum.Enum):
    STRING = "string"
    NUMBER = "number"
    UNSUPPORTED = "unsupported"


@dataclass(frozen=True)
class IdValue:
    kind: IdKind
    text: str = ""

    @classmethod
    def of(cls, value: Any) -> "IdValue":
        if isinstance(value, str):
            return cls(IdKind.STRING, value)
        if isinstance(value, NumberLiteral):
            return cls(IdKind.NUMBER, value.literal)
        # bool is an int subclass but has no numeric token in JSON
        if isinstance(value, int) and not isinstance(value, bool):
            return cls(IdKind.NUMBER, str(value))
        return cls(IdKind.UNSUPPORTED)


@functools.lru_cache(maxsize=64)
def split_id_fields(spec: str) -> Tuple[str, ...]:
    return tuple(f for f in re.split(r"[,\s]+", spec) if f)


def decode_document(doc: str) -> Dict[str, Any]:
    try:
        decoded = json.loads(doc, parse_float=NumberLiteral)
    except ValueError as exc:
        raise IdentifierError(f"failed to json decode doc: {exc}") from exc
    if not isinstance(decoded, dict):
        raise IdentifierError(f"failed to json decode doc: expected an object, got {type(decoded).__name__}")
    return decoded


def lookup(docmap: Dict[str, Any], field: str) -> Any:
    """Return the value at a dotted path; raise KeyError if any segment is missing."""
    segments = field.split(".")
    node: Any = docmap
    for i, segment in enumerate(segments):
        if not isinstance(node, dict) or segment not in node:
            raise KeyError(".".join(segments[: i + 1]))
        node = node[segment]
    return node


def resolve_id(docmap: Dict[str, Any], fields: Tuple[str, ...], doc: str) -> str:
    parts = []
    for field in fields:
        try:
            value = IdValue.of(lookup(docmap, field))
        except KeyError:
            raise MissingIdField(field, doc) from None
        if value.kind is IdKind.UNSUPPORTED:
            raise UnsupportedIdValue(field)
        parts.append(value.text)
    return "".join(parts)


_WHITESPACE = re.compile(r"[ \t\n\r]*")
_raw_decoder = json.JSONDecoder()


def _members(doc: str) -> List[Tuple[str, str, str]]:
    """Split the top-level object of a valid JSON document into (key, raw key, raw value)."""
    pos = _WHITESPACE.match(doc, 0).end()
    if doc[pos:pos + 1] != "{":
        raise IdentifierError("failed to json decode doc: expected an object")
    pos = _WHITESPACE.match(doc, pos + 1).end()
    members = []
    if doc[pos:pos + 1] == "}":
        return members
    while True:
        key, key_end = _raw_decoder.raw_decode(doc, pos)
        raw_key = doc[pos:key_end]
        pos = _WHITESPACE.match(doc, key_end).end() + 1  # ':'
        value_start = _WHITESPACE.match(doc, pos).end()
        _, value_end = _raw_decoder.raw_decode(doc, value_start)
        members.append((key, raw_key, doc[value_start:value_end]))
        pos = _WHITESPACE.match(doc, value_end).end()
        if doc[pos:pos + 1] != ",":
            return members
        pos = _WHITESPACE.match(doc, pos + 1).end()


def remove_member(doc: str, key: str) -> str:
    """Drop every top-level member named key, copying the others' source text verbatim."""
    kept = [f"{raw_key}: {raw_value}" for name, raw_key, raw_value in _members(doc) if name != key]
    return "{" + ", ".join(kept) + "}"


def extract_document_id(doc: str, id_field: str) -> Tuple[str, Optional[str]]:
    """Return (id, updated_doc).

    updated_doc is only set when "_id" is one of the id fields: the key is
    reserved bulk metadata and gets removed from the document. Otherwise it is
    None and the original text should be sent as is.
    """
    fields = split_id_fields(id_field)
    if not fields:
        raise IdentifierError("empty id field specification")
    docmap = decode_document(doc)
    doc_id = resolve_id(docmap, fields, doc)
    if RESERVED_ID not in fields:
        return doc_id, None
    return doc_id, remove_member(doc, RESERVED_ID)
