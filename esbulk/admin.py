"""Index management calls: purge, create, mapping, settings and flush."""
import json
import logging
import os
from typing import Any, Dict, Optional

from elasticsearch import ApiError, BadRequestError, Elasticsearch, NotFoundError

from esbulk.errors import ConfigError, IndexAdminError
from esbulk.options import Options

logger = logging.getLogger(__name__)

# Elasticsearch before 5.x answers a create on an existing index with a 400
# naming this exception; newer versions use resource_already_exists_exception.
ALREADY_EXISTS_MARKERS = ("IndexAlreadyExistsException", "resource_already_exists_exception")


def _body(resp: Any) -> Any:
    return getattr(resp, "body", resp)


def _error_text(exc: ApiError) -> str:
    body = exc.body
    return json.dumps(body) if isinstance(body, (dict, list)) else str(body)


def read_body(value: str) -> Dict[str, Any]:
    """Load a JSON request body from a file path, or parse value itself if no such file exists."""
    if os.path.isfile(value):
        with open(value, "r", encoding="utf-8") as f:
            text = f.read()
    else:
        text = value
    try:
        body = json.loads(text)
    except ValueError as e:
        raise ConfigError(f"invalid JSON body ({value[:80]}): {e}") from e
    if not isinstance(body, dict):
        raise ConfigError(f"JSON body must be an object: {value[:80]}")
    return body


def delete_index(client: Elasticsearch, options: Options) -> None:
    try:
        resp = client.indices.delete(index=options.index)
    except NotFoundError:
        logger.info("purge: index %s does not exist", options.index)
        return
    except ApiError as e:
        raise IndexAdminError(f"failed to delete index {options.index} ({e.meta.status}): {_error_text(e)}") from e
    if options.verbose:
        logger.info("purged index: %s", _body(resp))


def index_exists(client: Elasticsearch, options: Options) -> bool:
    return bool(client.indices.exists(index=options.index))


def create_index(client: Elasticsearch, options: Options, body: Optional[Dict[str, Any]] = None) -> bool:
    """Create the index unless it exists. Returns True if it was created."""
    if index_exists(client, options):
        return False
    kwargs = {"body": body} if body else {}
    try:
        client.indices.create(index=options.index, **kwargs)
    except BadRequestError as e:
        text = _error_text(e)
        if any(marker in text for marker in ALREADY_EXISTS_MARKERS):
            return False
        logger.warning("elasticsearch response was: %s", text)
        raise IndexAdminError(f"failed to create index {options.index} (400): {text}") from e
    except ApiError as e:
        raise IndexAdminError(f"failed to create index {options.index} ({e.meta.status}): {_error_text(e)}") from e
    if options.verbose:
        logger.info("created index: %s", options.index)
    return True


def put_mapping(client: Elasticsearch, options: Options, mapping: Dict[str, Any]) -> None:
    try:
        if options.doc_type:
            # typed mappings (Elasticsearch 6 and before)
            params = {"include_type_name": "true"} if options.include_type_name else None
            client.perform_request(
                "PUT",
                f"/{options.index}/_mapping/{options.doc_type}",
                params=params,
                headers={"accept": "application/json", "content-type": "application/json"},
                body=mapping,
            )
        else:
            client.indices.put_mapping(index=options.index, body=mapping)
    except ApiError as e:
        raise IndexAdminError(f"failed to apply mapping with {e.meta.status}: {_error_text(e)}") from e
    if options.verbose:
        logger.info("applied mapping to %s", options.index)


def get_number_of_replicas(client: Elasticsearch, options: Options) -> str:
    try:
        doc = _body(client.indices.get_settings(index=options.index))
    except ApiError as e:
        raise IndexAdminError(f"could not get settings for {options.index} ({e.meta.status}): {_error_text(e)}") from e
    # keyed by the concrete index name, which differs from options.index for aliases
    entry = doc.get(options.index) or next(iter(doc.values()), None)
    try:
        return str(entry["settings"]["index"]["number_of_replicas"])
    except (KeyError, TypeError) as e:
        raise IndexAdminError(f"no number_of_replicas in settings of {options.index}: {doc}") from e


def put_index_settings(client: Elasticsearch, options: Options, settings: Dict[str, Any]) -> None:
    try:
        client.indices.put_settings(index=options.index, settings=settings)
    except ApiError as e:
        raise IndexAdminError(f"failed to apply setting {settings} ({e.meta.status}): {_error_text(e)}") from e
    if options.verbose:
        logger.info("applied setting: %s", json.dumps(settings))


def flush_index(client: Elasticsearch, options: Options) -> None:
    try:
        client.indices.flush(index=options.index)
    except ApiError as e:
        raise IndexAdminError(f"flush of {options.index} failed ({e.meta.status}): {_error_text(e)}") from e
    if options.verbose:
        logger.info("index flushed: %s", options.index)
