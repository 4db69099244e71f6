#!/usr/bin/env python3
"""Command line entry point: esbulk [OPTIONS] [FILE]."""
import argparse
import logging
import os
import signal
import sys
import threading
from typing import List, Optional

from elasticsearch import ApiError, TransportError

from esbulk import __version__
from esbulk.errors import ConfigError, EsbulkError, IndexingFailed
from esbulk.es_client import (
    ES_MAX_RETRIES,
    ES_PASSWORD,
    ES_REQUEST_TIMEOUT,
    ES_RETRY_BACKOFF,
    ES_RETRY_ON_TIMEOUT,
    ES_SERVERS,
    ES_USER,
    ES_VERIFY_TLS,
    parse_servers,
)
from esbulk.runner import Runner

logger = logging.getLogger("esbulk")


def configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.INFO if verbose else logging.WARNING,
        format="%(asctime)s %(message)s",
        datefmt="%Y/%m/%d %H:%M:%S",
    )
    if os.getenv("ESBULK_DEBUG", "").strip().lower() in ("1", "true", "yes"):
        logger.setLevel(logging.DEBUG)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="esbulk",
        description="Bulk index newline delimited JSON into Elasticsearch.",
        allow_abbrev=False,
    )
    parser.add_argument("file", nargs="?", default="-", help="NDJSON input, - for stdin (default: -)")
    parser.add_argument("-server", action="append", default=[], help="elasticsearch server, repeatable (default: ES_SERVERS)")
    parser.add_argument("-index", default="", help="index name")
    parser.add_argument("-type", dest="doc_type", default="", help="elasticsearch doc type (legacy, empty for typeless)")
    parser.add_argument("-optype", default="index", choices=["index", "create", "update", "delete"],
                        help="bulk action type (default: index)")
    parser.add_argument("-size", type=int, default=1000, help="bulk batch size (default: 1000)")
    parser.add_argument("-w", dest="workers", type=int, default=os.cpu_count() or 1,
                        help="number of workers to use (default: number of CPUs)")
    parser.add_argument("-id", dest="id_field", default="",
                        help="name of field to use as id field, comma or space separated, dots for nesting")
    parser.add_argument("-pipeline", default="", help="ingest pipeline to use")
    parser.add_argument("-purge", action="store_true", help="purge any existing index before indexing")
    parser.add_argument("-purge-pause", type=float, default=1.0, help="seconds to wait after purge (default: 1)")
    parser.add_argument("-mapping", default="", help="mapping string or filename to apply before indexing")
    parser.add_argument("-config", default="", help="index settings/mapping body (string or filename) for index creation")
    parser.add_argument("-r", dest="refresh_interval", default="1s", help="refresh interval after import (default: 1s)")
    parser.add_argument("-0", dest="zero_replica", action="store_true", help="set the number of replicas to 0 during indexing")
    parser.add_argument("-skipbroken", action="store_true", help="skip broken json")
    parser.add_argument("-u", dest="auth", default="", help="http basic auth as user:password")
    parser.add_argument("-k", dest="insecure", action="store_true", help="skip insecure certificate verification")
    parser.add_argument("-z", dest="gzipped", action="store_true", default=None, help="unzip gz'd file on the fly")
    parser.add_argument("-timeout", type=int, default=ES_REQUEST_TIMEOUT, help="request timeout in seconds")
    parser.add_argument("-retries", type=int, default=ES_MAX_RETRIES, help="retries per bulk request")
    parser.add_argument("-include-type-name", action="store_true", help="add include_type_name to typed mapping requests")
    parser.add_argument("-verbose", action="store_true", help="output various information")
    parser.add_argument("-v", dest="version", action="store_true", help="prints current program version")
    return parser


def runner_from_args(args: argparse.Namespace) -> Runner:
    username, password = ES_USER, ES_PASSWORD
    if args.auth:
        username, _, password = args.auth.partition(":")
    servers: List[str] = []
    for value in args.server:
        servers.extend(parse_servers(value))
    return Runner(
        index_name=args.index,
        servers=servers or parse_servers(ES_SERVERS),
        doc_type=args.doc_type,
        op_type=args.optype,
        batch_size=args.size,
        num_workers=args.workers,
        identifier_field=args.id_field,
        pipeline=args.pipeline,
        username=username,
        password=password,
        insecure_skip_verify=args.insecure or not ES_VERIFY_TLS,
        include_type_name=args.include_type_name,
        purge=args.purge,
        purge_pause=args.purge_pause,
        refresh_interval=args.refresh_interval,
        zero_replica=args.zero_replica,
        skip_broken=args.skipbroken,
        verbose=args.verbose,
        config=args.config,
        mapping=args.mapping,
        file=args.file,
        gzipped=args.gzipped,
        request_timeout=args.timeout,
        max_retries=args.retries,
        retry_on_timeout=ES_RETRY_ON_TIMEOUT,
        retry_backoff=ES_RETRY_BACKOFF,
    )


def install_signal_handlers(cancel: threading.Event) -> None:
    def handler(signum, frame):
        logger.warning("received signal %d, stopping", signum)
        cancel.set()

    signal.signal(signal.SIGINT, handler)
    signal.signal(signal.SIGTERM, handler)


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    if args.version:
        print(__version__)
        return 0
    configure_logging(args.verbose)

    cancel = threading.Event()
    install_signal_handlers(cancel)
    try:
        result = runner_from_args(args).run(cancel=cancel)
    except ConfigError as e:
        print(f"esbulk: {e}", file=sys.stderr)
        return 1
    except IndexingFailed as e:
        for i, err in enumerate(e.errors[:5]):
            print(f"  [{i + 1}] {err}", file=sys.stderr)
        if len(e.errors) > 5:
            print(f"  ... and {len(e.errors) - 5} more errors", file=sys.stderr)
        print(f"esbulk: {e}", file=sys.stderr)
        if e.__cause__ is not None:
            print(f"esbulk: {e.__cause__}", file=sys.stderr)
        return 1
    except (EsbulkError, ApiError, TransportError, OSError) as e:
        print(f"esbulk: {e}", file=sys.stderr)
        return 1
    if result.cancelled:
        print("esbulk: cancelled", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
