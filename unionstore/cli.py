"""CLI entrypoint for union-store.

Runs single store operations against union paths:

    union-store put ./report.csv s3:/reports/2024/report.csv
    union-store cat --offset 9 --length 5 qiniu:/datasets/sample.txt
    union-store ls s3:/reports/2024/

Backends are configured from --qiniu-config/--s3-config or from the
environment (see ``unionstore.env``).
"""

from __future__ import annotations

import argparse
import logging
import shutil
import sys
from typing import Callable, Dict, List, Optional

from unionstore.env import load_env_file
from unionstore.exceptions import UnionStoreError
from unionstore.logging_config import (
    get_logger,
    log_exception,
    parse_log_level,
    setup_logging,
)
from unionstore.reader import StoreReader
from unionstore.store import Store, new_store

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="union-store",
        description=(
            "Read and write objects on the local filesystem, Qiniu and S3 "
            "through union paths"
        ),
    )
    parser.add_argument("--qiniu-config", help="Config file for the primary Qiniu store")
    parser.add_argument("--s3-config", help="Config file for the primary S3 store")
    parser.add_argument(
        "--env-file",
        help="Load environment variables from this .env file before configuring backends",
    )
    parser.add_argument(
        "--log-level",
        help="Log level (DEBUG, INFO, WARNING, ERROR). Defaults to UNIONSTORE_LOG_LEVEL or WARNING",
    )
    parser.add_argument(
        "--log-format",
        choices=["human", "json", "simple"],
        help="Log format (defaults to UNIONSTORE_LOG_FORMAT or human)",
    )

    sub = parser.add_subparsers(dest="command", required=True)

    stat = sub.add_parser("stat", help="Print the size of an object")
    stat.add_argument("key")

    exists = sub.add_parser("exists", help="Print whether an object exists")
    exists.add_argument("key")

    cat = sub.add_parser("cat", help="Write an object (or a byte range of it) to stdout")
    cat.add_argument("key")
    cat.add_argument("--offset", type=int, help="First byte to read")
    cat.add_argument("--length", type=int, help="Number of bytes to read")

    put = sub.add_parser("put", help="Upload a local file ('-' for stdin)")
    put.add_argument("src")
    put.add_argument("key")

    rm = sub.add_parser("rm", help="Delete an object")
    rm.add_argument("key")

    rmdir = sub.add_parser("rmdir", help="Delete a directory and everything below it")
    rmdir.add_argument("key")

    ls = sub.add_parser("ls", help="List the keys under a prefix")
    ls.add_argument("prefix")

    return parser


def _stat(store: Store, args: argparse.Namespace) -> int:
    print(store.stat(args.key).size)
    return 0


def _exists(store: Store, args: argparse.Namespace) -> int:
    print("true" if store.exists(args.key) else "false")
    return 0


def _cat(store: Store, args: argparse.Namespace) -> int:
    offset = args.offset
    if offset is None and args.length is not None:
        offset = 0
    with StoreReader(store, args.key, offset=offset, length=args.length) as reader:
        shutil.copyfileobj(reader, sys.stdout.buffer)
    sys.stdout.buffer.flush()
    return 0


def _put(store: Store, args: argparse.Namespace) -> int:
    if args.src == "-":
        store.upload_from_reader(sys.stdin.buffer, None, args.key)
    else:
        store.upload(args.src, args.key)
    return 0


def _rm(store: Store, args: argparse.Namespace) -> int:
    store.delete(args.key)
    return 0


def _rmdir(store: Store, args: argparse.Namespace) -> int:
    store.delete_directory(args.key)
    return 0


def _ls(store: Store, args: argparse.Namespace) -> int:
    for key in store.list_prefix(args.prefix):
        print(key)
    return 0


COMMANDS: Dict[str, Callable[[Store, argparse.Namespace], int]] = {
    "stat": _stat,
    "exists": _exists,
    "cat": _cat,
    "put": _put,
    "rm": _rm,
    "rmdir": _rmdir,
    "ls": _ls,
}


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command == "cat" and args.offset is not None and args.length is None:
        parser.error("--offset requires --length")

    if args.env_file:
        load_env_file(args.env_file, override=False)

    level = parse_log_level(args.log_level) if args.log_level else None
    setup_logging(level=level, format_type=args.log_format)
    log = get_logger(__name__, extra={"command": args.command})

    try:
        store = new_store(qiniu_config_path=args.qiniu_config, s3_config_path=args.s3_config)
        log.debug("Running %s with %r", args.command, store)
        return COMMANDS[args.command](store, args)
    except UnionStoreError as exc:
        log.debug("Command failed", exc_info=True)
        print(f"union-store: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    try:
        sys.exit(main())
    except Exception as exc:
        log_exception(logger, "Fatal error", exc)
        sys.exit(1)
