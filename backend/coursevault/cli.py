"""Operator command line.

    coursevault import --source /old/tree --user 1 --dry-run
    coursevault migrate-to-storage --limit 50
    coursevault rebuild-from-storage --clear-all --force
    coursevault sync-from-index --user 28
    coursevault health-check

Exit status is 1 only when a job cannot start (missing source directory,
unknown owner, unreachable index). Item failures are reported in the
summary and still exit 0.
"""
import argparse
import asyncio
import json
import logging
import signal
import sys

from coursevault.config import settings
from coursevault.services.reconciler import JOBS, JobOptions, PreconditionError, Stores, build_job
from coursevault.services.system_status import format_bytes, health_check, system_stats

logger = logging.getLogger("coursevault.cli")

# Flags each job accepts on top of --dry-run / --limit / --yes
_JOB_FLAGS = {
    "import": ("source", "user"),
    "migrate-to-storage": ("source", "user", "skip_duplicates"),
    "migrate-remaining": ("source", "user"),
    "sync-storage": ("user",),
    "rebuild-from-storage": ("user", "clear_all", "force"),
    "sync-from-index": ("user", "batch_size"),
    "reindex": ("batch_size", "skip_content"),
    "auto-restore": ("force",),
}


def _add_flag(parser: argparse.ArgumentParser, flag: str) -> None:
    if flag == "source":
        parser.add_argument("--source", help=f"Source directory (default: {settings.LEGACY_SOURCE_PATH})")
    elif flag == "user":
        parser.add_argument("--user", dest="user_id", type=int,
                            help=f"Owner user ID (default: {settings.DEFAULT_OWNER_ID})")
    elif flag == "batch_size":
        parser.add_argument("--batch-size", type=int, default=100, help="Records per page (default: 100)")
    elif flag == "skip_duplicates":
        parser.add_argument("--skip-duplicates", action="store_true",
                            help="Skip files whose record still points at a legacy path")
    elif flag == "clear_all":
        parser.add_argument("--clear-all", action="store_true",
                            help="Wipe file records, favorites and the index before rebuilding")
    elif flag == "force":
        parser.add_argument("--force", action="store_true", help="Skip confirmations")
    elif flag == "skip_content":
        parser.add_argument("--skip-content", action="store_true", help="Do not re-extract document text")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="coursevault",
        description="Reconcile blob storage, file metadata and the search index",
    )
    parser.add_argument("--log-level", default=settings.LOG_LEVEL, help="Logging level")
    sub = parser.add_subparsers(dest="command", required=True)

    for name, job in JOBS.items():
        p = sub.add_parser(name, help=job.description)
        p.add_argument("--dry-run", action="store_true", help="Scan and report only; write nothing")
        p.add_argument("--limit", type=int, help="Process at most this many items")
        p.add_argument("--yes", "-y", action="store_true", help="Answer yes to the proceed prompt")
        for flag in _JOB_FLAGS[name]:
            _add_flag(p, flag)

    sub.add_parser("init-db", help="Create database tables")
    sub.add_parser("init-index", help="Create the search index with its mapping")
    sub.add_parser("health-check", help="Check database and Elasticsearch connectivity")
    sub.add_parser("stats", help="Show file and index statistics")
    return parser


def options_from_args(args: argparse.Namespace) -> JobOptions:
    return JobOptions.from_params({
        key: getattr(args, key)
        for key in ("source", "user_id", "dry_run", "limit", "batch_size",
                    "skip_duplicates", "clear_all", "force", "skip_content")
        if hasattr(args, key)
    })


def make_confirm(assume_yes: bool):
    async def confirm(question: str, default: bool) -> bool:
        # --yes only answers the proceed prompt; destructive prompts need --force
        if assume_yes and default:
            return True
        hint = "Y/n" if default else "y/N"
        try:
            answer = await asyncio.to_thread(input, f"{question} [{hint}] ")
        except EOFError:
            return default
        answer = answer.strip().lower()
        if not answer:
            return default
        return answer in ("y", "yes")
    return confirm


async def run_job_command(args: argparse.Namespace, stores: Stores) -> int:
    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, stop.set)
    except (NotImplementedError, RuntimeError):
        pass  # no signal support on this loop; Ctrl-C aborts immediately

    async def should_stop() -> bool:
        return stop.is_set()

    job = build_job(
        args.command,
        stores,
        options_from_args(args),
        confirm=make_confirm(args.yes),
        should_stop=should_stop,
    )
    try:
        await job.run()
    except PreconditionError as e:
        logger.error(str(e))
        return 1
    finally:
        try:
            loop.remove_signal_handler(signal.SIGINT)
        except (NotImplementedError, RuntimeError):
            pass
    return 0


async def run_init_db() -> int:
    from coursevault.database import engine
    from coursevault.models import Base

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database tables created")
    return 0


async def run_init_index(stores: Stores) -> int:
    if not await stores.search_index.ping():
        logger.error("Cannot connect to Elasticsearch")
        return 1
    result = await stores.search_index.create_index()
    logger.info(f"Index '{stores.search_index.index_name}': {result}")
    return 0


async def run_health_check(stores: Stores) -> int:
    report = await health_check(stores.metadata, stores.search_index)
    print(json.dumps(report, indent=2))
    return 0 if report["status"] != "error" else 1


async def run_stats(stores: Stores) -> int:
    stats = await system_stats(stores.metadata, stores.search_index)
    stats["storage"]["total"] = format_bytes(stats["storage"]["total_bytes"])
    stats["storage"]["average"] = format_bytes(stats["storage"]["average_bytes"])
    if "size_in_bytes" in stats["index"]:
        stats["index"]["size"] = format_bytes(stats["index"]["size_in_bytes"])
    print(json.dumps(stats, indent=2, default=str))
    return 0


async def dispatch(args: argparse.Namespace, stores: Stores | None = None) -> int:
    if args.command == "init-db":
        return await run_init_db()
    owns_stores = stores is None
    stores = stores or Stores()
    try:
        if args.command == "init-index":
            return await run_init_index(stores)
        if args.command == "health-check":
            return await run_health_check(stores)
        if args.command == "stats":
            return await run_stats(stores)
        return await run_job_command(args, stores)
    finally:
        if owns_stores:
            await stores.close()


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=args.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    return asyncio.run(dispatch(args))


if __name__ == "__main__":
    sys.exit(main())
