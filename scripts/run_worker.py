#!/usr/bin/env python3
"""
Run the Rodin mesh worker.

Usage:
    # Process two fal request ids, then exit
    python scripts/run_worker.py 1f2e3d4c 5a6b7c8d --exit-when-idle

    # Keep polling the queue forever, pushing progress to a webhook
    python scripts/run_worker.py --webhook-url http://localhost:3000/hooks/rodin

The fal API key is read from the FAL_KEY environment variable. Other
defaults come from RODIN_WORKER_* variables (see rodin_worker.config).
"""
import sys
import asyncio
import argparse
import logging
from dataclasses import replace
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from rodin_worker.asset_paths import AssetPaths
from rodin_worker.config import WorkerConfig
from rodin_worker.downloader import Downloader
from rodin_worker.errors import ConfigError
from rodin_worker.job_client import FalQueueClient
from rodin_worker.notifier import CompositeNotifier, LoggingNotifier, WebhookNotifier
from rodin_worker.result_store import SQLiteResultStore
from rodin_worker.scheduler import WorkerScheduler
from rodin_worker.task_processor import TaskProcessor
from rodin_worker.task_queue import TaskQueue
from rodin_worker.thumbnail_renderer import ThumbnailRenderer

logger = logging.getLogger("run_worker")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Poll fal Rodin jobs, download their assets and store the results"
    )
    parser.add_argument("task_ids", nargs="*", help="fal request ids to enqueue")
    parser.add_argument("--base-url", default=None, help="Public base URL of the asset server")
    parser.add_argument("--storage-dir", default=None, help="Root directory for downloaded assets")
    parser.add_argument("--db", default=None, help="SQLite result store path")
    parser.add_argument("--webhook-url", default=None, help="POST progress notifications here")
    parser.add_argument(
        "--retry-fatal-errors", action="store_true",
        help="Keep polling through errors until the fatal-error window elapses",
    )
    parser.add_argument(
        "--exit-when-idle", action="store_true",
        help="Exit once the queue is empty and no task is running",
    )
    parser.add_argument("-v", "--verbose", action="store_true")
    return parser


def resolve_config(args: argparse.Namespace) -> WorkerConfig:
    config = WorkerConfig.from_env()
    overrides = {}
    if args.base_url:
        overrides["base_url"] = args.base_url
    if args.storage_dir:
        overrides["storage_dir"] = args.storage_dir
    if args.db:
        overrides["database_path"] = args.db
    if args.webhook_url:
        overrides["webhook_url"] = args.webhook_url
    if args.retry_fatal_errors:
        overrides["retry_fatal_errors"] = True
    config = replace(config, **overrides)
    config.validate()
    return config


async def run(config: WorkerConfig, task_ids, exit_when_idle: bool) -> int:
    notifiers = [LoggingNotifier()]
    if config.webhook_url:
        notifiers.append(WebhookNotifier(config.webhook_url))
    notifier = CompositeNotifier(notifiers)

    store = SQLiteResultStore(config.database_path)
    store.initialize()

    job_client = FalQueueClient(
        config.fal_key,
        app=config.fal_app,
        queue_url=config.fal_queue_url,
        timeout=config.request_timeout_seconds,
    )
    downloader = Downloader(timeout=config.request_timeout_seconds)
    renderer = ThumbnailRenderer(
        deadline_seconds=config.render_deadline_seconds,
        settle_seconds=config.render_settle_seconds,
    )
    paths = AssetPaths(config.storage_dir, config.base_url)

    def make_processor(task_id, cancel_event):
        return TaskProcessor(
            task_id,
            job_client=job_client,
            downloader=downloader,
            renderer=renderer,
            store=store,
            notifier=notifier,
            paths=paths,
            config=config,
            cancel_event=cancel_event,
        )

    scheduler = WorkerScheduler(
        TaskQueue(notifier),
        make_processor,
        queue_poll_interval=config.queue_poll_interval_seconds,
    )
    for task_id in task_ids:
        store.ensure_mesh(task_id)
        scheduler.submit(task_id)

    try:
        if exit_when_idle:
            await scheduler.run_until_idle()
        else:
            await scheduler.run()
    finally:
        await scheduler.shutdown()

    for task_id, outcome in scheduler.outcomes.items():
        print(f"{task_id}: {outcome.value}")
    return 0


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(levelname)s %(name)s: %(message)s",
    )

    try:
        config = resolve_config(args)
    except ConfigError as e:
        print(f"Error: {e}")
        return 1
    if args.task_ids and not config.fal_key:
        print("Error: Set FAL_KEY environment variable to poll fal jobs")
        return 1

    try:
        return asyncio.run(run(config, args.task_ids, args.exit_when_idle))
    except KeyboardInterrupt:
        logger.warning("Interrupted by user.")
        return 1


if __name__ == "__main__":
    sys.exit(main())
