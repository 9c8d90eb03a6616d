#!/usr/bin/env python3
"""
Revive command line

Runs the generation tracker and usage ledger against local state so jobs
can be started, followed and resumed outside the app:

    python cli.py generate alice photo https://example.com/old.jpg
    python cli.py resume
    python cli.py usage alice
    python cli.py serve
"""

import argparse
import asyncio
import json
import sys
from typing import Optional

from backend.generation_providers import create_provider
from config import settings
from core.failure_classifier import user_message
from core.job_store import JobStore
from core.job_tracker import GenerationJobTracker, QuotaExceededError
from models.job_record import JobKind, JobRecord, JobState
from subscription.usage_ledger import UsageLedger
from utils.logger import logger


def _build_tracker(provider_name: Optional[str]):
    settings.create_directories()
    ledger = UsageLedger(storage_path=settings.LEDGER_FILE, settings=settings)
    store = JobStore(storage_path=settings.JOB_STATE_FILE)
    provider = create_provider(provider_name, settings=settings)
    tracker = GenerationJobTracker(ledger=ledger, provider=provider, store=store, settings=settings)
    return tracker, provider


async def _follow(tracker: GenerationJobTracker, record: JobRecord) -> JobRecord:
    """Print progress until the job reaches a terminal state"""
    waiter = asyncio.ensure_future(tracker.wait(record.owner_id, record.kind))
    last_label = None
    while not waiter.done():
        progress = tracker.get_progress(record.owner_id, record.kind)
        if progress.phase_label != last_label:
            print(f"[{progress.progress_percent:3d}%] {progress.phase_label}")
            last_label = progress.phase_label
        await asyncio.sleep(1.0)
    return waiter.result() or record


def _report(record: JobRecord) -> int:
    if record.state == JobState.SUCCEEDED:
        print(f"Done: {record.result_ref}")
        return 0
    print(f"{record.state.value}: {user_message(record.failure_reason)}")
    if record.error_text:
        print(f"  provider said: {record.error_text}")
    return 1


async def cmd_generate(args) -> int:
    tracker, provider = _build_tracker(args.provider)
    try:
        try:
            record = await tracker.start(args.owner, JobKind(args.kind), args.input, prompt=args.prompt)
        except QuotaExceededError as e:
            print(user_message(e.reason))
            return 2

        print(f"Tracking {record.kind.value} job {record.job_id}")
        if args.detach:
            await tracker.shutdown()
            return 0

        record = await _follow(tracker, record)
        code = _report(record)
        tracker.acknowledge(record.owner_id, record.kind)
        return code
    finally:
        await tracker.shutdown()
        await provider.aclose()


async def cmd_resume(args) -> int:
    tracker, provider = _build_tracker(args.provider)
    try:
        resumed = await tracker.resume()
        if not resumed:
            print("No jobs to resume")
            return 0

        code = 0
        for record in resumed:
            print(f"Resumed {record.kind.value} job {record.job_id} for {record.owner_id}")
            record = await _follow(tracker, record)
            code = max(code, _report(record))
            tracker.acknowledge(record.owner_id, record.kind)
        return code
    finally:
        await tracker.shutdown()
        await provider.aclose()


def cmd_usage(args) -> int:
    ledger = UsageLedger(storage_path=settings.LEDGER_FILE, settings=settings)
    print(json.dumps(ledger.get_usage_summary(args.owner), indent=2))
    return 0


def cmd_serve(args) -> int:
    import uvicorn
    uvicorn.run("web_ui.api.main:app", host=args.host or settings.HOST, port=args.port or settings.PORT)
    return 0


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(
        description="Revive generation and usage tools",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "--provider",
        help=f"Generation provider (default: {settings.JOB_PROVIDER})",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    generate = sub.add_parser("generate", help="Start a generation job and follow it")
    generate.add_argument("owner", help="Owner (app user) id")
    generate.add_argument("kind", choices=[k.value for k in JobKind])
    generate.add_argument("input", help="Source image URL or data URI")
    generate.add_argument("--prompt", help="Optional generation prompt")
    generate.add_argument(
        "--detach",
        action="store_true",
        help="Start the job and exit; follow it later with 'resume'",
    )

    sub.add_parser("resume", help="Resume tracking of persisted jobs")

    usage = sub.add_parser("usage", help="Show usage counters for an owner")
    usage.add_argument("owner")

    serve = sub.add_parser("serve", help="Run the webhook/usage API")
    serve.add_argument("--host")
    serve.add_argument("--port", type=int)

    args = parser.parse_args(argv)

    try:
        if args.command == "generate":
            return asyncio.run(cmd_generate(args))
        if args.command == "resume":
            return asyncio.run(cmd_resume(args))
        if args.command == "usage":
            return cmd_usage(args)
        return cmd_serve(args)
    except KeyboardInterrupt:
        logger.info("Interrupted; persisted jobs can be picked up with 'resume'")
        return 130


if __name__ == "__main__":
    sys.exit(main())
