#!/usr/bin/env python3
"""
Upload images from local paths into the shared gallery.

Usage:
    python -m sharedgallery.scripts.upload_folder PATH [PATH ...] [--name NAME] [--resume | --discard]

Folders are scanned (non-recursively unless --recursive) for image files.
If a previous upload did not finish, you are asked whether to resume it.
"""
import os
import sys
import asyncio
import argparse

from sharedgallery.core.config import UPLOAD_CONCURRENCY, logger
from sharedgallery.core.database import init_db
from sharedgallery.core.session import UploaderSession
from sharedgallery.models.items import SelectedFile
from sharedgallery.pipeline.scheduler import UploadScheduler, BatchAbortedError, EmptyBatchError
from sharedgallery.utils.ledger import UploadLedger
from sharedgallery.utils.local_store import LocalKeyValueStore
from sharedgallery.utils.records import get_record_store
from sharedgallery.utils.storage import get_object_store


def collect_files(paths: list[str], recursive: bool = False) -> list[SelectedFile]:
    found = []
    for p in paths:
        if os.path.isdir(p):
            if recursive:
                for root, _dirs, names in os.walk(p):
                    found.extend(os.path.join(root, n) for n in sorted(names))
            else:
                found.extend(os.path.join(p, n) for n in sorted(os.listdir(p)) if os.path.isfile(os.path.join(p, n)))
        elif os.path.isfile(p):
            found.append(p)
        else:
            logger.warning(f"Not found: {p}")
    return [SelectedFile.from_path(f) for f in found]


def _ask(prompt: str) -> str:
    try:
        return input(prompt).strip()
    except EOFError:
        return ""


def _print_progress(percent: int, done: int, total: int) -> None:
    logger.info(f"Progress: {percent}% ({done}/{total})")


async def run(args) -> int:
    store = LocalKeyValueStore(args.local_store or "")
    session = UploaderSession(store)
    ledger = UploadLedger(store)
    records = get_record_store()
    scheduler = UploadScheduler(session, get_object_store(), records, ledger, width=args.width)

    files = collect_files(args.paths, recursive=args.recursive)
    resume = False

    pending = ledger.load()
    if pending is not None:
        choice = "r" if args.resume else "d" if args.discard else ""
        if not choice:
            print(ledger.describe(pending))
            choice = _ask("[r]esume with the selected files / [d]iscard: ").lower()[:1]
        if choice == "r":
            resume = True
            if not UploadLedger.matches(pending, files):
                logger.warning(f"Selected files differ from the pending batch ({pending.file_count} file(s) recorded)")
        else:
            ledger.clear()
            logger.info("Pending upload discarded")

    if not files:
        logger.info("Nothing to upload")
        return 0

    if args.name and args.name.strip() != session.uploader_name:
        session.set_name(args.name)

    try:
        result = await scheduler.submit(files, on_progress=_print_progress, resume=resume)
        if result.held:
            name = _ask("Your name: ")
            if not name:
                logger.error("An uploader name is required")
                return 2
            result = await scheduler.provide_identity(name, on_progress=_print_progress)
    except EmptyBatchError as ex:
        logger.error(str(ex))
        return 2
    except BatchAbortedError as ex:
        logger.error(str(ex))
        return 1

    print(result.status_message())
    for name, reason in result.failed:
        print(f"  - {name}: {reason}")
    return 0 if not result.failed else 1


def main():
    parser = argparse.ArgumentParser(description="Upload images to the shared gallery")
    parser.add_argument("paths", nargs="*", help="Image files or folders")
    parser.add_argument("--name", help="Uploader display name (saved for next time)")
    parser.add_argument("--recursive", action="store_true", help="Scan folders recursively")
    parser.add_argument("--width", type=int, default=UPLOAD_CONCURRENCY, help="Parallel uploads per group")
    parser.add_argument("--local-store", help="Path of the local profile store (JSON)")
    group = parser.add_mutually_exclusive_group()
    group.add_argument("--resume", action="store_true", help="Resume an unfinished upload without asking")
    group.add_argument("--discard", action="store_true", help="Discard an unfinished upload without asking")
    args = parser.parse_args()

    init_db()
    sys.exit(asyncio.run(run(args)))


if __name__ == "__main__":
    main()
