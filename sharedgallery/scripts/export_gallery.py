#!/usr/bin/env python3
"""
Download gallery images into a local folder.

Usage:
    python -m sharedgallery.scripts.export_gallery DEST [--uploader NAME] [--limit N]

Ctrl-C stops after the image currently downloading.
"""
import signal
import asyncio
import argparse

from sharedgallery.core.config import logger
from sharedgallery.core.database import init_db
from sharedgallery.pipeline.export import CancelToken, export_items
from sharedgallery.utils.records import get_record_store
from sharedgallery.utils.storage import get_object_store


async def run(args) -> int:
    filters = {"uploader_name": args.uploader} if args.uploader else None
    items = await get_record_store().select(filters, limit=args.limit or None)
    if not items:
        logger.info("No images to download")
        return 0

    cancel = CancelToken()
    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, cancel.cancel)
    except (NotImplementedError, RuntimeError):
        pass  # no signal handlers on this platform

    def progress(done: int, total: int) -> None:
        logger.info(f"Downloaded {done}/{total}")

    result = await export_items(items, get_object_store(), args.dest, cancel=cancel,
                                on_progress=progress, pause=args.pause)
    print(result.status_message())
    return 0 if not result.failed else 1


def main():
    parser = argparse.ArgumentParser(description="Download images from the shared gallery")
    parser.add_argument("dest", help="Destination folder")
    parser.add_argument("--uploader", help="Only images from this uploader name")
    parser.add_argument("--limit", type=int, default=0, help="Maximum number of images (0 = all)")
    parser.add_argument("--pause", type=float, default=0.3, help="Seconds to wait between downloads")
    args = parser.parse_args()

    init_db()
    raise SystemExit(asyncio.run(run(args)))


if __name__ == "__main__":
    main()
