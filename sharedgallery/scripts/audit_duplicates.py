#!/usr/bin/env python3
"""
Scan the whole gallery for duplicate images (same filename and size).

Usage:
    python -m sharedgallery.scripts.audit_duplicates [--report] [--max-groups N]
"""
import asyncio
import argparse

from sharedgallery.core.config import AUDIT_MAX_GROUPS, logger
from sharedgallery.core.database import init_db
from sharedgallery.pipeline.auditor import DuplicateAuditor
from sharedgallery.utils.notifier import WebhookNotifier
from sharedgallery.utils.records import get_record_store


async def run(args) -> int:
    notifier = WebhookNotifier(args.webhook) if args.report else None
    auditor = DuplicateAuditor(get_record_store(), notifier, max_groups=args.max_groups)
    try:
        groups = await auditor.audit(report=args.report)
    except Exception as ex:
        logger.error(f"Audit failed: {ex}")
        return 1

    for i, group in enumerate(groups, start=1):
        print(f"[{i}] {group.filename} ({group.file_size} bytes) x{len(group.members)}")
        print(f"    keep   {group.original.id}  {group.original.uploader_name}  {group.original.created_at}")
        for item in group.removable:
            print(f"    remove {item.id}  {item.uploader_name}  {item.created_at}")
    if groups and args.sql:
        print()
        for group in groups:
            print(group.delete_statement())

    await auditor.drain()
    return 0


def main():
    parser = argparse.ArgumentParser(description="Find duplicate images in the shared gallery")
    parser.add_argument("--report", action="store_true", help="Send the report to the webhook")
    parser.add_argument("--webhook", default=None, help="Override DUPLICATE_WEBHOOK_URL")
    parser.add_argument("--max-groups", type=int, default=AUDIT_MAX_GROUPS, help="Groups shown per report")
    parser.add_argument("--sql", action="store_true", help="Print DELETE statements for the removable copies")
    args = parser.parse_args()

    init_db()
    raise SystemExit(asyncio.run(run(args)))


if __name__ == "__main__":
    main()
