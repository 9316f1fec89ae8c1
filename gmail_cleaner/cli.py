#!/usr/bin/env python3
"""
Gmail Cleaner command line

Runs the mirror pipeline without the HTTP server:

    gmail-cleaner sync --all-pages          # mirror the inbox page by page
    gmail-cleaner classify --until-done     # classify everything pending
    gmail-cleaner list --category Work
    gmail-cleaner categories
    gmail-cleaner batch-action --action archive 18c2f... 18c30...

The Gmail access token comes from --access-token or GMAIL_ACCESS_TOKEN.
"""
import argparse
import asyncio
import logging
import os
import sys
from typing import List, Optional

from dotenv import load_dotenv

from gmail_cleaner.core.ai.classifier import ClassificationEngine
from gmail_cleaner.core.ai.providers import ClassificationProviderError, get_provider
from gmail_cleaner.core.config import Settings, get_settings
from gmail_cleaner.core.database import MessageRepository, create_tables, get_db, init_db
from gmail_cleaner.core.gmail.actions import InvalidBatchActionError, ReconciliationEngine
from gmail_cleaner.core.gmail.gateway import GmailGateway, MailboxGateway
from gmail_cleaner.core.gmail.models import BatchAction, GmailCredentials, SyncCursor
from gmail_cleaner.core.gmail.sync import SyncEngine

load_dotenv()

logger = logging.getLogger("gmail_cleaner.cli")

ACCESS_TOKEN_ENV = "GMAIL_ACCESS_TOKEN"


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format='%(levelname)s: %(message)s'
    )
    # Suppress verbose HTTP logs from API clients
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("openai").setLevel(logging.WARNING)
    logging.getLogger("googleapiclient.discovery_cache").setLevel(logging.ERROR)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='gmail-cleaner',
        description='Mirror Gmail locally, classify it with an LLM and clean it up in bulk'
    )
    parser.add_argument('--database-url', type=str, default=None,
                        help='Override DATABASE_URL')
    parser.add_argument('--user-id', type=str, default=None,
                        help='Local user id (default: DEFAULT_USER_ID setting)')
    parser.add_argument('-v', '--verbose', action='store_true',
                        help='Debug logging')

    subparsers = parser.add_subparsers(dest='command', required=True)

    sync_parser = subparsers.add_parser('sync', help='Mirror one page (or all pages) of mail')
    sync_parser.add_argument('--access-token', type=str, default=None,
                             help=f'Gmail OAuth access token (default: ${ACCESS_TOKEN_ENV})')
    sync_parser.add_argument('--cursor', type=str, default=None,
                             help='Resume from a cursor printed by a previous sync')
    sync_parser.add_argument('--all-pages', action='store_true',
                             help='Keep following the cursor until history is exhausted')
    sync_parser.add_argument('--max-pages', type=int, default=None,
                             help='Stop --all-pages after this many pages')

    classify_parser = subparsers.add_parser('classify', help='Classify pending messages')
    classify_parser.add_argument('--until-done', action='store_true',
                                 help='Repeat batches until nothing is pending')

    list_parser = subparsers.add_parser('list', help='List mirrored messages')
    list_parser.add_argument('--category', type=str, default='All',
                             help="Category filter (default: All)")
    list_parser.add_argument('--page', type=int, default=1,
                             help='Page number (default: 1)')
    list_parser.add_argument('--page-size', type=int, default=None,
                             help='Items per page (default: LIST_PAGE_SIZE setting)')

    subparsers.add_parser('categories', help='Show categories assigned so far')

    action_parser = subparsers.add_parser('batch-action', help='Archive or delete messages')
    action_parser.add_argument('--access-token', type=str, default=None,
                               help=f'Gmail OAuth access token (default: ${ACCESS_TOKEN_ENV})')
    action_parser.add_argument('--action', required=True,
                               choices=[action.value for action in BatchAction],
                               help='archive or delete')
    action_parser.add_argument('ids', nargs='+', help='Gmail message ids')

    return parser


def _mailbox(args: argparse.Namespace, settings: Settings) -> Optional[MailboxGateway]:
    token = args.access_token or os.getenv(ACCESS_TOKEN_ENV)
    if not token:
        print(f"❌ No access token: pass --access-token or set {ACCESS_TOKEN_ENV}", file=sys.stderr)
        return None
    return GmailGateway.from_credentials(GmailCredentials(access_token=token), settings)


async def run_sync(args: argparse.Namespace, repository: MessageRepository, settings: Settings, user_id: str) -> int:
    mailbox = _mailbox(args, settings)
    if mailbox is None:
        return 2

    engine = SyncEngine(repository, max_concurrency=settings.sync_max_concurrency)
    cursor = SyncCursor(args.cursor) if args.cursor else None
    total = 0
    pages = 0

    while True:
        result = await engine.sync(mailbox, user_id, cursor)
        pages += 1
        if result.error:
            print(f"❌ Sync failed: {result.error}", file=sys.stderr)
            if cursor:
                print(f"   Resume with: --cursor {cursor}", file=sys.stderr)
            return 1

        total += result.synced_count
        print(f"  Page {pages}: {result.synced_count} new, {result.skipped_count} already stored"
              + (f", {result.failed_count} failed" if result.failed_count else ""))

        cursor = result.next_cursor
        if not args.all_pages or cursor is None:
            break
        if args.max_pages and pages >= args.max_pages:
            break

    print(f"✅ Synced {total} new message(s) in {pages} page(s)")
    if cursor:
        print(f"   Next cursor: {cursor}")
    else:
        print("   History exhausted")
    return 0


async def run_classify(args: argparse.Namespace, repository: MessageRepository, settings: Settings, user_id: str) -> int:
    try:
        provider = get_provider(settings)
    except ClassificationProviderError as e:
        print(f"❌ {e}", file=sys.stderr)
        return 2

    engine = ClassificationEngine(
        repository,
        provider,
        batch_size=settings.classification_batch_size,
        snippet_chars=settings.classification_snippet_chars,
    )

    total = 0
    batches = 0
    while True:
        result = await engine.classify_pending(user_id)
        if result.error:
            print(f"❌ Batch failed: {result.error}", file=sys.stderr)
            return 1
        if result.selected_count:
            batches += 1
        total += result.processed_count

        # A batch that classified nothing would be selected again forever
        if not args.until_done or result.processed_count == 0:
            break

    stats = provider.get_stats()
    print(f"✅ Classified {total} message(s) in {batches} batch(es) "
          f"({stats['tokens']} tokens, ${stats['cost']:.4f})")
    return 0


def run_list(args: argparse.Namespace, repository: MessageRepository, settings: Settings, user_id: str) -> int:
    result = repository.find_page(
        user_id,
        category=args.category,
        page=args.page,
        page_size=args.page_size or settings.list_page_size,
    )
    for message in result.items:
        label = message.category or "-"
        action = message.suggested_action or "-"
        print(f"{message.message_id:18} {label[:20]:20} {action:8} {message.subject[:60]}")
    print(f"Page {result.page}/{max(result.pages, 1)} ({result.total} message(s))")
    return 0


def run_categories(args: argparse.Namespace, repository: MessageRepository, settings: Settings, user_id: str) -> int:
    categories = repository.find_distinct_categories(user_id)
    if not categories:
        print("No categories yet")
    for category in categories:
        print(category)
    return 0


async def run_batch_action(args: argparse.Namespace, repository: MessageRepository, settings: Settings, user_id: str) -> int:
    mailbox = _mailbox(args, settings)
    if mailbox is None:
        return 2

    engine = ReconciliationEngine(repository, settings)
    try:
        result = await engine.apply_batch_action(mailbox, user_id, args.ids, args.action)
    except InvalidBatchActionError as e:
        print(f"❌ {e}", file=sys.stderr)
        return 2

    if not result.success:
        print(f"❌ {args.action} failed in Gmail, nothing removed locally: {result.error}", file=sys.stderr)
        return 1

    print(f"✅ {args.action}: {result.count} message(s) updated in Gmail, "
          f"{result.deleted_locally} removed from the local mirror")
    return 0


async def _run(args: argparse.Namespace, settings: Settings) -> int:
    init_db(args.database_url)
    create_tables()

    user_id = args.user_id or settings.default_user_id
    db_gen = get_db()
    db = next(db_gen)
    try:
        repository = MessageRepository(db, snippet_max_chars=settings.snippet_max_chars)
        if args.command == 'sync':
            return await run_sync(args, repository, settings, user_id)
        if args.command == 'classify':
            return await run_classify(args, repository, settings, user_id)
        if args.command == 'list':
            return run_list(args, repository, settings, user_id)
        if args.command == 'categories':
            return run_categories(args, repository, settings, user_id)
        if args.command == 'batch-action':
            return await run_batch_action(args, repository, settings, user_id)
        raise ValueError(f"Unknown command: {args.command}")
    finally:
        db_gen.close()


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point"""
    args = build_parser().parse_args(argv)
    _configure_logging(args.verbose)

    try:
        return asyncio.run(_run(args, get_settings()))
    except RuntimeError as e:
        print(f"❌ {e}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        print("\n⚠️  Interrupted")
        return 130


if __name__ == "__main__":
    sys.exit(main())
