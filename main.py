#!/usr/bin/env python3
"""
Chapterwatch - Main Entry Point
Release tracker for serialized fiction with read-progress bookkeeping

Usage:
    python main.py run                         # Scheduler + Telegram notifications
    python main.py add <user> <url> [--alternate]
    python main.py list [--user ID]
    python main.py show <work>
    python main.py remove <user> <work>
    python main.py check <work>                # Incremental update
    python main.py sync <work>                 # Full backfill
    python main.py read <work> <key>
    python main.py unread <work> <key>
    python main.py read-all <work>
    python main.py browse <work> [--read] [--size N --start N --page N | --callback DATA]
    python main.py alternate <work> on|off
    python main.py pair <admin>                # Issue a pairing code
    python main.py redeem <user> <code>
    python main.py status
"""

import sys
import signal
import threading
import argparse
from dataclasses import dataclass
from pathlib import Path

# Ensure we can import from project root
sys.path.insert(0, str(Path(__file__).parent))

from rich.markup import escape
from rich.table import Table

import config
from core.logger import (
    console,
    setup_logging,
    log_startup_banner,
    log_section,
    log_subsection,
    log_success,
    log_warning,
    log_error,
    log_ready,
)
from core.database import Database, init_database
from core.entry_keys import format_position
from core.temporal import format_age, to_db_timestamp
from concurrency.deadline import DeadlineExceeded
from concurrency.locks import init_lock_manager, get_lock_manager
from catalog.client import CatalogClient, init_catalog_client
from catalog.errors import CatalogError
from tracking.errors import TrackingError
from tracking.store import ReleaseStore
from tracking.progress import ProgressTracker
from tracking.navigation import ProgressNavigator, NavRequest, MenuView, MODE_READ, MODE_UNREAD
from tracking.sync import SyncEngine
from tracking.notifications import NewEntriesNotice, format_notice_text
from tracking.pairing import AccessControl
from tracking.scheduler import init_update_scheduler


# Global shutdown event
_shutdown_event = threading.Event()


def signal_handler(signum, frame):
    """Handle shutdown signals gracefully."""
    print()  # New line after ^C
    log_warning("Shutdown signal received...")
    _shutdown_event.set()


@dataclass
class Services:
    """Wired application components."""
    db: Database
    store: ReleaseStore
    catalog: CatalogClient
    engine: SyncEngine
    progress: ProgressTracker
    navigator: ProgressNavigator
    access: AccessControl


def initialize_system(show_banner: bool = False) -> Services:
    """
    Initialize all system components.

    Raises:
        RuntimeError: If the database cannot be initialized
    """
    # Setup logging first
    config.LOGS_DIR.mkdir(parents=True, exist_ok=True)
    config.DATA_DIR.mkdir(parents=True, exist_ok=True)
    setup_logging(
        log_file_path=config.DIAGNOSTIC_LOG_PATH,
        level=config.LOG_LEVEL,
        log_to_file=config.LOG_TO_FILE,
    )

    if show_banner:
        log_startup_banner(config.VERSION, config.PROJECT_NAME)

    init_lock_manager()
    db = init_database(
        db_path=config.DATABASE_PATH,
        busy_timeout_ms=config.DB_BUSY_TIMEOUT_MS
    )

    store = ReleaseStore(db)
    catalog = init_catalog_client()
    engine = SyncEngine(
        store,
        catalog,
        preferred_languages=config.PREFERRED_TITLE_LANGUAGES,
        sync_languages=config.CATALOG_SYNC_LANGUAGES,
        incremental_page_size=config.INCREMENTAL_PAGE_SIZE,
        full_page_size=config.FULL_SYNC_PAGE_SIZE,
        check_timeout=config.CHECK_NEW_TIMEOUT,
        full_sync_timeout=config.FULL_SYNC_TIMEOUT,
        batch_timeout=config.SCHEDULED_RUN_TIMEOUT,
    )
    navigator = ProgressNavigator(
        store,
        direct_list_threshold=config.DIRECT_LIST_THRESHOLD,
        bucket_page_size=config.BUCKET_PAGE_SIZE,
        entry_page_size=config.ENTRY_PAGE_SIZE,
    )
    return Services(
        db=db,
        store=store,
        catalog=catalog,
        engine=engine,
        progress=ProgressTracker(store),
        navigator=navigator,
        access=AccessControl(
            store,
            admin_user=config.TELEGRAM_ADMIN_USER,
            allowed_users=config.TELEGRAM_ALLOWED_USERS,
            ttl_hours=config.PAIRING_CODE_TTL_HOURS,
        ),
    )


def print_configuration() -> None:
    """Print configuration summary."""
    log_section("Configuration", "📡")
    log_subsection(f"Database: {config.DATABASE_PATH}")
    log_subsection(f"Diagnostic Log: {config.DIAGNOSTIC_LOG_PATH}")

    log_section("Catalog", "🌐")
    log_subsection(f"Base URL: {config.CATALOG_BASE_URL}")
    log_subsection(f"Feed Languages: {', '.join(config.CATALOG_LANGUAGES)}")
    log_subsection(f"Backfill Languages: {', '.join(config.CATALOG_SYNC_LANGUAGES)}")
    log_subsection(f"Title Preference: {', '.join(config.PREFERRED_TITLE_LANGUAGES)}")
    log_subsection(f"Request Timeout: {config.CATALOG_REQUEST_TIMEOUT:g}s x {config.CATALOG_MAX_ATTEMPTS} attempts")

    log_section("Scheduler", "⏰")
    log_subsection(f"Interval: every {config.UPDATE_INTERVAL_HOURS:g}h")
    log_subsection(f"Run On Start: {'ENABLED' if config.SCHEDULER_RUN_ON_START else 'DISABLED'}")
    log_subsection(f"Pass Timeout: {config.SCHEDULED_RUN_TIMEOUT // 60}min")

    log_section("Telegram", "📱")
    log_subsection(f"Allowed Users: {len(config.TELEGRAM_ALLOWED_USERS)}")
    log_subsection(f"Pairing Codes: valid {config.PAIRING_CODE_TTL_HOURS:g}h")
    if config.TELEGRAM_ADMIN_USER:
        admin = str(config.TELEGRAM_ADMIN_USER)
        log_subsection(f"Admin: ...{admin[-4:]}")


# =============================================================================
# COMMANDS
# =============================================================================

def cmd_run(services: Services, args) -> int:
    """Run the scheduler until SIGINT/SIGTERM."""
    problems = config.validate_config()
    if problems:
        for problem in problems:
            log_error(problem)
        return 1

    from communication.telegram_notifier import init_telegram_notifier

    print_configuration()

    # Only the long-running loop turns SIGINT into a graceful stop; one-shot
    # commands keep the default KeyboardInterrupt
    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    notifier = init_telegram_notifier(is_paired=services.store.is_paired_user)
    for user_id in config.TELEGRAM_ALLOWED_USERS:
        services.store.ensure_user(user_id)

    scheduler = init_update_scheduler(
        engine=services.engine,
        store=services.store,
        notifier=notifier,
        allowed_users=config.TELEGRAM_ALLOWED_USERS,
        interval_seconds=config.UPDATE_INTERVAL_HOURS * 3600,
        run_timeout=config.SCHEDULED_RUN_TIMEOUT,
        run_on_start=config.SCHEDULER_RUN_ON_START,
    )
    scheduler.start()
    log_ready()

    # Block until a shutdown signal arrives
    while not _shutdown_event.wait(1.0):
        pass

    scheduler.stop()
    get_lock_manager().log_stats()
    log_success("Chapterwatch shutdown complete")
    return 0


def cmd_add(services: Services, args) -> int:
    work, sync_result = services.engine.track_work(
        args.user,
        args.url,
        alternate_channel=args.alternate,
        allowed_users=services.access.allowed_user_ids(),
        backfill=not args.no_sync,
    )
    console.print(f"Tracking [bold]{escape(work.title)}[/bold] as work {work.id}", highlight=False)
    if sync_result is not None:
        console.print(
            f"Synced {sync_result.synced} entries, {sync_result.unread_count} unread",
            highlight=False
        )
    return 0


def cmd_list(services: Services, args) -> int:
    works = services.store.list_tracked_works(args.user)
    if not works:
        console.print("No tracked works.")
        return 0

    table = Table(title="Tracked works")
    table.add_column("ID", justify="right")
    table.add_column("User", justify="right")
    table.add_column("Title")
    table.add_column("Read up to", justify="right")
    table.add_column("Unread", justify="right")
    table.add_column("Checked")
    for work in works:
        title = escape(work.title) + (" ⚡" if work.alternate_channel else "")
        table.add_row(
            str(work.id),
            str(work.user_id),
            title,
            format_position(work.last_read_number),
            str(work.unread_count),
            format_age(work.last_checked),
        )
    console.print(table)
    return 0


def cmd_show(services: Services, args) -> int:
    details = services.store.get_work_details(args.work)
    work = details.work
    last_read = services.progress.last_read_entry(work.id)

    console.print(f"[bold]{escape(work.title)}[/bold] ({work.external_id})", highlight=False)
    console.print(f"  Owner: {work.user_id}", highlight=False)
    console.print(f"  Alternate channel: {'yes' if work.alternate_channel else 'no'}", highlight=False)
    console.print(
        f"  Entries: {details.total_entries} ({details.numeric_entries} numeric, "
        f"{details.extra_entries} extras)",
        highlight=False
    )
    if details.numeric_entries:
        console.print(
            f"  Range: {format_position(details.min_number)} - {format_position(details.max_number)}",
            highlight=False
        )
    if last_read is None:
        console.print("  Last read: nothing yet", highlight=False)
    else:
        suffix = f" - {last_read.title}" if last_read.title.strip() else ""
        console.print(f"  Last read: Ch. {last_read.key}{suffix}", highlight=False)
    console.print(
        f"  Read: {services.store.count_read(work.id)}, unread: {work.unread_count}",
        highlight=False
    )
    console.print(f"  Latest entry: {format_age(services.store.latest_entry_timestamp(work.id))}", highlight=False)
    console.print(f"  Last checked: {format_age(work.last_checked)}", highlight=False)
    console.print(f"  Watermark: {to_db_timestamp(work.last_seen_at) or '-'}", highlight=False)
    return 0


def cmd_remove(services: Services, args) -> int:
    work = services.store.require_work(args.work)
    if work.user_id != args.user:
        log_error(f"Work {work.id} does not belong to user {args.user}")
        return 1
    services.store.delete_work(work.id)
    console.print(f"Removed {work.title}", highlight=False)
    return 0


def cmd_check(services: Services, args) -> int:
    result = services.engine.update_one(args.work)
    if not result.new_entries:
        console.print(f"{result.title}: no new chapters ({result.unread_count} unread)", highlight=False)
        return 0
    console.print(format_notice_text(NewEntriesNotice.from_result(result)), highlight=False, markup=False)
    return 0


def cmd_sync(services: Services, args) -> int:
    result = services.engine.sync_all(args.work)
    console.print(
        f"Synced {result.synced} entries over {result.pages} page(s), {result.unread_count} unread",
        highlight=False
    )
    return 0


def cmd_read(services: Services, args) -> int:
    unread = services.progress.mark_read(args.work, args.key)
    console.print(f"{unread} unread", highlight=False)
    return 0


def cmd_unread(services: Services, args) -> int:
    unread = services.progress.mark_unread(args.work, args.key)
    console.print(f"{unread} unread", highlight=False)
    return 0


def cmd_read_all(services: Services, args) -> int:
    unread = services.progress.mark_all_read(args.work)
    console.print(f"{unread} unread", highlight=False)
    return 0


def render_menu(view: MenuView) -> None:
    """Print a navigation view with the callback data of every button."""
    header = view.title
    if view.label:
        header += f" [{view.label}]"
    console.print(header, style="bold", highlight=False, markup=False)

    if view.last_read is not None:
        console.print(f"Last read: Ch. {view.last_read.key}", highlight=False, markup=False)
    console.print(f"{'Read' if view.mode == MODE_READ else 'Unread'}: {view.total}", highlight=False)

    if view.status:
        console.print(view.status, style="success")
        return

    for choice in view.choices:
        console.print(f"  {choice.label:<40} {choice.callback}", highlight=False, markup=False)
    if view.page_count > 1:
        console.print(f"Page {view.page + 1}/{view.page_count}", highlight=False)
    if view.prev_page is not None:
        console.print(f"  ◀ Prev  {view.prev_page.encode()}", highlight=False, markup=False)
    if view.next_page is not None:
        console.print(f"  Next ▶  {view.next_page.encode()}", highlight=False, markup=False)
    if view.back is not None:
        console.print(f"  ↩ Back  {view.back.encode()}", highlight=False, markup=False)


def cmd_browse(services: Services, args) -> int:
    if args.callback:
        request = NavRequest.decode(args.callback)
    else:
        request = NavRequest(
            mode=MODE_READ if args.read else MODE_UNREAD,
            work_id=args.work,
            bucket_size=args.size,
            bucket_start=args.start,
            page=args.page,
        )
    render_menu(services.navigator.browse(request))
    return 0


def cmd_alternate(services: Services, args) -> int:
    services.store.set_alternate_channel(args.work, args.state == "on")
    console.print(f"Alternate channel {args.state} for work {args.work}", highlight=False)
    return 0


def cmd_pair(services: Services, args) -> int:
    pairing = services.access.issue_code(args.admin)
    console.print(f"Pairing code: [bold]{pairing.code}[/bold]", highlight=False)
    console.print(
        f"Single use, expires {pairing.expires_at.strftime('%Y-%m-%d %H:%M UTC')}",
        highlight=False
    )
    return 0


def cmd_redeem(services: Services, args) -> int:
    pairing = services.access.redeem_code(args.user, args.code)
    console.print(f"User {args.user} paired (code {pairing.code})", highlight=False)
    return 0


def cmd_status(services: Services, args) -> int:
    status = services.store.get_status()
    log_section("Status", "📊")
    log_subsection(f"Works: {status.works}")
    log_subsection(f"Entries: {status.entries}")
    log_subsection(f"Users: {status.users}")
    log_subsection(f"Unread: {status.unread_total}")
    log_subsection(f"Last scheduled run: {format_age(status.last_scheduler_run)}")
    log_subsection(f"Schema: v{services.db.schema_version()}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Chapterwatch - release tracker",
        formatter_class=argparse.RawDescriptionHelpFormatter
    )
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("run", help="Run the update scheduler with Telegram notifications")
    p.set_defaults(handler=cmd_run)

    p = sub.add_parser("add", help="Track a work from its catalog link")
    p.add_argument("user", type=int, help="Owning Telegram user id")
    p.add_argument("url", help="Catalog title link (https://<host>/title/<uuid>)")
    p.add_argument("--alternate", action="store_true", help="Work is distributed on the alternate channel")
    p.add_argument("--no-sync", action="store_true", help="Skip the initial full backfill")
    p.set_defaults(handler=cmd_add)

    p = sub.add_parser("list", help="List tracked works")
    p.add_argument("--user", type=int, default=None, help="Only works of this user")
    p.set_defaults(handler=cmd_list)

    p = sub.add_parser("show", help="Show details of a tracked work")
    p.add_argument("work", type=int)
    p.set_defaults(handler=cmd_show)

    p = sub.add_parser("remove", help="Stop tracking a work")
    p.add_argument("user", type=int)
    p.add_argument("work", type=int)
    p.set_defaults(handler=cmd_remove)

    p = sub.add_parser("check", help="Check a work for new chapters")
    p.add_argument("work", type=int)
    p.set_defaults(handler=cmd_check)

    p = sub.add_parser("sync", help="Backfill the complete chapter list of a work")
    p.add_argument("work", type=int)
    p.set_defaults(handler=cmd_sync)

    p = sub.add_parser("read", help="Mark a chapter (and all below) as read")
    p.add_argument("work", type=int)
    p.add_argument("key")
    p.set_defaults(handler=cmd_read)

    p = sub.add_parser("unread", help="Mark a chapter (and all above) as unread")
    p.add_argument("work", type=int)
    p.add_argument("key")
    p.set_defaults(handler=cmd_unread)

    p = sub.add_parser("read-all", help="Mark every chapter as read")
    p.add_argument("work", type=int)
    p.set_defaults(handler=cmd_read_all)

    p = sub.add_parser("browse", help="Browse chapters by range")
    p.add_argument("work", type=int, nargs="?", default=0)
    p.add_argument("--read", action="store_true", help="Browse read chapters instead of unread")
    p.add_argument("--size", type=int, default=0, choices=[0, 10, 100, 1000])
    p.add_argument("--start", type=int, default=0)
    p.add_argument("--page", type=int, default=0)
    p.add_argument("--callback", default=None, help="Navigation callback data printed by a previous browse")
    p.set_defaults(handler=cmd_browse)

    p = sub.add_parser("alternate", help="Toggle the alternate channel flag")
    p.add_argument("work", type=int)
    p.add_argument("state", choices=["on", "off"])
    p.set_defaults(handler=cmd_alternate)

    p = sub.add_parser("pair", help="Issue a single-use pairing code (admin only)")
    p.add_argument("admin", type=int, help="Telegram user id of the admin")
    p.set_defaults(handler=cmd_pair)

    p = sub.add_parser("redeem", help="Admit a user with a pairing code")
    p.add_argument("user", type=int)
    p.add_argument("code", help="Code in XXXX-XXXX format")
    p.set_defaults(handler=cmd_redeem)

    p = sub.add_parser("status", help="Show store statistics")
    p.set_defaults(handler=cmd_status)

    return parser


def main(argv=None) -> int:
    """
    Main entry point.

    Returns:
        Exit code (0 for success, non-zero for error)
    """
    args = build_parser().parse_args(argv)

    try:
        services = initialize_system(show_banner=args.command == "run")
        return args.handler(services, args)

    except (TrackingError, CatalogError, DeadlineExceeded, ValueError) as e:
        log_error(str(e))
        return 1

    except KeyboardInterrupt:
        log_warning("Interrupted")
        return 130

    except Exception as e:
        log_error(f"Fatal error: {e}")
        import traceback
        traceback.print_exc()
        return 1


if __name__ == "__main__":
    sys.exit(main())
