"""
Chapterwatch - Sync Engine
Reconciles a work's remote chapter feed with the local store.

Two operations:
    update_one  incremental "check new": walks the newest-first feed only
                until it reaches entries at or before the stored
                watermark, then writes everything it found in one
                transaction.
    sync_all    full backfill: walks the whole feed, keeps one
                representative per chapter number chosen by language
                preference, and writes page by page.

Entries without a chapter number (extras) are keyed by their source id
and never collapsed with each other.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional, List, Dict, Iterable, Tuple

from catalog.client import CatalogClient, extract_work_id
from catalog.errors import CatalogError
from catalog.models import FeedEntry
from concurrency.deadline import Deadline, DeadlineExceeded
from core.entry_keys import entry_key_for, display_key, is_numeric_key
from core.logger import log_info, log_warning, log_error, log_success, log_debug
from core.temporal import utc_now, to_db_timestamp
from tracking.errors import SyncTimeoutError, UserNotAllowedError
from tracking.store import ReleaseStore, TrackedWork, EntryRecord

DEFAULT_PREFERRED_LANGUAGES = ["fr", "en"]


# =============================================================================
# RESULTS
# =============================================================================

@dataclass
class NewEntry:
    """A newly discovered entry, as reported to the user."""
    key: str
    label: str
    title: str = ""
    seen_at: Optional[datetime] = None


@dataclass
class SyncResult:
    """Outcome of an incremental update for one work."""
    work_id: int
    user_id: int
    external_id: str
    title: str
    alternate_channel: bool = False
    new_entries: List[NewEntry] = field(default_factory=list)
    unread_count: int = 0
    last_seen_at: Optional[datetime] = None
    error: Optional[Exception] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def has_new_entries(self) -> bool:
        return self.ok and bool(self.new_entries)


@dataclass
class FullSyncResult:
    """Outcome of a full backfill."""
    work_id: int
    synced: int = 0
    last_seen_at: Optional[datetime] = None
    pages: int = 0
    unread_count: int = 0


# =============================================================================
# LANGUAGE PREFERENCE
# =============================================================================

def language_score(language: str, preferred: List[str]) -> int:
    """
    Rank a translation language (lower is better).

    Preferred languages rank by their position, any other language comes
    next, and a missing language ranks last.
    """
    language = (language or "").strip().lower()
    if not language:
        return len(preferred) + 1
    if language in preferred:
        return preferred.index(language)
    return len(preferred)


def prefer_candidate(candidate: FeedEntry, current: FeedEntry, preferred: List[str]) -> bool:
    """True if candidate should replace current as the representative of a key."""
    candidate_score = language_score(candidate.language, preferred)
    current_score = language_score(current.language, preferred)
    if candidate_score != current_score:
        return candidate_score < current_score
    # Equal rank: first seen wins unless it has no title and the candidate does
    return bool(candidate.title.strip()) and not current.title.strip()


def select_representatives(
    entries: Iterable[FeedEntry],
    preferred: List[str],
    winners: Optional[Dict[str, FeedEntry]] = None,
) -> Tuple[Dict[str, FeedEntry], List[str]]:
    """
    Fold feed entries into one representative per entry key.

    Args:
        entries: Entries in feed order
        preferred: Language preference, best first
        winners: Existing selection to extend (modified in place)

    Returns:
        (winners, keys whose representative changed, in first-change order)
    """
    winners = winners if winners is not None else {}
    changed: List[str] = []
    for entry in entries:
        key = entry_key_for(entry.chapter, entry.source_id)
        current = winners.get(key)
        if current is None or prefer_candidate(entry, current, preferred):
            winners[key] = entry
            if key not in changed:
                changed.append(key)
    return winners, changed


def to_record(key: str, entry: FeedEntry, preferred: List[str]) -> EntryRecord:
    """Storage record for a representative. Titles outside the preferred languages are dropped."""
    title = entry.title if entry.language in preferred else ""
    return EntryRecord(
        key=key,
        title=title,
        published_at=entry.published_at,
        readable_at=entry.readable_at,
        created_at=entry.created_at,
        updated_at=entry.updated_at,
    )


def newest_first(entries: Iterable[FeedEntry]) -> List[FeedEntry]:
    """Sort by effective timestamp, newest first; undated entries go last."""
    entries = list(entries)
    dated = [entry for entry in entries if entry.effective_at is not None]
    undated = [entry for entry in entries if entry.effective_at is None]
    return sorted(dated, key=lambda entry: entry.effective_at, reverse=True) + undated


def _is_newer(seen_at: Optional[datetime], watermark: Optional[datetime]) -> bool:
    if seen_at is None:
        return False
    return watermark is None or seen_at > watermark


# =============================================================================
# ENGINE
# =============================================================================

class SyncEngine:
    """
    Incremental and full synchronization of tracked works.

    Args:
        store: Release store
        catalog: Catalog API client
        preferred_languages: Title language preference, best first
        sync_languages: Feed language filter for full backfills
        incremental_page_size: Feed page size for update_one
        full_page_size: Feed page size for sync_all
        check_timeout: Default time budget (s) for update_one
        full_sync_timeout: Default time budget (s) for sync_all
        batch_timeout: Default time budget (s) for update_all
    """

    def __init__(
        self,
        store: ReleaseStore,
        catalog: CatalogClient,
        preferred_languages: Optional[List[str]] = None,
        sync_languages: Optional[List[str]] = None,
        incremental_page_size: int = 100,
        full_page_size: int = 500,
        check_timeout: float = 20,
        full_sync_timeout: float = 300,
        batch_timeout: float = 600,
    ):
        self.store = store
        self.catalog = catalog
        self.preferred_languages = [
            lang.strip().lower() for lang in (preferred_languages or DEFAULT_PREFERRED_LANGUAGES)
            if lang.strip()
        ]
        self.sync_languages = sync_languages
        self.incremental_page_size = incremental_page_size
        self.full_page_size = full_page_size
        self.check_timeout = check_timeout
        self.full_sync_timeout = full_sync_timeout
        self.batch_timeout = batch_timeout

    # =========================================================================
    # INCREMENTAL UPDATE
    # =========================================================================

    def update_one(self, work_id: int, deadline: Optional[Deadline] = None) -> SyncResult:
        """
        Check one work for entries newer than its watermark.

        Nothing is written unless every page fetch succeeds.

        Raises:
            WorkNotFoundError: Unknown work
            CatalogError: The catalog could not be read
            SyncTimeoutError: The deadline expired before the scan finished
        """
        work = self.store.require_work(work_id)
        deadline = deadline or Deadline(self.check_timeout, f"check work {work_id}")
        return self._update_work(work, deadline)

    def _update_work(self, work: TrackedWork, deadline: Deadline) -> SyncResult:
        watermark = work.last_seen_at
        fresh: List[FeedEntry] = []
        max_seen = watermark
        offset = 0

        try:
            while True:
                deadline.check()
                page = self.catalog.fetch_entries(
                    work.external_id,
                    limit=self.incremental_page_size,
                    offset=offset,
                    deadline=deadline,
                )
                if not page.entries:
                    break

                reached_known = False
                for entry in newest_first(page.entries):
                    if not _is_newer(entry.effective_at, watermark):
                        reached_known = True
                        break
                    fresh.append(entry)
                    if max_seen is None or entry.effective_at > max_seen:
                        max_seen = entry.effective_at

                if reached_known or page.is_last():
                    break
                offset += len(page.entries)

        except DeadlineExceeded as e:
            log_warning(f"Check of work {work.id} timed out; nothing written")
            raise SyncTimeoutError(work.id, e.operation, e.budget) from e

        winners, order = select_representatives(fresh, self.preferred_languages)
        records = [to_record(key, winners[key], self.preferred_languages) for key in order]

        unread = self.store.record_sync(
            work.id,
            records,
            checked_at=utc_now(),
            seen_at=max_seen,
        )

        new_entries = [
            NewEntry(
                key=record.key,
                label=display_key(winners[record.key].chapter),
                title=record.title,
                seen_at=winners[record.key].effective_at,
            )
            for record in records
        ]
        new_entries.sort(key=lambda e: e.seen_at, reverse=True)

        if new_entries:
            log_info(f"'{work.title}': {len(new_entries)} new, {unread} unread", prefix="🆕")
        else:
            log_debug(f"'{work.title}': no new entries")

        return SyncResult(
            work_id=work.id,
            user_id=work.user_id,
            external_id=work.external_id,
            title=work.title,
            alternate_channel=work.alternate_channel,
            new_entries=new_entries,
            unread_count=unread,
            last_seen_at=max_seen,
        )

    def update_all(self, deadline: Optional[Deadline] = None) -> List[SyncResult]:
        """
        Run update_one for every tracked work.

        A failing work gets its error recorded in its result and the batch
        moves on to the next one.
        """
        deadline = deadline or Deadline(self.batch_timeout, "scheduled update")
        results = []

        for work in self.store.list_tracked_works():
            try:
                if deadline.expired:
                    raise SyncTimeoutError(work.id, deadline.operation, deadline.budget)
                results.append(self._update_work(work, deadline))
            except (CatalogError, SyncTimeoutError) as e:
                log_error(f"Update failed for '{work.title}' ({work.external_id}): {e}")
                results.append(self._failed_result(work, e))
            except Exception as e:
                log_error(f"Unexpected error updating '{work.title}' (work {work.id}): {e}")
                results.append(self._failed_result(work, e))

        failed = sum(1 for result in results if not result.ok)
        found = sum(len(result.new_entries) for result in results)
        log_info(
            f"Update pass: {len(results)} works, {found} new entries, {failed} failed",
            prefix="🔄"
        )
        return results

    @staticmethod
    def _failed_result(work: TrackedWork, error: Exception) -> SyncResult:
        return SyncResult(
            work_id=work.id,
            user_id=work.user_id,
            external_id=work.external_id,
            title=work.title,
            alternate_channel=work.alternate_channel,
            unread_count=work.unread_count,
            last_seen_at=work.last_seen_at,
            error=error,
        )

    # =========================================================================
    # FULL SYNC
    # =========================================================================

    def sync_all(self, work_id: int, deadline: Optional[Deadline] = None) -> FullSyncResult:
        """
        Backfill the complete feed of a work.

        Each page's changed representatives are written before the next
        page is fetched, so rows from completed pages survive a timeout or
        a catalog failure. The watermark only advances once the whole feed
        has been walked.

        Raises:
            WorkNotFoundError: Unknown work
            CatalogError: The catalog could not be read
            SyncTimeoutError: The deadline expired mid-walk
        """
        work = self.store.require_work(work_id)
        deadline = deadline or Deadline(self.full_sync_timeout, f"full sync of work {work_id}")
        result = FullSyncResult(work_id=work.id, last_seen_at=work.last_seen_at)

        winners: Dict[str, FeedEntry] = {}
        max_seen = work.last_seen_at
        offset = 0

        log_info(f"Full sync of '{work.title}' started", prefix="📥")

        try:
            while True:
                deadline.check()
                page = self.catalog.fetch_entries(
                    work.external_id,
                    limit=self.full_page_size,
                    offset=offset,
                    languages=self.sync_languages,
                    deadline=deadline,
                )
                if not page.entries:
                    break
                result.pages += 1

                for entry in page.entries:
                    seen_at = entry.effective_at
                    if seen_at is not None and (max_seen is None or seen_at > max_seen):
                        max_seen = seen_at

                winners, changed = select_representatives(page.entries, self.preferred_languages, winners)
                records = [to_record(key, winners[key], self.preferred_languages) for key in sorted(changed)]
                self.store.upsert_entries(work.id, records)
                log_debug(f"Work {work.id}: page {result.pages} wrote {len(records)} entries")

                if page.is_last():
                    break
                offset += len(page.entries)

        except DeadlineExceeded as e:
            self.store.recalculate_unread_count(work.id)
            log_warning(f"Full sync of '{work.title}' timed out after {result.pages} pages")
            raise SyncTimeoutError(work.id, e.operation, e.budget) from e
        except CatalogError:
            self.store.recalculate_unread_count(work.id)
            raise

        result.unread_count = self.store.record_sync(
            work.id, [], checked_at=utc_now(), seen_at=max_seen
        )
        result.synced = len(winners)
        result.last_seen_at = max_seen

        numeric = sum(1 for key in winners if is_numeric_key(key))
        log_success(
            f"Full sync of '{work.title}': {result.synced} entries "
            f"({numeric} numeric), watermark {to_db_timestamp(max_seen) or '-'}"
        )
        return result

    # =========================================================================
    # TRACKING
    # =========================================================================

    def track_work(
        self,
        user_id: int,
        url: str,
        alternate_channel: bool = False,
        allowed_users: Optional[List[int]] = None,
        backfill: bool = True,
    ) -> Tuple[TrackedWork, Optional[FullSyncResult]]:
        """
        Start tracking a work from a catalog link, then backfill it.

        Raises:
            UserNotAllowedError: User not in allowed_users (when given)
            InvalidWorkUrlError: The link is not a catalog title link
            DuplicateWorkError: Already tracked by this user
        """
        if allowed_users is not None and user_id not in allowed_users:
            raise UserNotAllowedError(user_id)

        external_id = extract_work_id(url)
        info = self.catalog.get_work(
            external_id, deadline=Deadline(self.check_timeout, f"lookup {external_id}")
        )
        title = info.best_title(self.preferred_languages)
        work = self.store.add_work(user_id, external_id, title, alternate_channel=alternate_channel)

        if not backfill:
            return work, None
        return work, self.sync_all(work.id)
