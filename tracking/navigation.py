"""
Chapterwatch - Progress Navigation
Hierarchical, range-bucketed browsing over a work's numeric entries.

Works can have thousands of sparse chapter numbers, so choosing one goes
through levels: thousands (1-999, 1000-1999, ...), then hundreds, then
tens, then individual entries. A level with a single bucket is skipped.

Navigation is stateless. A NavRequest names the view (mode, work, bucket
size, bucket start, page) and every call recomputes the view from the
store. Requests encode to short callback strings that fit Telegram's
64-byte callback_data limit, so all state travels with the interaction.
"""

from dataclasses import dataclass, field, replace
from typing import Optional, List, Tuple

from core.entry_keys import format_position
from core.logger import log_debug
from tracking.store import ReleaseStore, TrackedWork, EntryListItem

MODE_UNREAD = "unread"   # choices mark entries read
MODE_READ = "read"       # choices mark entries unread
MODES = (MODE_UNREAD, MODE_READ)
_MODE_CODES = {MODE_UNREAD: "u", MODE_READ: "r"}
_CODE_MODES = {code: mode for mode, code in _MODE_CODES.items()}

ROOT_BUCKET_SIZE = 1000
BUCKET_SIZES = (1000, 100, 10)
ROOT_RANGE = (1, 10 ** 18)

STATUS_UP_TO_DATE = "UP_TO_DATE"
STATUS_NOTHING_READ = "NOTHING_READ"

VIEW_EMPTY = "empty"
VIEW_BUCKETS = "buckets"
VIEW_ENTRIES = "entries"

ACTION_MARK_READ = "mr"
ACTION_MARK_UNREAD = "mu"

CALLBACK_PREFIX = "nav"
MAX_CALLBACK_BYTES = 64


# =============================================================================
# BUCKET ARITHMETIC
# =============================================================================

def bucket_start(value: float, bucket_size: int, range_start: float) -> int:
    """
    Bucket a value belongs to inside a parent range.

    Buckets start at multiples of bucket_size, except that inside a parent
    range beginning at 1 the lowest bucket is labelled 1 instead of 0.
    """
    if range_start == 1 and value < bucket_size:
        return 1
    return int(value // bucket_size) * bucket_size


def bucket_range(start: int, bucket_size: int) -> Tuple[int, int]:
    """Half-open value range [lo, hi) covered by a bucket."""
    if start == 1:
        return 1, bucket_size
    return start, start + bucket_size


def parent_bucket_start(child_start: int, parent_size: int) -> int:
    """Start of the enclosing bucket one or more levels up."""
    if child_start < parent_size:
        return 1
    return (child_start // parent_size) * parent_size


def bucket_label(start: int, bucket_size: int) -> str:
    """Button label for a bucket ("1-999", "1000-1999")."""
    if start == 1:
        return f"1-{bucket_size - 1}"
    return f"{start}-{start + bucket_size - 1}"


def entry_label(item: EntryListItem) -> str:
    if item.title.strip():
        return f"Ch. {item.key} - {item.title.strip()}"
    return f"Ch. {item.key}"


# =============================================================================
# REQUESTS & VIEWS
# =============================================================================

@dataclass(frozen=True)
class NavRequest:
    """
    One navigation view.

    bucket_size 0 is the root view; 1000/100/10 show the contents of the
    bucket starting at bucket_start.
    """
    mode: str
    work_id: int
    bucket_size: int = 0
    bucket_start: int = 0
    page: int = 0

    def __post_init__(self):
        if self.mode not in MODES:
            raise ValueError(f"Unknown navigation mode: {self.mode!r}")
        if self.bucket_size != 0 and self.bucket_size not in BUCKET_SIZES:
            raise ValueError(f"Unsupported bucket size: {self.bucket_size}")

    @property
    def is_root(self) -> bool:
        return self.bucket_size == 0

    @classmethod
    def root(cls, mode: str, work_id: int) -> "NavRequest":
        return cls(mode=mode, work_id=work_id)

    def with_page(self, page: int) -> "NavRequest":
        return replace(self, page=page)

    def encode(self) -> str:
        """Compact callback string, e.g. "nav:u:12:100:1100:0"."""
        data = ":".join([
            CALLBACK_PREFIX,
            _MODE_CODES[self.mode],
            str(self.work_id),
            str(self.bucket_size),
            str(self.bucket_start),
            str(self.page),
        ])
        if len(data.encode("utf-8")) > MAX_CALLBACK_BYTES:
            raise ValueError(f"Navigation callback too long: {data}")
        return data

    @classmethod
    def decode(cls, data: str) -> "NavRequest":
        """
        Parse a callback string produced by encode().

        Raises:
            ValueError: If the string is not a navigation callback
        """
        parts = (data or "").split(":")
        if len(parts) != 6 or parts[0] != CALLBACK_PREFIX or parts[1] not in _CODE_MODES:
            raise ValueError(f"Not a navigation callback: {data!r}")
        try:
            work_id, size, start, page = (int(part) for part in parts[2:])
        except ValueError:
            raise ValueError(f"Malformed navigation callback: {data!r}")
        return cls(
            mode=_CODE_MODES[parts[1]],
            work_id=work_id,
            bucket_size=size,
            bucket_start=start,
            page=max(0, page),
        )


def encode_action(action: str, work_id: int, key: str) -> str:
    """Callback string for marking a single entry ("mr:12:105.5")."""
    data = f"{action}:{work_id}:{key}"
    if len(data.encode("utf-8")) > MAX_CALLBACK_BYTES:
        raise ValueError(f"Action callback too long: {data}")
    return data


def decode_action(data: str) -> Tuple[str, int, str]:
    """Inverse of encode_action(). Raises ValueError on anything else."""
    parts = (data or "").split(":", 2)
    if len(parts) != 3 or parts[0] not in (ACTION_MARK_READ, ACTION_MARK_UNREAD):
        raise ValueError(f"Not an entry action: {data!r}")
    try:
        work_id = int(parts[1])
    except ValueError:
        raise ValueError(f"Malformed entry action: {data!r}")
    return parts[0], work_id, parts[2]


@dataclass
class MenuChoice:
    """A selectable item: a finer bucket or an entry to mark."""
    label: str
    callback: str
    request: Optional[NavRequest] = None
    key: Optional[str] = None


@dataclass
class MenuView:
    """Everything needed to render one navigation step."""
    mode: str
    work_id: int
    title: str
    kind: str
    total: int
    bucket_size: int = 0
    bucket_start: int = 0
    label: str = ""
    status: Optional[str] = None
    choices: List[MenuChoice] = field(default_factory=list)
    page: int = 0
    page_count: int = 1
    prev_page: Optional[NavRequest] = None
    next_page: Optional[NavRequest] = None
    back: Optional[NavRequest] = None
    last_read: Optional[EntryListItem] = None
    read_position: Optional[float] = None

    @property
    def is_root(self) -> bool:
        return self.bucket_size == 0

    @property
    def identity(self) -> Tuple[int, int]:
        return self.bucket_size, self.bucket_start

    def position_label(self) -> str:
        return format_position(self.read_position)


def _clamp_page(page: int, item_count: int, page_size: int) -> Tuple[int, int]:
    """Returns (page, page_count) with page clamped into range."""
    page_count = max(1, (item_count + page_size - 1) // page_size)
    return min(max(page, 0), page_count - 1), page_count


# =============================================================================
# NAVIGATOR
# =============================================================================

class ProgressNavigator:
    """
    Builds navigation views from the store.

    Args:
        store: Release store
        direct_list_threshold: Up to this many matches are listed directly
        bucket_page_size: Thousand-buckets per page at the root
        entry_page_size: Entries per page at the finest level
    """

    def __init__(
        self,
        store: ReleaseStore,
        direct_list_threshold: int = 10,
        bucket_page_size: int = 24,
        entry_page_size: int = 30,
    ):
        self.store = store
        self.direct_list_threshold = direct_list_threshold
        self.bucket_page_size = bucket_page_size
        self.entry_page_size = entry_page_size

    def browse(self, request: NavRequest) -> MenuView:
        """
        Compute the view for a request.

        Raises:
            WorkNotFoundError: If the work does not exist
        """
        work = self.store.require_work(request.work_id)
        read = request.mode == MODE_READ
        total = self.store.count_in_range(work.id, read)

        view = self._resolve(work, request, total)
        if not view.is_root:
            view.back = self._back_target(work, request.mode, total, view)

        view.read_position = work.last_read_number
        view.last_read = self.store.last_read_entry(work.id)
        log_debug(
            f"Navigation {request.encode()} -> {view.kind} "
            f"{view.bucket_size}/{view.bucket_start} ({len(view.choices)} choices)"
        )
        return view

    # -------------------------------------------------------------------------

    def _resolve(self, work: TrackedWork, request: NavRequest, total: int) -> MenuView:
        if request.is_root:
            return self._root_view(work, request, total)
        return self._bucket_view(work, request.mode, request.bucket_size, request.bucket_start,
                                 request.page, total)

    def _root_view(self, work: TrackedWork, request: NavRequest, total: int) -> MenuView:
        mode = request.mode
        read = mode == MODE_READ

        if total == 0:
            return MenuView(
                mode=mode, work_id=work.id, title=work.title, kind=VIEW_EMPTY, total=0,
                status=STATUS_NOTHING_READ if read else STATUS_UP_TO_DATE,
            )

        thousands: List[int] = []
        if total > self.direct_list_threshold:
            thousands = self.store.list_bucket_starts(
                work.id, read, ROOT_BUCKET_SIZE, ROOT_RANGE[0], ROOT_RANGE[1]
            )

        if not thousands:
            # Few enough matches, or all of them below the first bucket
            items = self.store.list_in_range(work.id, read, limit=max(total, 1))
            return MenuView(
                mode=mode, work_id=work.id, title=work.title, kind=VIEW_ENTRIES, total=total,
                choices=[self._entry_choice(work.id, mode, item) for item in items],
            )

        if len(thousands) == 1:
            return self._bucket_view(work, mode, ROOT_BUCKET_SIZE, thousands[0], request.page, total)

        page, page_count = _clamp_page(request.page, len(thousands), self.bucket_page_size)
        first = page * self.bucket_page_size
        choices = []
        for start in thousands[first:first + self.bucket_page_size]:
            target = NavRequest(mode, work.id, ROOT_BUCKET_SIZE, start)
            choices.append(MenuChoice(bucket_label(start, ROOT_BUCKET_SIZE), target.encode(), request=target))

        root = NavRequest.root(mode, work.id)
        return MenuView(
            mode=mode, work_id=work.id, title=work.title, kind=VIEW_BUCKETS, total=total,
            choices=choices, page=page, page_count=page_count,
            prev_page=root.with_page(page - 1) if page > 0 else None,
            next_page=root.with_page(page + 1) if page < page_count - 1 else None,
        )

    def _bucket_view(
        self,
        work: TrackedWork,
        mode: str,
        size: int,
        start: int,
        page: int,
        total: int,
    ) -> MenuView:
        read = mode == MODE_READ
        lo, hi = bucket_range(start, size)

        if size == BUCKET_SIZES[-1]:
            return self._entries_view(work, mode, start, page, total)

        child_size = size // 10
        children = self.store.list_bucket_starts(work.id, read, child_size, lo, hi)

        if not children:
            # Bucket emptied since the request was issued
            return self._root_view(work, NavRequest.root(mode, work.id), total)

        if len(children) == 1:
            return self._bucket_view(work, mode, child_size, children[0], page, total)

        choices = []
        for child in children:
            target = NavRequest(mode, work.id, child_size, child)
            choices.append(MenuChoice(bucket_label(child, child_size), target.encode(), request=target))

        return MenuView(
            mode=mode, work_id=work.id, title=work.title, kind=VIEW_BUCKETS, total=total,
            bucket_size=size, bucket_start=start, label=bucket_label(start, size),
            choices=choices,
        )

    def _entries_view(self, work: TrackedWork, mode: str, start: int, page: int, total: int) -> MenuView:
        read = mode == MODE_READ
        size = BUCKET_SIZES[-1]
        lo, hi = bucket_range(start, size)

        in_range = self.store.count_in_range(work.id, read, lo, hi)
        if in_range == 0:
            return self._root_view(work, NavRequest.root(mode, work.id), total)

        page, page_count = _clamp_page(page, in_range, self.entry_page_size)
        items = self.store.list_in_range(
            work.id, read, lo, hi, limit=self.entry_page_size, offset=page * self.entry_page_size
        )
        here = NavRequest(mode, work.id, size, start)
        return MenuView(
            mode=mode, work_id=work.id, title=work.title, kind=VIEW_ENTRIES, total=total,
            bucket_size=size, bucket_start=start, label=bucket_label(start, size),
            choices=[self._entry_choice(work.id, mode, item) for item in items],
            page=page, page_count=page_count,
            prev_page=here.with_page(page - 1) if page > 0 else None,
            next_page=here.with_page(page + 1) if page < page_count - 1 else None,
        )

    def _back_target(self, work: TrackedWork, mode: str, total: int, view: MenuView) -> Optional[NavRequest]:
        """Nearest ancestor whose own view is not just this view again."""
        candidates = [
            NavRequest(mode, work.id, size, parent_bucket_start(view.bucket_start, size))
            for size in reversed(BUCKET_SIZES)
            if size > view.bucket_size
        ]
        candidates.append(NavRequest.root(mode, work.id))

        for candidate in candidates:
            landing = self._resolve(work, candidate, total)
            if landing.identity != view.identity:
                return candidate
        return None

    @staticmethod
    def _entry_choice(work_id: int, mode: str, item: EntryListItem) -> MenuChoice:
        action = ACTION_MARK_UNREAD if mode == MODE_READ else ACTION_MARK_READ
        return MenuChoice(entry_label(item), encode_action(action, work_id, item.key), key=item.key)
