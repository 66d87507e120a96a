"""
Chapterwatch - Catalog API Client
Read-only REST client for a MangaDex-compatible catalog.

Endpoints used:
    GET {base}/manga/{id}/feed   chapter feed, newest first, paginated
    GET {base}/manga/{id}        work metadata (titles)

Every request gets up to CATALOG_MAX_ATTEMPTS tries with exponential
backoff. Rate limiting (429) honours Retry-After. A 404 is final.
"""

import uuid
from typing import Any, Callable, Dict, List, Optional

import requests

from catalog.errors import (
    CatalogError,
    CatalogNotFoundError,
    CatalogResponseError,
    CatalogUnavailableError,
    InvalidWorkUrlError,
)
from catalog.models import FeedPage, WorkInfo
from concurrency.deadline import Deadline, DeadlineExceeded, deadline_or_none
from concurrency.locks import LockManager, get_lock_manager, CATALOG_SEMAPHORE
from core.logger import log_info, log_warning, log_error, log_debug
from core.temporal import parse_retry_after

DEFAULT_PAGE_LIMIT = 100
TITLE_PATH_MARKER = "/title/"


class CatalogClient:
    """
    HTTP client for the catalog REST API.

    Methods return parsed models or raise a CatalogError subclass; they
    never touch local storage.
    """

    def __init__(
        self,
        base_url: str = "https://api.mangadex.org",
        languages: Optional[List[str]] = None,
        user_agent: str = "Chapterwatch/1.0",
        request_timeout: float = 10.0,
        max_attempts: int = 3,
        retry_initial_delay: float = 1.0,
        retry_backoff_multiplier: float = 2.0,
        rate_limit_low_water: int = 5,
        session: Optional[requests.Session] = None,
        lock_manager: Optional[LockManager] = None,
    ):
        self._base_url = base_url.rstrip("/")
        self.languages = [lang.strip() for lang in (languages or ["en"]) if lang.strip()]
        self.request_timeout = request_timeout
        self.max_attempts = max(1, max_attempts)
        self.retry_initial_delay = retry_initial_delay
        self.retry_backoff_multiplier = retry_backoff_multiplier
        self.rate_limit_low_water = rate_limit_low_water
        self._locks = lock_manager or get_lock_manager()
        self._session = session or requests.Session()
        self._session.headers.update({
            "User-Agent": user_agent,
            "Accept": "application/json",
        })

    @property
    def base_url(self) -> str:
        return self._base_url

    def _check_rate_limit_headers(self, response: requests.Response) -> None:
        remaining = response.headers.get("X-RateLimit-Remaining")
        if not remaining:
            return
        try:
            value = int(remaining)
        except ValueError:
            return
        if value < self.rate_limit_low_water:
            log_warning(f"Catalog rate limit remaining is low: {value}")

    def _get_json(
        self,
        path: str,
        params: Optional[Any] = None,
        deadline: Optional[Deadline] = None,
        parse: Optional[Callable[[Dict[str, Any]], Any]] = None,
    ) -> Any:
        """
        Core GET with retries, backoff and rate-limit handling.

        Args:
            path: API path (e.g. "/manga/<id>/feed")
            params: Query parameters (dict or list of pairs for repeated keys)
            deadline: Overall time budget; caps each attempt and each sleep
            parse: Turns the decoded object into a model. A CatalogResponseError
                raised here is retried like an invalid JSON body.

        Returns:
            The decoded JSON object, or what parse returned for it

        Raises:
            CatalogNotFoundError: On HTTP 404 (not retried)
            CatalogUnavailableError: When every attempt failed
            DeadlineExceeded: When the deadline ran out between attempts
        """
        deadline = deadline_or_none(deadline)
        url = f"{self._base_url}{path}"
        delay = self.retry_initial_delay
        retry_after = 0.0
        last_error: Optional[CatalogError] = None

        for attempt in range(self.max_attempts):
            if attempt > 0:
                wait = max(delay, retry_after)
                log_info(f"Retry {attempt + 1}/{self.max_attempts} for {path} in {wait:.1f}s", prefix="🔁")
                if not deadline.sleep(wait):
                    raise DeadlineExceeded(deadline.operation, deadline.budget)
                delay *= self.retry_backoff_multiplier
                retry_after = 0.0

            deadline.check()
            timeout = deadline.cap(self.request_timeout)

            try:
                with self._locks.acquire(CATALOG_SEMAPHORE):
                    response = self._session.get(url, params=params, timeout=timeout)
            except requests.exceptions.RequestException as e:
                last_error = CatalogUnavailableError(f"Request to {path} failed: {e}")
                log_warning(f"Catalog request error ({attempt + 1}/{self.max_attempts}): {e}")
                continue

            if response.status_code == 404:
                raise CatalogNotFoundError(f"Not found: {path}", status_code=404)

            if response.status_code == 429:
                retry_after = parse_retry_after(response.headers.get("Retry-After"))
                if retry_after > 0:
                    log_warning(f"Catalog rate limit hit, retrying after {retry_after:.0f}s")
                else:
                    log_warning("Catalog rate limit hit, waiting before retry")
                last_error = CatalogUnavailableError("Rate limited", status_code=429)
                continue

            if response.status_code != 200:
                body = (response.text or "")[:200]
                last_error = CatalogResponseError(
                    f"HTTP {response.status_code}: {body}", status_code=response.status_code
                )
                log_warning(f"Catalog returned {response.status_code} for {path}")
                continue

            self._check_rate_limit_headers(response)

            try:
                payload = response.json()
            except ValueError as e:
                last_error = CatalogResponseError(f"Invalid JSON response: {e}", status_code=200)
                log_warning(f"Catalog returned invalid JSON for {path}")
                continue

            if not isinstance(payload, dict):
                last_error = CatalogResponseError("JSON response is not an object", status_code=200)
                continue

            if parse is None:
                return payload
            try:
                return parse(payload)
            except CatalogResponseError as e:
                last_error = e
                log_warning(f"Catalog returned a malformed payload for {path}: {e}")
                continue

        log_error(f"Catalog request {path} failed after {self.max_attempts} attempts: {last_error}")
        status_code = last_error.status_code if last_error else None
        raise CatalogUnavailableError(
            f"Failed after {self.max_attempts} attempts. Last error: {last_error}",
            status_code=status_code,
        ) from last_error

    # =========================================================================
    # READ OPERATIONS
    # =========================================================================

    def fetch_entries(
        self,
        external_id: str,
        limit: int = DEFAULT_PAGE_LIMIT,
        offset: int = 0,
        languages: Optional[List[str]] = None,
        deadline: Optional[Deadline] = None,
    ) -> FeedPage:
        """
        Fetch one page of a work's chapter feed, newest first.

        Args:
            external_id: Catalog id of the work
            limit: Page size (values <= 0 mean 100)
            offset: Index of the first entry (negative means 0)
            languages: translatedLanguage[] filter (client default if None)
            deadline: Overall time budget for this request

        Returns:
            FeedPage with the entries and the feed's total size
        """
        if limit <= 0:
            limit = DEFAULT_PAGE_LIMIT
        if offset < 0:
            offset = 0

        params = [
            ("order[createdAt]", "desc"),
            ("limit", str(limit)),
            ("offset", str(offset)),
        ]
        for language in languages if languages is not None else self.languages:
            language = language.strip()
            if language:
                params.append(("translatedLanguage[]", language))

        log_debug(f"Catalog feed {external_id} limit={limit} offset={offset}")
        return self._get_json(
            f"/manga/{external_id}/feed",
            params=params,
            deadline=deadline,
            parse=lambda payload: FeedPage.from_api(payload, limit=limit, offset=offset),
        )

    def get_work(self, external_id: str, deadline: Optional[Deadline] = None) -> WorkInfo:
        """Fetch a work's metadata (titles by language)."""
        log_debug(f"Catalog work {external_id}")
        info = self._get_json(f"/manga/{external_id}", deadline=deadline, parse=WorkInfo.from_api)
        if not info.external_id:
            info.external_id = external_id
        return info


def extract_work_id(url: str) -> str:
    """
    Extract the catalog id from a title link.

    Expected format: https://<host>/title/<uuid>[/<slug>][?query]

    Raises:
        InvalidWorkUrlError: If the link has no /title/ segment or the id
                             is not a UUID
    """
    text = (url or "").strip()
    if TITLE_PATH_MARKER not in text:
        raise InvalidWorkUrlError(f"Invalid title URL format: {url}")

    id_part = text.split(TITLE_PATH_MARKER, 1)[1]
    work_id = id_part.split("/")[0].split("?")[0].split("#")[0]

    # 32 hex digits + 4 hyphens
    if len(work_id) != 36:
        raise InvalidWorkUrlError(f"Extracted id does not look like a valid UUID: {work_id}")
    try:
        uuid.UUID(work_id)
    except ValueError:
        raise InvalidWorkUrlError(f"Extracted id does not look like a valid UUID: {work_id}")
    return work_id.lower()


# Global client instance
_client: Optional[CatalogClient] = None


def get_catalog_client() -> CatalogClient:
    """
    Get the global catalog client.

    Lazily initializes the client from config if not already initialized.
    """
    global _client
    if _client is None:
        _client = init_catalog_client()
    return _client


def init_catalog_client(session: Optional[requests.Session] = None) -> CatalogClient:
    """Initialize the global catalog client from config."""
    global _client

    from config import (
        CATALOG_BASE_URL,
        CATALOG_LANGUAGES,
        CATALOG_USER_AGENT,
        CATALOG_REQUEST_TIMEOUT,
        CATALOG_MAX_ATTEMPTS,
        CATALOG_RETRY_INITIAL_DELAY,
        CATALOG_RETRY_BACKOFF_MULTIPLIER,
        CATALOG_RATE_LIMIT_LOW_WATER,
    )

    _client = CatalogClient(
        base_url=CATALOG_BASE_URL,
        languages=CATALOG_LANGUAGES,
        user_agent=CATALOG_USER_AGENT,
        request_timeout=CATALOG_REQUEST_TIMEOUT,
        max_attempts=CATALOG_MAX_ATTEMPTS,
        retry_initial_delay=CATALOG_RETRY_INITIAL_DELAY,
        retry_backoff_multiplier=CATALOG_RETRY_BACKOFF_MULTIPLIER,
        rate_limit_low_water=CATALOG_RATE_LIMIT_LOW_WATER,
        session=session,
    )
    log_info(f"Catalog client ready ({CATALOG_BASE_URL})", prefix="🌐")
    return _client
