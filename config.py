"""
Chapterwatch - Configuration
Constants, intervals and environment-driven settings
"""

import os
from pathlib import Path
from typing import List
from dotenv import load_dotenv

# Load environment variables
load_dotenv()


def _env_list(name: str, default: str = "") -> List[str]:
    """Read a comma separated environment variable into a list of stripped items."""
    raw = os.getenv(name, default)
    return [item.strip() for item in raw.split(",") if item.strip()]


def _parse_user_ids(values: List[str]) -> List[int]:
    ids = []
    for value in values:
        try:
            user_id = int(value)
        except ValueError:
            raise ValueError(f"Invalid TELEGRAM_ALLOWED_USERS entry: {value!r}")
        if user_id <= 0:
            raise ValueError(f"Invalid TELEGRAM_ALLOWED_USERS entry: {value!r}")
        ids.append(user_id)
    return ids


# =============================================================================
# PATHS
# =============================================================================
PROJECT_ROOT = Path(__file__).parent
DATA_DIR = Path(os.getenv("CHAPTERWATCH_DATA_DIR", str(PROJECT_ROOT / "data")))
LOGS_DIR = Path(os.getenv("CHAPTERWATCH_LOGS_DIR", str(PROJECT_ROOT / "logs")))
DATABASE_PATH = Path(os.getenv("CHAPTERWATCH_DATABASE", str(DATA_DIR / "chapterwatch.db")))
DIAGNOSTIC_LOG_PATH = LOGS_DIR / "diagnostic.log"

# =============================================================================
# VERSION
# =============================================================================
VERSION = "0.1.0"
PROJECT_NAME = "Chapterwatch"

# =============================================================================
# LOGGING
# =============================================================================
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOG_TO_FILE = os.getenv("LOG_TO_FILE", "true").lower() == "true"

# =============================================================================
# TELEGRAM BOT CONFIGURATION
# =============================================================================
# The bot token comes from @BotFather. Allowed users are Telegram user ids;
# in private chats the chat id equals the user id, so notifications are only
# ever delivered to these ids. The first id is treated as the admin.
TELEGRAM_BOT_TOKEN = os.getenv("TELEGRAM_BOT_TOKEN", "")
TELEGRAM_ALLOWED_USERS = _parse_user_ids(_env_list("TELEGRAM_ALLOWED_USERS"))
TELEGRAM_ADMIN_USER = TELEGRAM_ALLOWED_USERS[0] if TELEGRAM_ALLOWED_USERS else 0
TELEGRAM_SEND_TIMEOUT = 30.0  # Seconds to wait for a send to complete

# Pairing codes let the admin admit users that are not in TELEGRAM_ALLOWED_USERS
PAIRING_CODE_TTL_HOURS = float(os.getenv("PAIRING_CODE_TTL_HOURS", "48"))

# =============================================================================
# CATALOG (MANGADEX) CONFIGURATION
# =============================================================================
CATALOG_BASE_URL = os.getenv("CATALOG_BASE_URL", "https://api.mangadex.org")
CATALOG_USER_AGENT = f"{PROJECT_NAME}/1.0"

# Languages requested from the feed (translatedLanguage[] filter)
CATALOG_LANGUAGES = _env_list("CATALOG_LANGUAGES", "en")
# Languages requested during a full backfill (wider, deduplicated locally)
CATALOG_SYNC_LANGUAGES = _env_list("CATALOG_SYNC_LANGUAGES", "fr,en")
# Title language preference, best first. Entries in other languages keep no title.
PREFERRED_TITLE_LANGUAGES = _env_list("PREFERRED_TITLE_LANGUAGES", "fr,en")

# Retry & timeouts for catalog requests
CATALOG_REQUEST_TIMEOUT = float(os.getenv("CATALOG_REQUEST_TIMEOUT", "10"))  # Per attempt
CATALOG_MAX_ATTEMPTS = 3                      # Total attempts per request
CATALOG_RETRY_INITIAL_DELAY = 1.0             # Backoff before the second attempt
CATALOG_RETRY_BACKOFF_MULTIPLIER = 2.0        # Exponential backoff multiplier
CATALOG_RATE_LIMIT_LOW_WATER = 5              # Warn when X-RateLimit-Remaining drops below

# =============================================================================
# SYNC CONFIGURATION
# =============================================================================
INCREMENTAL_PAGE_SIZE = 100     # Feed page size for "check new" updates
FULL_SYNC_PAGE_SIZE = 500       # Feed page size for full backfills

FULL_SYNC_TIMEOUT = 5 * 60      # Seconds allowed for a full backfill
CHECK_NEW_TIMEOUT = 20          # Seconds allowed for an on-demand check
SCHEDULED_RUN_TIMEOUT = 10 * 60  # Seconds allowed for one scheduled batch

# =============================================================================
# SCHEDULER CONFIGURATION
# =============================================================================
UPDATE_INTERVAL_HOURS = float(os.getenv("UPDATE_INTERVAL_HOURS", "6"))
SCHEDULER_RUN_ON_START = os.getenv("SCHEDULER_RUN_ON_START", "true").lower() == "true"

# =============================================================================
# NAVIGATION CONFIGURATION
# =============================================================================
DIRECT_LIST_THRESHOLD = 10      # Up to this many matches are listed without buckets
BUCKET_PAGE_SIZE = 24           # Bucket buttons per page (root level)
ENTRY_PAGE_SIZE = 30            # Entries per page at the finest level

# =============================================================================
# DATABASE CONFIGURATION
# =============================================================================
DB_BUSY_TIMEOUT_MS = 5000


def validate_config() -> List[str]:
    """
    Check the settings needed to run the bot.

    Returns:
        A list of human readable problems (empty when the config is usable)
    """
    problems = []
    if not TELEGRAM_BOT_TOKEN.strip():
        problems.append("TELEGRAM_BOT_TOKEN is required")
    if not TELEGRAM_ALLOWED_USERS:
        problems.append("TELEGRAM_ALLOWED_USERS is required (at least 1 user id)")
    if not str(DATABASE_PATH).strip():
        problems.append("Database path is required")
    if UPDATE_INTERVAL_HOURS <= 0:
        problems.append("UPDATE_INTERVAL_HOURS must be positive")
    return problems
