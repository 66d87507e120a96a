"""
Chapterwatch - Notifications
New-entry notices and their HTML rendering.

The scheduler builds a NewEntriesNotice per work with new entries and hands
its rendered text to a Notifier. The Telegram implementation lives in
communication.telegram_notifier; anything with send_html() works.
"""

import html
from dataclasses import dataclass, field
from typing import List, Dict, Protocol

from tracking.sync import SyncResult

BACKLOG_WARNING_THRESHOLD = 3


class Notifier(Protocol):
    """Delivers an HTML message to a chat."""

    def send_html(self, chat_id: int, text: str) -> None:
        ...


@dataclass
class NewEntriesNotice:
    """Payload describing new entries of one work for one user."""
    work_id: int
    user_id: int
    title: str
    entries: List[Dict[str, str]] = field(default_factory=list)
    unread_count: int = 0
    alternate_channel: bool = False

    @property
    def warn_backlog(self) -> bool:
        """Alternate-channel works warn once the unread backlog reaches the threshold."""
        return self.alternate_channel and self.unread_count >= BACKLOG_WARNING_THRESHOLD

    @classmethod
    def from_result(cls, result: SyncResult) -> "NewEntriesNotice":
        return cls(
            work_id=result.work_id,
            user_id=result.user_id,
            title=result.title,
            entries=[{"key": entry.label, "title": entry.title} for entry in result.new_entries],
            unread_count=result.unread_count,
            alternate_channel=result.alternate_channel,
        )


def format_notice_html(notice: NewEntriesNotice) -> str:
    """Render a notice as Telegram HTML. All dynamic text is escaped."""
    lines = [
        "📢 <b>New Chapter Alert!</b>",
        "",
        f"<b>{html.escape(notice.title)}</b> has new chapters:",
    ]
    for entry in notice.entries:
        label = f"Ch. {html.escape(entry.get('key', ''))}"
        title = (entry.get("title") or "").strip()
        if title:
            lines.append(f"• <b>{label}</b>: {html.escape(title)}")
        else:
            lines.append(f"• <b>{label}</b>")
    lines.append("")
    lines.append(f"You now have <b>{notice.unread_count}</b> unread chapter(s) for this series.")
    if notice.warn_backlog:
        lines.append("")
        lines.append("⚠️ <b>Heads up:</b> You have 3+ unread chapters piling up for this series!")
    return "\n".join(lines)


def format_notice_text(notice: NewEntriesNotice) -> str:
    """Plain-text rendering for consoles and logs."""
    lines = [f"{notice.title} has new chapters:"]
    for entry in notice.entries:
        title = (entry.get("title") or "").strip()
        lines.append(f"  • Ch. {entry.get('key', '')}" + (f": {title}" if title else ""))
    lines.append(f"  {notice.unread_count} unread")
    if notice.warn_backlog:
        lines.append("  ⚠️ 3+ unread chapters piling up")
    return "\n".join(lines)
