"""Hooks told about new announcements after a batch."""

from __future__ import annotations

import logging
from typing import Protocol, Sequence

from pagewatch.models import Announcement

__all__ = ["BADGE_TEXT", "BadgeNotifier", "Notifier"]

logger = logging.getLogger(__name__)

BADGE_TEXT = "NEW"


class Notifier(Protocol):
    def notify(self, announcements: Sequence[Announcement]) -> None: ...


class BadgeNotifier:
    """Log new announcements; the badge itself is stored with the batch commit."""

    badge_text = BADGE_TEXT

    def notify(self, announcements: Sequence[Announcement]) -> None:
        for announcement in announcements:
            logger.info(
                "New content on %s: %s", announcement.job_name, announcement.link
            )
