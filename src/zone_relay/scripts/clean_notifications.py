"""Delete notifications past their retention window.

Read notifications are kept for ``NOTIFICATION_READ_RETENTION_DAYS`` and
unread ones for ``NOTIFICATION_UNREAD_RETENTION_DAYS``. Run from cron:

    python -m zone_relay.scripts.clean_notifications
"""
from __future__ import annotations

import logging

from zone_relay.core.log_config import configure_logging
from zone_relay.db.session import SessionLocal
from zone_relay.services.notifications import NotificationStore

logger = logging.getLogger(__name__)


def run() -> int:
    """Purge expired notifications and return how many were removed."""
    db = SessionLocal()
    try:
        return NotificationStore(db).purge_expired()
    finally:
        db.close()


def main() -> None:
    configure_logging()
    removed = run()
    logger.info("Notification cleanup finished: %s removed", removed)


if __name__ == "__main__":
    main()
