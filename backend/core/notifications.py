"""
Notification dispatch.

Ledgers never talk to a delivery channel directly; they call
``send_notification`` which defers delivery until the surrounding
transaction commits and hands the message to the configured sink.
A failing sink is logged and otherwise ignored.
"""

from __future__ import annotations

import logging
from functools import lru_cache
from typing import Optional

from django.conf import settings
from django.db import transaction
from django.utils.module_loading import import_string

from .models import Notification

logger = logging.getLogger(__name__)

DEFAULT_SINK = "core.notifications.DatabaseNotificationSink"


class NotificationSink:
    """Interface for notification channels (in-app, e-mail, SMS...)."""

    def notify(self, user_id: int, title: str, message: str, category: str, link: Optional[str] = None) -> None:
        raise NotImplementedError


class DatabaseNotificationSink(NotificationSink):
    """Stores notifications as rows the customer dashboard can list."""

    def notify(self, user_id, title, message, category, link=None):
        Notification.objects.create(
            user_id=user_id,
            title=title,
            message=message,
            category=category,
            link=link or "",
        )


@lru_cache(maxsize=None)
def load_sink(path: Optional[str] = None) -> NotificationSink:
    if path is None:
        path = settings.FREIGHT_ENGINE.get("NOTIFICATION_SINK") or DEFAULT_SINK
    return import_string(path)()


def _deliver(sink: NotificationSink, user_id, title, message, category, link):
    try:
        sink.notify(user_id, title, message, category, link)
    except Exception:
        logger.exception(f"Notification '{title}' for user {user_id} could not be delivered")


def send_notification(user_id: int, title: str, message: str, category: str = Notification.SYSTEM,
                      link: Optional[str] = None, sink: Optional[NotificationSink] = None) -> None:
    """Queue a notification for delivery once the current transaction commits."""
    if sink is None:
        try:
            sink = load_sink()
        except ImportError:
            logger.exception("Configured notification sink cannot be imported")
            return
    transaction.on_commit(lambda: _deliver(sink, user_id, title, message, category, link))
