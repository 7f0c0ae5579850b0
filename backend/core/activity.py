from __future__ import annotations

import logging
from typing import Optional

from django.db import DatabaseError, transaction

from .models import ActivityLog

logger = logging.getLogger(__name__)


def record_activity(actor, action: str, target_id, details: str = "") -> Optional[ActivityLog]:
    """Write an operator audit entry. A failed write never aborts the operation being audited."""
    try:
        # Savepoint so a failed insert does not poison the caller's transaction.
        with transaction.atomic():
            return ActivityLog.objects.create(
                actor=actor if getattr(actor, "pk", None) else None,
                actor_email=getattr(actor, "email", "") or getattr(actor, "username", "") or "",
                action=action,
                target_id=str(target_id) if target_id is not None else "",
                details=details,
            )
    except DatabaseError:
        logger.warning(f"Activity log write failed for {action} on {target_id}", exc_info=True)
        return None
