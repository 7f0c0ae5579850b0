"""
Uploaded files (warehouse photos, payment proofs) live in Django's default
storage; models only keep their storage paths. Removal is best effort: a file
that cannot be deleted is logged and left behind.
"""

from __future__ import annotations

import logging
from typing import Iterable, List

from django.core.exceptions import SuspiciousFileOperation
from django.core.files.storage import default_storage
from django.db import transaction

logger = logging.getLogger(__name__)


def delete_files(paths: Iterable[str], storage=None) -> List[str]:
    """Delete each stored file; returns the paths actually removed."""
    if storage is None:
        storage = default_storage
    removed = []
    for path in paths:
        if not path:
            continue
        try:
            if storage.exists(path):
                storage.delete(path)
                removed.append(path)
        except (OSError, SuspiciousFileOperation) as e:
            logger.warning(f"Could not delete stored file {path}: {e}")
    return removed


def discard_after_commit(paths: Iterable[str], storage=None) -> None:
    """Delete files once the surrounding transaction commits, so a rollback keeps them."""
    paths = [p for p in paths if p]
    if paths:
        transaction.on_commit(lambda: delete_files(paths, storage=storage))
