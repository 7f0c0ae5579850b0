"""
Versioned rate table snapshots.

The active rates live in the ``rates_config`` system setting. Readers call
``current_rate_table()`` and keep the returned object for the whole
calculation; ``publish_rates`` writes a new version and swaps the
process-wide reference once the write commits. Snapshots are never mutated.
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Callable, Optional

from django.conf import settings
from django.db import transaction

from core.activity import record_activity
from core.models import SystemSetting

from ..dataclasses import Constants, RateCategory, RateTable
from ..serializers import validate_rate_config

logger = logging.getLogger(__name__)

RATES_SETTING_KEY = "rates_config"

# Empty structure used when nothing has been published yet. Rates are zero
# so an unconfigured install never quotes a made-up price.
DEFAULT_RATES = {
    "categories": {
        "general": {
            "name": "General",
            "description": "Default rate",
            "weightRate": 0,
            "volumeRate": 0,
        },
    },
    "constants": {
        "VOLUME_DIVISOR": 28317,
        "CBM_TO_CAI_FACTOR": "35.3",
        "MINIMUM_CHARGE": 0,
        "OVERSIZED_LIMIT": 300,
        "OVERSIZED_FEE": 0,
        "OVERWEIGHT_LIMIT": 100,
        "OVERWEIGHT_FEE": 0,
    },
}


def _engine_option(name: str, default):
    return getattr(settings, "FREIGHT_ENGINE", {}).get(name, default)


def build_rate_table(config: dict, version: int = 0) -> RateTable:
    """Validate a ``rates_config`` payload and turn it into an immutable snapshot."""
    data = validate_rate_config(config)
    categories = {
        key: RateCategory(
            key=key,
            display_name=row["name"],
            description=row.get("description", ""),
            weight_rate=row["weightRate"],
            volume_rate=row["volumeRate"],
        )
        for key, row in data["categories"].items()
    }
    c = data["constants"]
    constants = Constants(
        volume_divisor=c["VOLUME_DIVISOR"],
        cbm_to_volumetric_factor=c["CBM_TO_CAI_FACTOR"],
        minimum_charge=c["MINIMUM_CHARGE"],
        oversized_limit_cm=c["OVERSIZED_LIMIT"],
        oversized_fee=c["OVERSIZED_FEE"],
        overweight_limit_kg=c["OVERWEIGHT_LIMIT"],
        overweight_fee=c["OVERWEIGHT_FEE"],
    )
    return RateTable(
        version=version,
        categories=categories,
        constants=constants,
        default_category_key=_engine_option("DEFAULT_CATEGORY", "general"),
        strict_categories=bool(_engine_option("STRICT_CATEGORIES", False)),
    )


def load_rate_table() -> RateTable:
    setting = SystemSetting.objects.filter(key=RATES_SETTING_KEY).first()
    if setting is None or not setting.value:
        logger.warning(f"No '{RATES_SETTING_KEY}' setting found; using the empty default rate table")
        return build_rate_table(DEFAULT_RATES, version=0)
    value = setting.value
    return build_rate_table(value, version=int(value.get("version", 1)))


def stored_rate_version() -> Optional[int]:
    """Version of the persisted configuration, read without loading the whole payload."""
    version = (
        SystemSetting.objects.filter(key=RATES_SETTING_KEY)
        .values_list("value__version", flat=True)
        .first()
    )
    return int(version) if version is not None else None


class RateTableStore:
    """
    Holds the process-wide snapshot; swaps it under a lock, readers never block.

    With a ``stored_version`` the store compares its snapshot against the
    stored version (at most once per ``check_interval`` seconds) and reloads
    when another process has published a newer one.
    """

    def __init__(self, loader: Callable[[], RateTable] = load_rate_table,
                 stored_version: Optional[Callable[[], Optional[int]]] = None,
                 check_interval: Optional[float] = None):
        self._loader = loader
        self._stored_version = stored_version
        self._check_interval = check_interval
        self._lock = threading.Lock()
        self._table: Optional[RateTable] = None
        self._checked_at = 0.0

    def _interval(self) -> float:
        if self._check_interval is not None:
            return self._check_interval
        return float(_engine_option("RATE_TABLE_CHECK_SECONDS", 0))

    def _outdated(self, table: RateTable) -> bool:
        if self._stored_version is None:
            return False
        now = time.monotonic()
        interval = self._interval()
        if interval and now - self._checked_at < interval:
            return False
        self._checked_at = now
        stored = self._stored_version()
        return stored is not None and stored > table.version

    def current(self) -> RateTable:
        table = self._table
        if table is None or self._outdated(table):
            with self._lock:
                if self._table is table:
                    self._table = self._loader()
                    self._checked_at = time.monotonic()
                    if table is not None:
                        logger.info(f"Rate table v{self._table.version} picked up from storage (was v{table.version})")
                table = self._table
        return table

    def publish(self, table: RateTable, force: bool = False) -> None:
        with self._lock:
            previous = self._table
            if not force and previous is not None and table.version < previous.version:
                logger.warning(
                    f"Ignoring stale rate table v{table.version}; v{previous.version} is already active"
                )
                return
            self._table = table
        logger.info(f"Rate table v{table.version} is now active ({len(table.categories)} categories)")

    def clear(self) -> None:
        with self._lock:
            self._table = None


rate_table_store = RateTableStore(stored_version=stored_rate_version)


def current_rate_table() -> RateTable:
    return rate_table_store.current()


def publish_rates(config: dict, actor=None, description: str = "") -> RateTable:
    """Persist a new rates configuration as the next version and activate it after commit."""
    validate_rate_config(config)
    with transaction.atomic():
        setting = SystemSetting.objects.select_for_update().filter(key=RATES_SETTING_KEY).first()
        previous = int(setting.value.get("version", 0)) if setting and setting.value else 0
        version = previous + 1
        value = {
            "categories": config["categories"],
            "constants": config["constants"],
            "version": version,
        }
        SystemSetting.objects.update_or_create(
            key=RATES_SETTING_KEY,
            defaults={"value": value, "description": description or f"Rates v{version}"},
        )
        table = build_rate_table(value, version=version)
        record_activity(actor, "RATES_PUBLISHED", RATES_SETTING_KEY, f"version {version}")
        transaction.on_commit(lambda: rate_table_store.publish(table))
    return table


def reload_rate_table() -> RateTable:
    """Re-read the stored configuration, e.g. after it was edited through the admin."""
    table = load_rate_table()
    rate_table_store.publish(table, force=True)
    return table
