from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field

from redis import Redis
from redis.exceptions import RedisError
from sqlalchemy.orm import Session

from app.cache import LEGACY_SCAN_MATCH
from app.config import settings
from app.errors import MappingError
from app.service import create_mapping, is_protected

logger = logging.getLogger(__name__)


@dataclass
class ImportReport:
    imported: int = 0
    skipped: int = 0
    failed: dict[str, str] = field(default_factory=dict)


def _flag(value: dict, key: str, default: bool) -> object:
    # null and missing both fall back to the default
    flag = value.get(key)
    return default if flag is None else flag


def _read_value(source: Redis, key: str) -> dict | None:
    raw = source.get(key)
    if raw is None:
        return None
    value = json.loads(raw)
    if not isinstance(value, dict):
        raise ValueError("value is not a JSON object")
    return value


def migrate_from_legacy(
    db: Session,
    source: Redis,
    page_size: int = settings.legacy_scan_count,
) -> ImportReport:
    """
    Copy every legacy key-value entry into the mappings table.

    Keys are enumerated with SCAN until the cursor returns to 0. Reserved
    keys and keys without a value are skipped; a record that cannot be read
    or created is logged and counted as failed without stopping the run.
    Re-running is safe: already imported paths come back as conflicts.
    """
    report = ImportReport()
    cursor = 0

    while True:
        cursor, keys = source.scan(cursor=cursor, match=LEGACY_SCAN_MATCH, count=page_size)

        for key in keys:
            if is_protected(key):
                report.skipped += 1
                continue

            try:
                value = _read_value(source, key)
                if value is None:
                    report.skipped += 1
                    continue

                create_mapping(
                    db,
                    key,
                    value.get("target"),
                    name=value.get("name"),
                    expiry=value.get("expiry"),
                    enabled=_flag(value, "enabled", True),
                    is_wechat=_flag(value, "isWechat", False),
                    qr_code_data=value.get("qrCodeData"),
                )
                report.imported += 1
            except (MappingError, RedisError, ValueError) as e:
                logger.warning("failed to migrate %s: %s", key, e)
                report.failed[key] = str(e)

        if cursor == 0:
            break

    logger.info(
        "legacy import finished: %d imported, %d skipped, %d failed",
        report.imported,
        report.skipped,
        len(report.failed),
    )
    return report
