from __future__ import annotations

import logging
import time
from datetime import datetime

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from app.config import settings, setup_logging
from app.db import SessionLocal
from app.models import Mapping
from app.service import to_utc_naive, utcnow

logger = logging.getLogger(__name__)


def cleanup_expired_once(
    db: Session,
    batch_size: int = settings.cleanup_batch_size,
    now: datetime | None = None,
) -> int:
    """
    Delete mappings whose expiry has passed, in bounded batches:
      1) select up to batch_size expired paths
      2) delete exactly those paths
      3) stop on an empty or short batch
    Each batch commits on its own, so an interrupted run keeps its progress.
    """
    if batch_size < 1:
        raise ValueError("batch_size must be positive")

    current = to_utc_naive(now or utcnow())
    deleted = 0

    while True:
        paths = db.scalars(
            select(Mapping.path)
            .where(Mapping.expiry.is_not(None), Mapping.expiry < current)
            .limit(batch_size)
        ).all()
        if not paths:
            break

        db.execute(delete(Mapping).where(Mapping.path.in_(paths)))
        db.commit()
        deleted += len(paths)

        if len(paths) < batch_size:
            break

    return deleted


def run_cleanup() -> int:
    with SessionLocal() as db:
        return cleanup_expired_once(db)


def main() -> None:
    setup_logging()
    logger.info("starting cleanup loop every %ss", settings.cleanup_interval_seconds)
    while True:
        try:
            n = run_cleanup()
            if n:
                logger.info("deleted %d expired mappings", n)
        except Exception:
            logger.exception("error during cleanup")
        time.sleep(settings.cleanup_interval_seconds)


if __name__ == "__main__":
    main()
