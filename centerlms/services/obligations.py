"""Generic runner for periodic dues (center fees, platform subscription).

An obligation names the rows that are candidates at ``now`` and what to do
with one of them. ``run_sweep`` handles each candidate in its own
transaction: one failing row is logged and counted, and the batch goes on.
Running the same sweep twice does nothing the second time, because ``apply``
re-checks the row and returns False once it has been handled.
"""

import logging
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import Select
from sqlalchemy.orm import Session

from centerlms.core.errors import AlreadyProcessed
from centerlms.core.timeutils import utcnow
from centerlms.db.transaction import atomic

logger = logging.getLogger(__name__)


@dataclass
class SweepResult:
    processed: int = 0
    skipped: int = 0
    failed: int = 0


class RecurringObligation:
    name = "obligation"
    model: type

    def candidates(self, now: datetime) -> Select:
        """SELECT of primary keys of rows that may need action."""
        raise NotImplementedError

    def apply(self, db: Session, item, now: datetime) -> bool:
        """Act on one row inside its transaction. False means nothing to do."""
        raise NotImplementedError

    def after_commit(self, item, now: datetime) -> None:
        pass


def run_sweep(
    db: Session, obligation: RecurringObligation, now: datetime | None = None
) -> SweepResult:
    now = now or utcnow()
    result = SweepResult()
    ids = list(db.scalars(obligation.candidates(now)))
    logger.info("%s sweep: %d candidate(s)", obligation.name, len(ids))

    for item_id in ids:
        try:
            item = db.get(obligation.model, item_id)
            if item is None:
                result.skipped += 1
                continue
            with atomic(db):
                acted = obligation.apply(db, item, now)
        except AlreadyProcessed:
            result.skipped += 1
            continue
        except Exception:
            logger.exception("%s sweep failed for %s", obligation.name, item_id)
            db.rollback()
            result.failed += 1
            continue

        if not acted:
            result.skipped += 1
            continue
        result.processed += 1
        try:
            obligation.after_commit(item, now)
        except Exception:
            logger.exception("%s follow-up failed for %s", obligation.name, item_id)

    logger.info(
        "%s sweep done: processed=%d skipped=%d failed=%d",
        obligation.name,
        result.processed,
        result.skipped,
        result.failed,
    )
    return result
