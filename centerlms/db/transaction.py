import logging
from contextlib import contextmanager

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from centerlms.core.errors import DatabaseError, DomainError

logger = logging.getLogger(__name__)


@contextmanager
def atomic(db: Session, conflict: type[DomainError] | None = None):
    """Commit everything done in the block, or roll all of it back.

    Domain errors pass through unchanged after the rollback. Storage errors
    become ``DatabaseError`` (or ``conflict`` for unique-constraint hits) so
    callers never see a half-applied transition.
    """
    try:
        yield
        db.commit()
    except DomainError:
        db.rollback()
        raise
    except IntegrityError as e:
        db.rollback()
        if conflict is not None:
            logger.info("integrity conflict: %s", e.orig)
            raise conflict() from e
        logger.exception("integrity error")
        raise DatabaseError() from e
    except SQLAlchemyError as e:
        db.rollback()
        logger.exception("transaction failed")
        raise DatabaseError() from e
    except Exception:
        db.rollback()
        raise
