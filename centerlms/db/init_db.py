from centerlms.db.base import Base
from centerlms.db.session import engine


def init_db() -> None:
    Base.metadata.create_all(bind=engine)
