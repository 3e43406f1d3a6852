from fastapi import BackgroundTasks, Depends

from centerlms.db.session import SessionLocal
from centerlms.services.notifier import DeferredNotifier, Notifier, get_notifier


# every request that needs DB will get a fresh session, and it will always close.
def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


# emails go out after the response, once the transaction has committed
def get_request_notifier(
    background_tasks: BackgroundTasks,
    notifier: Notifier = Depends(get_notifier),
) -> Notifier:
    return DeferredNotifier(background_tasks, notifier)
