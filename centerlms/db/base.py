# import all models here so Base.metadata sees every table (used by tests and alembic)
from centerlms.db.base_class import Base  # noqa: F401
from centerlms.models.center import Center  # noqa: F401
from centerlms.models.course import Course  # noqa: F401
from centerlms.models.enrollment import Enrollment  # noqa: F401
from centerlms.models.notification import Notification  # noqa: F401
from centerlms.models.subscription_payment import SubscriptionPayment  # noqa: F401
from centerlms.models.user import User  # noqa: F401
