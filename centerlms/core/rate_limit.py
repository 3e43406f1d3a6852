from slowapi import Limiter
from slowapi.util import get_remote_address

from centerlms.core.config import RATE_LIMIT_ENABLED

# keyed by client address; applied to mutating student and admin actions
limiter = Limiter(key_func=get_remote_address, enabled=RATE_LIMIT_ENABLED)

CLAIM_LIMIT = "10/minute"
PAYMENT_LIMIT = "5/minute"
ADMIN_LIMIT = "30/minute"
