from slowapi import Limiter
from slowapi.util import get_remote_address

from budget_app.config import settings

# Security: one limiter shared by the app and every router.
# Undecorated endpoints fall back to the general API limit.
limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[settings.API_RATE_LIMIT],
    enabled=settings.RATE_LIMIT_ENABLED,
)
