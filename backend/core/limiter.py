from slowapi import Limiter
from slowapi.util import get_remote_address

from config import settings

# Rate limiter (endpoints de scan staff)
limiter = Limiter(key_func=get_remote_address, enabled=settings.RATE_LIMIT_ENABLED)
