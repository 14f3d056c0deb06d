from datetime import datetime
from pytz import timezone

from gradebook.config import settings


def now() -> datetime:
    """Current time in the school's configured timezone."""
    return datetime.now(timezone(settings.TIMEZONE))
