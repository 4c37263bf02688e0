from datetime import datetime, timezone
from typing import Optional


def utc_now() -> datetime:
    """Текущее время в UTC с точностью до секунды"""
    return datetime.now(timezone.utc).replace(microsecond=0)


def from_epoch(seconds: Optional[int]) -> Optional[datetime]:
    """Unix timestamp (как у Stripe) в datetime UTC"""
    if seconds is None:
        return None
    return datetime.fromtimestamp(seconds, tz=timezone.utc)
