import re
import secrets
from datetime import datetime, timezone
from typing import Optional

from billing.constants import SAO_PAULO_TZ, TXID_MAX_LENGTH, TXID_RANDOM_BOUND

_NOT_ALLOWED = re.compile(r"[^A-Z0-9\-]")
_BASE36 = "0123456789ABCDEFGHIJKLMNOPQRSTUVWXYZ"


def to_base36(value: int) -> str:
    if value == 0:
        return "0"
    digits = []
    while value:
        value, rem = divmod(value, 36)
        digits.append(_BASE36[rem])
    return "".join(reversed(digits))


def new_txid(prefix: str, now: Optional[datetime] = None) -> str:
    """Генерирует txid (до 35 символов): PREFIX-yyyymmddHHMM-xxxxx"""
    now = now or datetime.now(timezone.utc)
    when = now.astimezone(SAO_PAULO_TZ).strftime("%Y%m%d%H%M")
    rand = to_base36(secrets.randbelow(TXID_RANDOM_BOUND))
    base = _NOT_ALLOWED.sub("", f"{prefix.upper()}-{when}-{rand}")
    return base[:TXID_MAX_LENGTH]
