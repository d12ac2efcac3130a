import time
import re
import uuid
from datetime import datetime, timezone
import hmac
from typing import Optional, Union


# ----------------------------
# Helpers
# ----------------------------
def now_ts() -> float:
    return time.time()


def now_ms() -> int:
    return int(time.time() * 1000)


def to_iso(ts: float | None) -> Optional[str]:
    if ts is None:
        return None
    return datetime.fromtimestamp(ts, tz=timezone.utc).isoformat()


def is_valid_email(email: Optional[str]) -> bool:
    if not email:
        return False
    email = email.strip()
    # simple but effective email check
    return re.match(r"^[^@\s]+@[^@\s]+\.[^@\s]+$", email) is not None


def ct_equal(a: str, b: str) -> bool:
    return hmac.compare_digest(a.encode(), b.encode())


def new_id(prefix: str = "") -> str:
    # 20 chars, like the document ids the frontend already knows
    return prefix + uuid.uuid4().hex[:20]


def normalize_phone(raw: Union[str, int, None]) -> Optional[str]:
    """Digits only; bare 10-digit numbers get the +91 country code.

    Integers are read as their digits. Returns None for any other type or
    when fewer than 10 digits remain.
    """
    if isinstance(raw, int) and not isinstance(raw, bool):
        raw = str(raw)
    if not isinstance(raw, str):
        return None
    digits = re.sub(r"\D", "", raw)
    if len(digits) < 10:
        return None
    if len(digits) == 10:
        return "+91" + digits
    return digits
