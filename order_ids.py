"""
Human-facing order identifiers.

Format: ``ORD-YYYYMMDD-XXXXXXXXXX`` where the suffix is ten Crockford
base32 characters (50 random bits from ``secrets``). Ids are short enough
to read over the phone and the store's unique index on ``order_id``
rejects the rare collision, after which the caller draws a new one.
"""
import re
import secrets
from datetime import datetime, timezone
from typing import Optional

PREFIX = "ORD"
SUFFIX_LENGTH = 10
ORDER_ID_MAX_ATTEMPTS = 5

# Crockford base32: no I, L, O or U
ALPHABET = "0123456789ABCDEFGHJKMNPQRSTVWXYZ"

ORDER_ID_RE = re.compile(rf"^{PREFIX}-\d{{8}}-[{ALPHABET}]{{{SUFFIX_LENGTH}}}$")


def generate_order_id(now: Optional[datetime] = None) -> str:
    now = now or datetime.now(timezone.utc)
    suffix = "".join(secrets.choice(ALPHABET) for _ in range(SUFFIX_LENGTH))
    return f"{PREFIX}-{now:%Y%m%d}-{suffix}"


def is_order_id(value: object) -> bool:
    return isinstance(value, str) and ORDER_ID_RE.match(value) is not None
