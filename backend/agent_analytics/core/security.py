import hmac
import secrets
import uuid
from collections.abc import Iterable

PROJECT_TOKEN_PREFIX = "aat"
API_KEY_PREFIX = "aak"
PROJECT_ID_PREFIX = "proj"


def generate_token(prefix: str) -> str:
    """Generate a prefixed credential, e.g. ``aat_...`` or ``aak_...``."""
    return f"{prefix}_{secrets.token_urlsafe(24)}"


def generate_project_id() -> str:
    return f"{PROJECT_ID_PREFIX}_{secrets.token_hex(8)}"


def new_event_id(timestamp_ms: int) -> str:
    """Build a time-sortable event id using the UUIDv7 bit layout.

    The top 48 bits hold the millisecond timestamp, so lexical order of the
    hex form follows event time. The remaining bits are random.
    """
    ts = max(0, timestamp_ms) & 0xFFFF_FFFF_FFFF
    rand_a = secrets.randbits(12)
    rand_b = secrets.randbits(62)
    value = (ts << 80) | (0x7 << 76) | (rand_a << 64) | (0b10 << 62) | rand_b
    return uuid.UUID(int=value).hex


def split_csv(value: str | None) -> list[str]:
    """Split a comma-separated allowlist, dropping blanks."""
    if not value:
        return []
    return [item.strip() for item in value.split(",") if item.strip()]


def secret_equals(expected: str, candidate: str) -> bool:
    return hmac.compare_digest(expected.encode(), candidate.encode())


def secret_in(candidate: str, allowed: Iterable[str]) -> bool:
    """Constant-time membership test.

    Every entry is compared, so the running time does not reveal which
    entry matched or how long a matching prefix was.
    """
    found = False
    for item in allowed:
        if secret_equals(item, candidate):
            found = True
    return found
