"""Content-hash keyed tag cache with a freshness window.

Keys are a 32-bit rolling hash (h = h*31 + c over UTF-16 code units, wrapped to
a signed 32-bit int, absolute value, base-36). The hash is not cryptographic:
two different inputs can collide and the second caller then receives the
first caller's tags. That is an accepted limitation for tag suggestions.

Keys are salted with the user id, so users never share entries.

Entries are never expired in place; age >= TTL is simply a miss and the next
store overwrites the row.
"""

from datetime import timedelta
from uuid import UUID

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from linkranger.db.models import TagCacheEntry, as_utc, utcnow
from linkranger.db.session import transaction
from linkranger.logging import get_logger

logger = get_logger(__name__)

DEFAULT_TTL = timedelta(days=7)
CLEAR_BATCH_SIZE = 500

_BASE36_DIGITS = "0123456789abcdefghijklmnopqrstuvwxyz"


def _to_base36(value: int) -> str:
    if value == 0:
        return "0"
    digits = []
    while value:
        value, rem = divmod(value, 36)
        digits.append(_BASE36_DIGITS[rem])
    return "".join(reversed(digits))


def content_hash(text: str) -> str:
    """32-bit rolling hash of text, base-36 encoded."""
    encoded = text.encode("utf-16-le", errors="surrogatepass")
    h = 0
    for i in range(0, len(encoded), 2):
        code_unit = encoded[i] | (encoded[i + 1] << 8)
        h = ((h << 5) - h + code_unit) & 0xFFFFFFFF
    if h >= 0x80000000:
        h -= 0x100000000
    return _to_base36(abs(h))


def build_cache_key(user_id: UUID | str, text: str) -> str:
    return content_hash(f"{user_id}::{text}")


def get_cached_tags(
    db: Session, cache_key: str, ttl: timedelta = DEFAULT_TTL
) -> list[str] | None:
    """Return cached tags if the entry is younger than ttl, else None.

    A hit increments usage_count and stamps last_used_at.
    """
    entry = db.get(TagCacheEntry, cache_key)
    if entry is None:
        logger.info("tag_cache.miss", cache_key=cache_key, reason="not_found")
        return None

    now = utcnow()
    age = now - as_utc(entry.created_at)
    if age >= ttl:
        logger.info(
            "tag_cache.miss",
            cache_key=cache_key,
            reason="expired",
            age_hours=int(age.total_seconds() // 3600),
        )
        return None

    with transaction(db):
        entry.usage_count = (entry.usage_count or 0) + 1
        entry.last_used_at = now

    logger.info("tag_cache.hit", cache_key=cache_key, tag_count=len(entry.tags))
    return list(entry.tags)


def _overwrite(entry: TagCacheEntry, tags: list[str]) -> None:
    entry.tags = list(tags)
    entry.created_at = utcnow()
    entry.usage_count = 0
    entry.last_used_at = None


def store_cached_tags(db: Session, cache_key: str, tags: list[str]) -> None:
    """Upsert tags under cache_key with a fresh created_at."""
    try:
        with transaction(db):
            entry = db.get(TagCacheEntry, cache_key)
            if entry is None:
                entry = TagCacheEntry(content_hash=cache_key)
                db.add(entry)
            _overwrite(entry, tags)
    except IntegrityError:
        # Lost an insert race; the row exists now
        with transaction(db):
            entry = db.get(TagCacheEntry, cache_key, populate_existing=True)
            _overwrite(entry, tags)

    logger.info("tag_cache.stored", cache_key=cache_key, tag_count=len(tags))


def clear_tag_cache(db: Session, batch_size: int = CLEAR_BATCH_SIZE) -> int:
    """Delete every cache entry in batches. Returns the number deleted."""
    deleted = 0
    while True:
        keys = db.scalars(select(TagCacheEntry.content_hash).limit(batch_size)).all()
        if not keys:
            break
        with transaction(db):
            db.execute(delete(TagCacheEntry).where(TagCacheEntry.content_hash.in_(keys)))
        deleted += len(keys)
        logger.info("tag_cache.clear.batch", batch_count=len(keys), deleted_total=deleted)

    return deleted
