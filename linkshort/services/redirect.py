import logging
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from .. import crud
from ..cache import LinkCache, link_cache
from ..config import settings
from ..exceptions import LinkNotFoundError
from ..observability import CACHE_HITS, CACHE_MISSES, REDIRECT_TOTAL, REDIRECT_404_TOTAL
from .background import spawn_detached
from .click_log import ClickLogRecorder
from .enrichment import ClickEvent

logger = logging.getLogger(__name__)


def cache_ttl(expires_at: Optional[datetime], now: Optional[datetime] = None) -> int:
    """Seconds a resolved link may stay cached: the default TTL, cut short by link expiry.

    Returns 0 when the link must not be cached at all.
    """
    ttl = settings.CACHE_TTL_SECONDS
    if expires_at is None:
        return ttl
    if expires_at.tzinfo is None:
        expires_at = expires_at.replace(tzinfo=timezone.utc)
    now = now or datetime.now(timezone.utc)
    remaining = int((expires_at - now).total_seconds())
    return max(0, min(ttl, remaining))


class RedirectService:
    def __init__(self, db: AsyncSession, cache: LinkCache = link_cache, recorder: ClickLogRecorder = None):
        self.db = db
        self.cache = cache
        self.recorder = recorder or ClickLogRecorder(db)

    async def resolve(self, event: ClickEvent) -> str:
        """Destination URL for ``event.code``; records the click on success.

        Raises LinkNotFoundError for unknown and expired codes alike.
        """
        code = event.code

        url = await self.cache.get(code)
        if url:
            CACHE_HITS.inc()
            await self._record(event, source="cache")
            REDIRECT_TOTAL.labels(source="cache").inc()
            return url

        CACHE_MISSES.inc()
        link = await crud.resolve_short_code(self.db, code)
        if link is None:
            REDIRECT_404_TOTAL.inc()
            raise LinkNotFoundError(code)

        ttl = cache_ttl(link.expires_at)
        if ttl > 0:
            spawn_detached(self.cache.set(code, link.original_url, ttl), name=f"cache-fill:{code}")

        await self._record(event, source="store")
        REDIRECT_TOTAL.labels(source="store").inc()
        return link.original_url

    async def _record(self, event: ClickEvent, source: str):
        error = await self.recorder.record(event)
        if error is not None:
            logger.warning(
                f"Failed to insert click log ({source} hit): {error}",
                extra={"short_code": event.code},
            )
