import asyncio
import logging
from datetime import datetime
from typing import List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from .. import crud
from ..cache import LinkCache, link_cache
from ..config import settings
from ..exceptions import ShortCodeConflictError
from ..models import Link
from .background import spawn_detached
from .shortcode import generate_short_code

logger = logging.getLogger(__name__)


async def create_short_link(
    db: AsyncSession,
    owner_id: str,
    original_url: str,
    custom_short_code: Optional[str] = None,
    expires_at: Optional[datetime] = None,
    max_attempts: int = settings.SHORT_CODE_MAX_ATTEMPTS,
) -> Link:
    """Insert a link under a freshly generated code.

    A collision on the generated code is retried with a new code, up to
    ``max_attempts`` attempts. A taken custom code is never retried.
    """
    if custom_short_code and await crud.code_in_use(db, custom_short_code):
        raise ShortCodeConflictError("Custom short code already in use", custom_short_code)

    for attempt in range(1, max_attempts + 1):
        short_code = generate_short_code()
        if await crud.code_in_use(db, short_code):
            # Also catches a clash with another link's custom code, which no unique index covers
            logger.warning(f"Short code collision on attempt {attempt}/{max_attempts}", extra={"short_code": short_code})
            continue
        link = Link(
            owner_id=owner_id,
            original_url=original_url,
            short_code=short_code,
            custom_short_code=custom_short_code,
            expires_at=expires_at,
            click_count=0,
        )
        try:
            return await crud.create_link(db, link)
        except IntegrityError:
            await db.rollback()
            # The custom code may have been taken by a concurrent insert
            if custom_short_code and await crud.code_in_use(db, custom_short_code):
                raise ShortCodeConflictError("Custom short code already in use", custom_short_code)
            logger.warning(f"Short code collision on attempt {attempt}/{max_attempts}", extra={"short_code": short_code})

    raise ShortCodeConflictError("Could not generate a unique short code")


async def delete_short_link(db: AsyncSession, link: Link, cache: LinkCache = link_cache):
    codes = [code for code in (link.short_code, link.custom_short_code) if code]
    await crud.delete_link(db, link)
    await cache.invalidate(*codes)
    # A cache fill spawned by a redirect that resolved just before the delete
    # can land after the first invalidation; repeat it once fills have settled
    spawn_detached(
        _invalidate_later(cache, codes, settings.CACHE_REINVALIDATE_DELAY_SECONDS),
        name=f"cache-reinvalidate:{link.short_code}",
    )


async def _invalidate_later(cache: LinkCache, codes: List[str], delay: float):
    await asyncio.sleep(delay)
    await cache.invalidate(*codes)
