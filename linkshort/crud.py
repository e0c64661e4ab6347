from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, update, delete, insert, or_, func
from .models import Link, ClickLog
from typing import Optional, List, NamedTuple, Tuple
import uuid
from datetime import datetime, timezone

LINK_ORDERINGS = {
    "created_at": Link.created_at.desc(),
    "updated_at": Link.updated_at.desc(),
    "expired_at": Link.expires_at.desc().nulls_last(),
    "counts": Link.click_count.desc(),
}

class ResolvedLink(NamedTuple):
    original_url: str
    expires_at: Optional[datetime]

def _matches_code(code: str):
    return or_(Link.short_code == code, Link.custom_short_code == code)

# Link CRUD
async def create_link(db: AsyncSession, link: Link) -> Link:
    db.add(link)
    await db.commit()
    await db.refresh(link)
    return link

async def resolve_short_code(db: AsyncSession, code: str) -> Optional[ResolvedLink]:
    """Destination of a generated or custom code, ignoring expired links."""
    now = datetime.now(timezone.utc)
    result = await db.execute(
        select(Link.original_url, Link.expires_at)
        .where(_matches_code(code))
        .where(or_(Link.expires_at.is_(None), Link.expires_at > now))
        .limit(1)
    )
    row = result.first()
    if row is None:
        return None
    return ResolvedLink(original_url=row.original_url, expires_at=row.expires_at)

async def code_in_use(db: AsyncSession, code: str) -> bool:
    result = await db.execute(select(Link.id).where(_matches_code(code)).limit(1))
    return result.first() is not None

async def get_link_for_owner(db: AsyncSession, link_id: uuid.UUID, owner_id: str) -> Optional[Link]:
    result = await db.execute(select(Link).where(Link.id == link_id, Link.owner_id == owner_id))
    return result.scalar_one_or_none()

async def list_links(db: AsyncSession, owner_id: str, limit: int, offset: int, order_by: str = "created_at") -> List[Link]:
    result = await db.execute(
        select(Link)
        .where(Link.owner_id == owner_id)
        .order_by(LINK_ORDERINGS[order_by], Link.id)
        .limit(limit)
        .offset(offset)
    )
    return list(result.scalars().all())

async def delete_link(db: AsyncSession, link: Link):
    await db.execute(delete(Link).where(Link.id == link.id))
    await db.commit()

# Click logs
async def insert_click_log(db: AsyncSession, event) -> None:
    link_id = select(Link.id).where(_matches_code(event.code)).limit(1).scalar_subquery()
    await db.execute(
        insert(ClickLog).values(
            id=uuid.uuid4(),
            link_id=link_id,
            code=event.code,
            ip_address=event.ip_address,
            user_agent=event.user_agent,
            referrer=event.referrer,
            device_type=event.device_type,
            browser=event.browser,
            country=event.country,
            traffic_source=event.traffic_source,
        )
    )
    await db.execute(
        update(Link)
        .where(_matches_code(event.code))
        # keep updated_at for edits, clicks alone do not count
        .values(click_count=Link.click_count + 1, updated_at=Link.updated_at)
    )
    await db.commit()

async def click_breakdown(db: AsyncSession, link_id: uuid.UUID, column, limit: Optional[int] = None) -> List[Tuple[str, int]]:
    """Click counts of one link grouped by a ClickLog column, largest first."""
    total = func.count(ClickLog.id)
    stmt = (
        select(column, total)
        .where(ClickLog.link_id == link_id)
        .group_by(column)
        .order_by(total.desc(), column)
    )
    if limit:
        stmt = stmt.limit(limit)
    result = await db.execute(stmt)
    return [(value or "unknown", count) for value, count in result.all()]
