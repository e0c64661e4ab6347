from fastapi import APIRouter, Depends, HTTPException, Header, Query, status
from sqlalchemy.ext.asyncio import AsyncSession
from typing import List, Optional
import uuid

from ...database import get_db
from ...schemas import LinkCreate, LinkResponse, LinkDetail, TypeValue
from ...models import Link, ClickLog
from ...crud import LINK_ORDERINGS, click_breakdown, get_link_for_owner, list_links
from ...exceptions import ShortCodeConflictError
from ...services.links import create_short_link, delete_short_link
from ...config import settings

router = APIRouter()

TOP_COUNTRIES_LIMIT = 5

def require_owner(x_user_id: Optional[str] = Header(None, alias="X-User-Id")) -> str:
    # Set by the authenticating proxy in front of the service
    if not x_user_id:
        raise HTTPException(status_code=401, detail="X-User-Id header is required")
    return x_user_id

def to_response(link: Link) -> LinkResponse:
    return LinkResponse(
        id=link.id,
        original_url=link.original_url,
        short_code=link.short_code,
        custom_short_code=link.custom_short_code,
        short_url=f"{settings.BASE_URL.rstrip('/')}/{link.custom_short_code or link.short_code}",
        click_count=link.click_count,
        expired_at=link.expires_at,
        created_at=link.created_at,
    )

@router.post("/links", response_model=LinkResponse, status_code=status.HTTP_201_CREATED)
async def shorten_link(
    link_in: LinkCreate,
    owner_id: str = Depends(require_owner),
    db: AsyncSession = Depends(get_db)
):
    try:
        link = await create_short_link(
            db,
            owner_id=owner_id,
            original_url=link_in.original_url,
            custom_short_code=link_in.custom_short_code,
            expires_at=link_in.expired_at,
        )
    except ShortCodeConflictError as e:
        raise HTTPException(status_code=409, detail=str(e))

    return to_response(link)

@router.get("/links", response_model=List[LinkResponse])
async def get_links(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    order_by: str = Query("created_at"),
    owner_id: str = Depends(require_owner),
    db: AsyncSession = Depends(get_db)
):
    if order_by not in LINK_ORDERINGS:
        raise HTTPException(
            status_code=400,
            detail=f"Invalid order_by value: {order_by}. Valid values are: {', '.join(LINK_ORDERINGS)}",
        )

    links = await list_links(db, owner_id, limit=limit, offset=(page - 1) * limit, order_by=order_by)
    return [to_response(link) for link in links]

@router.get("/links/{link_id}", response_model=LinkDetail)
async def get_link(
    link_id: uuid.UUID,
    owner_id: str = Depends(require_owner),
    db: AsyncSession = Depends(get_db)
):
    link = await get_link_for_owner(db, link_id, owner_id)
    if not link:
        raise HTTPException(status_code=404, detail="Link not found")

    devices = await click_breakdown(db, link.id, ClickLog.device_type)
    countries = await click_breakdown(db, link.id, ClickLog.country, limit=TOP_COUNTRIES_LIMIT)

    return LinkDetail(
        **to_response(link).model_dump(),
        device_breakdowns=[TypeValue(type=t, value=v) for t, v in devices],
        top_countries=[TypeValue(type=t, value=v) for t, v in countries],
    )

@router.delete("/links/{link_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_link(
    link_id: uuid.UUID,
    owner_id: str = Depends(require_owner),
    db: AsyncSession = Depends(get_db)
):
    link = await get_link_for_owner(db, link_id, owner_id)
    if not link:
        # Someone else's link looks the same as a missing one
        raise HTTPException(status_code=404, detail="Link not found")

    await delete_short_link(db, link)
    return None
