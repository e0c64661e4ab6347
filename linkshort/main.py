from contextlib import asynccontextmanager
from fastapi import FastAPI, Depends, HTTPException, Request
from fastapi.responses import JSONResponse, RedirectResponse
from sqlalchemy.ext.asyncio import AsyncSession
import logging

from .config import settings
from .database import STORE_ERRORS, get_db, ping
from .api.v1 import links
from .cache import link_cache
from .exceptions import LinkNotFoundError
from .services import background
from .services.enrichment import describe_visit
from .services.geo import init_country_table
from .services.redirect import RedirectService

logger = logging.getLogger(__name__)

@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup logic
    init_country_table(settings.IP_COUNTRY_DB_PATH)
    await link_cache.connect()
    yield
    # Shutdown logic
    await background.drain(timeout=settings.BACKGROUND_DRAIN_TIMEOUT)
    await link_cache.close()

from .logging_config import RequestIdMiddleware, setup_logging
from .observability import PrometheusMiddleware, metrics_endpoint

setup_logging(settings.LOG_LEVEL)

app = FastAPI(
    title="linkshort",
    description="URL shortener with click analytics",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(PrometheusMiddleware)
app.add_middleware(RequestIdMiddleware)

app.add_route("/metrics", metrics_endpoint)

app.include_router(links.router, prefix="/v1")

@app.get("/health")
async def health(db: AsyncSession = Depends(get_db)):
    try:
        await ping(db)
    except STORE_ERRORS as e:
        logger.error(f"Health check failed: {e}")
        return JSONResponse(status_code=503, content={"status": "db unavailable"})
    return {"status": "ok"}

@app.get("/{code}")
async def redirect_to_url(
    code: str,
    request: Request,
    db: AsyncSession = Depends(get_db)
):
    event = describe_visit(
        code,
        ip=request.client.host if request.client else None,
        user_agent=request.headers.get("user-agent"),
        referrer=request.headers.get("referer"),
    )

    try:
        target_url = await RedirectService(db).resolve(event)
    except LinkNotFoundError:
        raise HTTPException(status_code=404, detail="Link not found")

    return RedirectResponse(url=target_url, status_code=301)
