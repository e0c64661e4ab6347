import logging
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from .. import crud
from ..database import STORE_ERRORS
from ..observability import CLICK_LOG_DROPPED_TOTAL
from .enrichment import ClickEvent

logger = logging.getLogger(__name__)


class ClickLogRecorder:
    """Appends click events for the redirect path.

    ``record`` never raises for store failures, including an unreachable
    database: the error is rolled back and handed back to the caller, which
    decides how to report it.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    async def record(self, event: ClickEvent) -> Optional[Exception]:
        try:
            await crud.insert_click_log(self.db, event)
        except STORE_ERRORS as e:
            CLICK_LOG_DROPPED_TOTAL.inc()
            await self._rollback()
            return e
        return None

    async def _rollback(self):
        try:
            await self.db.rollback()
        except STORE_ERRORS as e:
            logger.warning(f"Rollback after failed click log insert also failed: {e}")
