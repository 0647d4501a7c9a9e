from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import get_db
from app.api.responses import error_body
from app.core.config import settings
from app.core.logging import api_logger

router = APIRouter()


@router.get('/health')
async def health():
    return {"status": "ok", "service": settings.APP_NAME}


@router.get('/readyz')
async def readyz(db: AsyncSession = Depends(get_db)):
    # Check DB connectivity
    try:
        await db.execute(text('SELECT 1'))
    except Exception as e:
        api_logger.exception('Readiness DB check failed', error=e)
        return JSONResponse(status_code=503, content=error_body("not_ready", "Database unavailable"))
    return {"status": "ready"}
