from datetime import datetime, timezone

import structlog
from fastapi import APIRouter, Request
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

import kataba.core.database as db_module
from kataba.schemas.health import HealthResponse, HealthServices

logger = structlog.get_logger()
router = APIRouter()


async def _database_ok() -> bool:
    try:
        async with db_module.async_session() as session:
            await session.execute(text("SELECT 1"))
        return True
    except (SQLAlchemyError, OSError) as e:
        logger.warning("health_database_unreachable", error=str(e))
        return False


@router.get("/health")
async def health_check(request: Request) -> HealthResponse:
    """Service health check, no auth required."""
    chat_ok = await request.app.state.completion_provider.health_check()
    database_ok = await _database_ok()

    return HealthResponse(
        status="ok" if chat_ok and database_ok else "degraded",
        timestamp=datetime.now(timezone.utc).isoformat(),
        services=HealthServices(chat=chat_ok, database=database_ok),
    )
