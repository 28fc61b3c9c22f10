"""
Status and health check endpoints.

WHAT: Health monitoring for the database and the chat gateway
WHY: Quick diagnostics for frontend and ops
HOW: FastAPI endpoint calling the DB ping and gateway stats
"""

from fastapi import APIRouter, Request

from ....core.database import ping_database
from ....core.config import settings

router = APIRouter()


@router.get("/health")
async def health_check(request: Request):
    """
    Overall application health check.

    Returns:
        JSON with database status and live connection counts
    """
    db_status = ping_database()

    gateway = getattr(request.app.state, "chat_gateway", None)
    realtime = gateway.stats() if gateway is not None else {"online_users": 0, "connections": 0}

    return {
        "status": "healthy" if db_status["available"] else "degraded",
        "version": settings.APP_VERSION,
        "app_name": settings.APP_NAME,
        "components": {
            "database": db_status,
            "realtime": realtime
        }
    }
