"""
health_routes.py

This module contains FastAPI Routes to check the health of the database and the configured providers
"""

import logging
from datetime import datetime

from fastapi import APIRouter, Depends

from chatgateway.api.context import GatewayContext, get_context
from chatgateway.api.db import check_database


logger = logging.getLogger(__name__)
router = APIRouter(tags=["health"])


@router.get("/health")
async def health_check(context: GatewayContext = Depends(get_context)):
    """Perform a health check on the system components and return their statuses.

    The database is checked with a trivial query. Providers are only reported as
    configured or not; no upstream call is made.

    Returns:
        dict: The overall status, a message, a timestamp and the status of each component.
    """
    settings = context.settings
    current_time = datetime.now().isoformat()

    database_status = "connected" if check_database(context.engine) else "unreachable"
    components = {
        "database": database_status,
        "chat_provider_configured": bool(settings.gemini_api_key),
        "image_provider_configured": bool(settings.image_api_key or settings.gemini_api_key),
        "google_oauth_configured": context.google_oauth is not None,
        "hosted_users_configured": context.hosted_users is not None,
    }

    if database_status != "connected":
        overall_status = "error"
        message = "Database is unreachable."
    elif not components["chat_provider_configured"]:
        overall_status = "warning"
        message = "Generation provider key is not configured; message sends will fail."
    else:
        overall_status = "healthy"
        message = "Chat Gateway is operational."

    if overall_status != "healthy":
        logger.warning(f"Health check: {overall_status}: {message}")

    return {
        "status": overall_status,
        "message": message,
        "timestamp": current_time,
        "components": components,
        "version": "1.0.0",
    }
