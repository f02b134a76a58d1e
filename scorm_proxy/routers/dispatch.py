"""
Dispatch launch router, called by the launcher page of a dispatch package.
"""

import logging

from fastapi import APIRouter, BackgroundTasks, Depends, Request
from fastapi.responses import PlainTextResponse, RedirectResponse
from sqlalchemy.ext.asyncio import AsyncSession

from scorm_proxy.config import RuntimeSettings, get_settings
from scorm_proxy.db.config import get_session
from scorm_proxy.services.launch import LaunchError, handle_dispatch_launch
from scorm_proxy.services.scorm_runtime import deliver_notifications

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/dispatch", tags=["Dispatch"])


@router.get("/launch/{token}", summary="Dispatch Launch")
async def dispatch_launch(
    token: str,
    request: Request,
    background_tasks: BackgroundTasks,
    session: AsyncSession = Depends(get_session),
    settings: RuntimeSettings = Depends(get_settings),
):
    try:
        outcome = await handle_dispatch_launch(
            session, token, request.query_params, settings
        )
    except LaunchError as e:
        logger.warning(f"Dispatch launch rejected: {e.message}")
        return PlainTextResponse(e.message, status_code=e.status_code)

    if outcome.statement is not None:
        background_tasks.add_task(
            deliver_notifications,
            settings.outbound_timeout,
            statement=outcome.statement,
        )
    return RedirectResponse(outcome.redirect_url, status_code=302)
