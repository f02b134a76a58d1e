"""
LTI 1.1 router.

Launch failures answer with a short plain-text message and the failing
stage's status code; they never redirect.
"""

import logging

from fastapi import APIRouter, Depends, Request
from fastapi.responses import PlainTextResponse, RedirectResponse
from sqlalchemy.ext.asyncio import AsyncSession

from scorm_proxy.config import RuntimeSettings, get_settings
from scorm_proxy.db.config import get_session
from scorm_proxy.models.schemas import ToolConfiguration
from scorm_proxy.services.launch import LaunchError, handle_lti_launch

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/lti", tags=["LTI"])


@router.post("/launch", summary="LTI 1.1 Launch")
async def lti_launch(
    request: Request,
    session: AsyncSession = Depends(get_session),
    settings: RuntimeSettings = Depends(get_settings),
):
    """Verify the signed launch and redirect the learner to the player."""
    form = await request.form()
    params = [(k, v) for k, v in form.multi_items() if isinstance(v, str)]
    params.extend(request.query_params.multi_items())

    try:
        outcome = await handle_lti_launch(session, params, settings)
    except LaunchError as e:
        logger.warning(f"LTI launch rejected at {e.stage.value}: {e.message}")
        return PlainTextResponse(e.message, status_code=e.status_code)

    return RedirectResponse(outcome.redirect_url, status_code=302)


@router.get("/config", response_model=ToolConfiguration, summary="LTI Tool Configuration")
async def lti_config(settings: RuntimeSettings = Depends(get_settings)):
    return ToolConfiguration(
        title="SCORM-LTI Proxy",
        description="Host SCORM content with LTI grade passback",
        launchUrl=settings.launch_url,
        icon=f"{settings.base_url}/static/icon.png",
        customParameters={"course_id": "The UUID of the course to launch"},
    )
